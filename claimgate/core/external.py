"""
External Collaborators

Only the calls the claim gate consumes are modelled:

    PolicyRegistry.get_policy(policy_id) -> PolicyInfo
    RiskPool.reserve(amount)
    RiskPool.release(amount)
    RiskPool.payout(recipient, amount)

Failures are raised as ClaimGateError with an EXTERNAL-category code
(PolicyNotFound, InsufficientBalance) and propagated unchanged.

The in-memory implementations are for development and tests.
"""

from threading import Lock
from typing import Protocol, runtime_checkable

from ..schemas import PolicyInfo
from .errors import ClaimGateError, ErrorCode


@runtime_checkable
class PolicyRegistry(Protocol):
    def get_policy(self, policy_id: str) -> PolicyInfo:
        ...


@runtime_checkable
class RiskPool(Protocol):
    def reserve(self, amount: int) -> None:
        ...

    def release(self, amount: int) -> None:
        ...

    def payout(self, recipient: str, amount: int) -> None:
        ...


class InMemoryPolicyRegistry:

    def __init__(self, policies: list[PolicyInfo] | None = None):
        self._policies: dict[str, PolicyInfo] = {}
        for policy in policies or []:
            self.put(policy)

    def put(self, policy: PolicyInfo) -> None:
        self._policies[policy.policy_id] = policy

    def get_policy(self, policy_id: str) -> PolicyInfo:
        policy = self._policies.get(policy_id)
        if policy is None:
            raise ClaimGateError(
                ErrorCode.POLICY_NOT_FOUND,
                f"Policy '{policy_id}' is not known to the registry",
                policy_id=policy_id,
            )
        return policy


class InMemoryRiskPool:
    """
    Balance split into available and reserved funds.

    reserve moves available -> reserved, release moves it back, payout
    spends reserved funds first and then available ones.
    """

    def __init__(self, available: int = 0):
        if available < 0:
            raise ValueError("available must be non-negative")
        self._available = available
        self._reserved = 0
        self._payouts: list[tuple[str, int]] = []
        self._lock = Lock()

    @property
    def available(self) -> int:
        return self._available

    @property
    def reserved(self) -> int:
        return self._reserved

    @property
    def payouts(self) -> list[tuple[str, int]]:
        return list(self._payouts)

    def reserve(self, amount: int) -> None:
        with self._lock:
            if amount > self._available:
                raise ClaimGateError(
                    ErrorCode.INSUFFICIENT_BALANCE,
                    f"Cannot reserve {amount}; only {self._available} available",
                    requested=amount,
                    available=self._available,
                )
            self._available -= amount
            self._reserved += amount

    def release(self, amount: int) -> None:
        with self._lock:
            released = min(amount, self._reserved)
            self._reserved -= released
            self._available += released

    def payout(self, recipient: str, amount: int) -> None:
        with self._lock:
            if amount > self._reserved + self._available:
                raise ClaimGateError(
                    ErrorCode.INSUFFICIENT_BALANCE,
                    f"Cannot pay {amount}; pool holds {self._reserved + self._available}",
                    requested=amount,
                    recipient=recipient,
                )
            from_reserved = min(amount, self._reserved)
            self._reserved -= from_reserved
            self._available -= amount - from_reserved
            self._payouts.append((recipient, amount))
