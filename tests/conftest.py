"""
Shared fixtures: a fixed clock, a recording risk pool, a policy registry
and a service with one actor per role already registered.
"""

from dataclasses import dataclass
from uuid import UUID

import pytest

from claimgate.core import (
    ClaimGateError,
    ClaimGateService,
    ErrorCode,
    InMemoryPolicyRegistry,
    InMemoryRiskPool,
    ServiceConfig,
    Signer,
)
from claimgate.observability import get_metrics
from claimgate.schemas import PolicyInfo, PolicyStatus, Role


NOW = 1_700_000_000
DAY = 24 * 60 * 60


class FakeClock:
    """Deterministic clock; tests move time explicitly."""

    def __init__(self, now: int = NOW):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


class RecordingPool(InMemoryRiskPool):
    """Risk pool that remembers every payout attempt and can be told to fail."""

    def __init__(self, available: int = 0):
        super().__init__(available)
        self.payout_calls: list[tuple[str, int]] = []
        self.reserve_calls: list[int] = []
        self.release_calls: list[int] = []
        self.fail_payouts = False

    def reserve(self, amount: int) -> None:
        self.reserve_calls.append(amount)
        super().reserve(amount)

    def release(self, amount: int) -> None:
        self.release_calls.append(amount)
        super().release(amount)

    def payout(self, recipient: str, amount: int) -> None:
        self.payout_calls.append((recipient, amount))
        if self.fail_payouts:
            raise ClaimGateError(ErrorCode.INSUFFICIENT_BALANCE, "pool drained")
        super().payout(recipient, amount)


@dataclass
class Actor:
    actor_id: UUID
    private_key: str
    public_key: str


@pytest.fixture(autouse=True)
def reset_metrics():
    get_metrics().reset()
    yield


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def pool():
    return RecordingPool(available=10_000)


@pytest.fixture
def policies():
    return InMemoryPolicyRegistry([
        PolicyInfo(policy_id="POL-1", coverage_amount=1000, end_time=NOW + 30 * DAY),
        PolicyInfo(policy_id="POL-2", coverage_amount=1000, end_time=NOW + 30 * DAY),
        PolicyInfo(
            policy_id="POL-ENDED",
            coverage_amount=1000,
            end_time=NOW - 10 * DAY,
            status=PolicyStatus.EXPIRED,
        ),
        PolicyInfo(policy_id="POL-LAPSED", coverage_amount=1000, end_time=NOW - 31 * DAY),
        PolicyInfo(
            policy_id="POL-CANCELLED",
            coverage_amount=1000,
            end_time=NOW + 30 * DAY,
            status=PolicyStatus.CANCELLED,
        ),
    ])


@pytest.fixture
def service(clock, pool, policies):
    return ClaimGateService(
        policy_registry=policies,
        risk_pool=pool,
        config=ServiceConfig(),
        clock=clock,
    )


@pytest.fixture
def admin(service):
    private_key, public_key = Signer.generate_keypair()
    actor = service.register_actor(
        actor_id=None,
        private_key=private_key,
        name="Genesis Admin",
        role=Role.ADMIN,
        public_key=public_key,
    )
    return Actor(actor.actor_id, private_key, public_key)


@pytest.fixture
def make_actor(service, admin):
    def _make(role: Role, name: str = "actor") -> Actor:
        private_key, public_key = Signer.generate_keypair()
        actor = service.register_actor(
            actor_id=admin.actor_id,
            private_key=admin.private_key,
            name=name,
            role=role,
            public_key=public_key,
        )
        return Actor(actor.actor_id, private_key, public_key)

    return _make


@pytest.fixture
def oracles(make_actor):
    return [make_actor(Role.ORACLE, f"oracle-{i}") for i in range(5)]


@pytest.fixture
def processor(make_actor):
    return make_actor(Role.CLAIM_PROCESSOR, "processor")


@pytest.fixture
def user(make_actor):
    return make_actor(Role.USER, "claimant")
