"""
Settlement Coordinator

Moves an Approved claim to Settled by paying the claimant from the external
risk pool, at most once per claim.

- The settled marker is checked before the claim state, so a repeat call
  fails with AlreadySettled and never reaches the pool.
- The payout runs inside the caller's commit (the journal append), so a pool
  failure leaves the claim Approved, unmarked and retryable.
- Pool errors propagate unchanged.
- If the payout succeeds but the commit then fails, the claim keeps its
  settled marker and is listed by unrecorded_payouts() for reconciliation.
"""

from typing import Any, Callable, Optional

from ..observability import get_logger
from ..schemas import Claim, ClaimAction, ClaimStatus, ClaimTransitionPayload
from .claims import ClaimStateMachine
from .errors import ClaimGateError, ErrorCode
from .external import RiskPool

logger = get_logger(__name__)

# commit(payload, before_commit) must run before_commit and persist payload
# atomically, raising if either fails.
CommitFn = Callable[[ClaimTransitionPayload, Callable[[], None]], Any]


class SettlementCoordinator:

    def __init__(self, pool: RiskPool, claims: ClaimStateMachine):
        self._pool = pool
        self._claims = claims
        self._settled: set[int] = set()
        self._unrecorded: dict[int, ClaimTransitionPayload] = {}

    def is_settled(self, claim_id: int) -> bool:
        return claim_id in self._settled

    def check_settle(self, claim_id: int) -> Claim:
        if claim_id in self._settled:
            raise ClaimGateError(
                ErrorCode.ALREADY_SETTLED,
                f"Claim {claim_id} has already been settled",
                claim_id=claim_id,
            )
        claim, _ = self._claims.check_transition(claim_id, ClaimAction.SETTLE)
        return claim

    def settle(
        self,
        claim_id: int,
        occurred_at: int,
        commit: Optional[CommitFn] = None,
    ) -> Claim:
        """
        Pay out and settle one claim.

        Without a commit function the payout is made directly; the service
        always passes one so a failed payout aborts the journal append. A
        failed append after a successful payout still marks the claim settled.
        """
        claim = self.check_settle(claim_id)
        payload = ClaimTransitionPayload(
            claim_id=claim.claim_id,
            action=ClaimAction.SETTLE,
            from_status=ClaimStatus.APPROVED,
            to_status=ClaimStatus.SETTLED,
            occurred_at=occurred_at,
            fact_id=claim.fact_id,
            amount=claim.amount,
        )

        paid: list[bool] = []

        def pay() -> None:
            self._pool.payout(str(claim.claimant_id), claim.amount)
            paid.append(True)

        try:
            if commit is None:
                pay()
            else:
                commit(payload, pay)
        except Exception:
            if paid:
                # Money left the pool but the settle event was not persisted.
                # Hold the marker so retries stop at AlreadySettled.
                self._settled.add(claim_id)
                self._unrecorded[claim_id] = payload
                logger.error(
                    "Payout issued but settlement not recorded; reconcile manually",
                    claim_id=claim_id,
                    claimant_id=str(claim.claimant_id),
                    amount=claim.amount,
                )
            raise

        return self.apply_settled(payload)

    def unrecorded_payouts(self) -> list[ClaimTransitionPayload]:
        """Settlements paid out whose journal append failed, oldest first."""
        return list(self._unrecorded.values())

    def apply_settled(self, payload: ClaimTransitionPayload) -> Claim:
        self._settled.add(payload.claim_id)
        self._unrecorded.pop(payload.claim_id, None)
        return self._claims.apply_transition(payload)
