"""
Claim State Machine

    (none) --submit_claim--> Submitted
    Submitted   --start_review--> UnderReview
    UnderReview --approve------> Approved     (oracle gate, if enabled)
    UnderReview --reject-------> Rejected     (terminal)
    Approved    --settle-------> Settled      (terminal)

Every transition is split in two:
- check_transition() re-reads the latest committed claim and raises if the
  move is not allowed right now
- apply_transition() applies an already journaled transition and cannot fail

Anything not in TRANSITIONS raises InvalidStateTransition.
"""

from typing import Optional

from ..schemas import (
    Claim,
    ClaimAction,
    ClaimPage,
    ClaimStatus,
    ClaimSubmittedPayload,
    ClaimTransitionPayload,
    PolicyInfo,
    PolicyStatus,
)
from .errors import ClaimGateError, ErrorCode
from .registry import FactRegistry


# action -> (required from-state, resulting state)
TRANSITIONS: dict[ClaimAction, tuple[ClaimStatus, ClaimStatus]] = {
    ClaimAction.START_REVIEW: (ClaimStatus.SUBMITTED, ClaimStatus.UNDER_REVIEW),
    ClaimAction.APPROVE: (ClaimStatus.UNDER_REVIEW, ClaimStatus.APPROVED),
    ClaimAction.REJECT: (ClaimStatus.UNDER_REVIEW, ClaimStatus.REJECTED),
    ClaimAction.SETTLE: (ClaimStatus.APPROVED, ClaimStatus.SETTLED),
}

MAX_PAGE_SIZE = 50
DEFAULT_GRACE_PERIOD_SECONDS = 30 * 24 * 60 * 60


class ClaimStateMachine:
    """Owns claim status. Only apply_* methods change it."""

    def __init__(self, registry: FactRegistry, oracle_gating: bool = True):
        self._registry = registry
        self.oracle_gating = oracle_gating
        self._claims: dict[int, Claim] = {}
        self._by_policy: dict[str, int] = {}

    @property
    def next_claim_id(self) -> int:
        return len(self._claims) + 1

    # ------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------

    def validate_submit(self, policy_id: str, amount: int) -> None:
        """Checks that need nothing from the policy registry."""
        if amount <= 0:
            raise ClaimGateError(
                ErrorCode.INVALID_AMOUNT, f"Claim amount must be positive, got {amount}"
            )

        existing = self._by_policy.get(policy_id)
        if existing is not None:
            raise ClaimGateError(
                ErrorCode.CLAIM_ALREADY_EXISTS,
                f"Policy '{policy_id}' already has claim {existing}",
                policy_id=policy_id,
                claim_id=existing,
            )

    def validate_policy_terms(
        self,
        policy: PolicyInfo,
        amount: int,
        now: int,
        grace_period_seconds: int = DEFAULT_GRACE_PERIOD_SECONDS,
    ) -> None:
        """Checks against the policy as reported by the registry."""
        if policy.status == PolicyStatus.CANCELLED:
            raise ClaimGateError(
                ErrorCode.INVALID_POLICY_STATE,
                f"Policy '{policy.policy_id}' is cancelled",
                policy_id=policy.policy_id,
            )

        if amount > policy.coverage_amount:
            raise ClaimGateError(
                ErrorCode.COVERAGE_EXCEEDED,
                f"Claim amount {amount} exceeds coverage {policy.coverage_amount}",
                policy_id=policy.policy_id,
            )

        if now > policy.end_time + grace_period_seconds:
            raise ClaimGateError(
                ErrorCode.POLICY_EXPIRED,
                f"Policy '{policy.policy_id}' ended at {policy.end_time}; "
                f"grace period of {grace_period_seconds}s has passed",
                policy_id=policy.policy_id,
            )

    def apply_submitted(self, payload: ClaimSubmittedPayload) -> Claim:
        claim = Claim(
            claim_id=payload.claim_id,
            policy_id=payload.policy_id,
            claimant_id=payload.claimant_id,
            amount=payload.amount,
            status=ClaimStatus.SUBMITTED,
            fact_id=payload.fact_id,
            submitted_at=payload.submitted_at,
            updated_at=payload.submitted_at,
        )
        self._claims[claim.claim_id] = claim
        self._by_policy[claim.policy_id] = claim.claim_id
        return claim

    # ------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------

    def require(self, claim_id: int) -> Claim:
        claim = self._claims.get(claim_id)
        if claim is None:
            raise ClaimGateError(
                ErrorCode.CLAIM_NOT_FOUND, f"Claim {claim_id} does not exist", claim_id=claim_id
            )
        return claim

    def check_transition(
        self,
        claim_id: int,
        action: ClaimAction,
        fact_id: Optional[str] = None,
    ) -> tuple[Claim, Optional[str]]:
        """
        Validate action against the current claim.

        Returns the claim and, for approve, the fact it will be linked to.
        """
        claim = self.require(claim_id)
        required_from, _ = TRANSITIONS[action]

        if claim.status != required_from:
            reason = (
                f"claim {claim_id} is already {claim.status.value}"
                if claim.status.is_terminal
                else f"claim {claim_id} is {claim.status.value}, not {required_from.value}"
            )
            raise ClaimGateError(
                ErrorCode.INVALID_STATE_TRANSITION,
                f"Cannot {action.value}: {reason}",
                claim_id=claim_id,
                status=claim.status.value,
            )

        if action != ClaimAction.APPROVE:
            return claim, claim.fact_id

        linked = claim.fact_id
        if fact_id is not None and linked is not None and fact_id != linked:
            raise ClaimGateError(
                ErrorCode.INVALID_INPUT,
                f"Claim {claim_id} is linked to fact '{linked}', not '{fact_id}'",
                claim_id=claim_id,
            )
        linked = linked or fact_id

        if self.oracle_gating:
            if linked is None:
                raise ClaimGateError(
                    ErrorCode.FACT_NOT_RESOLVED,
                    f"Claim {claim_id} has no linked fact and oracle gating is enabled",
                    claim_id=claim_id,
                )
            if not self._registry.is_finalized(linked):
                raise ClaimGateError(
                    ErrorCode.FACT_NOT_RESOLVED,
                    f"Fact '{linked}' has no consensus result yet",
                    claim_id=claim_id,
                    fact_id=linked,
                )

        return claim, linked

    def apply_transition(self, payload: ClaimTransitionPayload) -> Claim:
        claim = self._claims[payload.claim_id]
        updated = claim.model_copy(update={
            "status": payload.to_status,
            "fact_id": payload.fact_id if payload.fact_id is not None else claim.fact_id,
            "updated_at": payload.occurred_at,
        })
        self._claims[updated.claim_id] = updated
        return updated

    # ------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------

    def get(self, claim_id: int) -> Optional[Claim]:
        return self._claims.get(claim_id)

    def claim_count(self) -> int:
        return len(self._claims)

    def list_claims(
        self,
        status: Optional[ClaimStatus] = None,
        start: int = 0,
        limit: int = MAX_PAGE_SIZE,
    ) -> ClaimPage:
        """
        Claims ordered by claim_id.

        limit is capped at MAX_PAGE_SIZE; 0 means MAX_PAGE_SIZE.
        """
        if start < 0 or limit < 0:
            raise ClaimGateError(ErrorCode.INVALID_INPUT, "start and limit must be non-negative")
        if limit == 0 or limit > MAX_PAGE_SIZE:
            limit = MAX_PAGE_SIZE

        matching = [
            claim for _, claim in sorted(self._claims.items())
            if status is None or claim.status == status
        ]
        return ClaimPage(claims=matching[start:start + limit], total_count=len(matching))
