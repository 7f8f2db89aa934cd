"""
Unified Error Type

Every subsystem (oracle intake, consensus, claims, settlement, pool,
authorization, journal) raises the same exception class. The code says
what happened; the category says how a caller should react.

Categories:
- INPUT: rejected immediately, no state change
- STATE: logic error or a race already resolved elsewhere
- CONSENSUS: legitimate negative / non-terminal outcome (wait or escalate)
- EXTERNAL: collaborator failure, propagated unchanged
- AUTHORIZATION: caller lacks the capability
- NOT_FOUND: referenced entity does not exist
- INTEGRITY: the journal has been tampered with or is inconsistent
"""

from enum import Enum
from typing import Any, Optional


class ErrorCategory(str, Enum):
    INPUT = "input"
    STATE = "state"
    CONSENSUS = "consensus"
    EXTERNAL = "external"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    INTEGRITY = "integrity"


class ErrorCode(str, Enum):
    """
    All error codes.
    You can add more later, never remove.
    """
    # Input
    DUPLICATE_SUBMISSION = "DuplicateSubmission"
    INVALID_TIMESTAMP = "InvalidTimestamp"
    INVALID_AMOUNT = "InvalidAmount"
    COVERAGE_EXCEEDED = "CoverageExceeded"
    POLICY_EXPIRED = "PolicyExpired"
    INVALID_POLICY_STATE = "InvalidPolicyState"
    CLAIM_ALREADY_EXISTS = "ClaimAlreadyExists"
    INVALID_INPUT = "InvalidInput"

    # State
    INVALID_STATE_TRANSITION = "InvalidStateTransition"
    ALREADY_FINALIZED = "AlreadyFinalized"
    ALREADY_SETTLED = "AlreadySettled"
    PAUSED = "Paused"

    # Consensus
    PENDING = "Pending"
    CONSENSUS_NOT_REACHED = "ConsensusNotReached"
    FACT_NOT_RESOLVED = "FactNotResolved"

    # External
    INSUFFICIENT_BALANCE = "InsufficientBalance"
    POLICY_NOT_FOUND = "PolicyNotFound"

    # Authorization
    UNAUTHORIZED = "Unauthorized"

    # Not found
    CLAIM_NOT_FOUND = "ClaimNotFound"
    FACT_NOT_FOUND = "FactNotFound"
    ACTOR_NOT_FOUND = "ActorNotFound"

    # Integrity
    CHAIN_INTEGRITY = "ChainIntegrity"


_CATEGORIES: dict[ErrorCode, ErrorCategory] = {
    ErrorCode.DUPLICATE_SUBMISSION: ErrorCategory.INPUT,
    ErrorCode.INVALID_TIMESTAMP: ErrorCategory.INPUT,
    ErrorCode.INVALID_AMOUNT: ErrorCategory.INPUT,
    ErrorCode.COVERAGE_EXCEEDED: ErrorCategory.INPUT,
    ErrorCode.POLICY_EXPIRED: ErrorCategory.INPUT,
    ErrorCode.INVALID_POLICY_STATE: ErrorCategory.INPUT,
    ErrorCode.CLAIM_ALREADY_EXISTS: ErrorCategory.INPUT,
    ErrorCode.INVALID_INPUT: ErrorCategory.INPUT,
    ErrorCode.INVALID_STATE_TRANSITION: ErrorCategory.STATE,
    ErrorCode.ALREADY_FINALIZED: ErrorCategory.STATE,
    ErrorCode.ALREADY_SETTLED: ErrorCategory.STATE,
    ErrorCode.PAUSED: ErrorCategory.STATE,
    ErrorCode.PENDING: ErrorCategory.CONSENSUS,
    ErrorCode.CONSENSUS_NOT_REACHED: ErrorCategory.CONSENSUS,
    ErrorCode.FACT_NOT_RESOLVED: ErrorCategory.CONSENSUS,
    ErrorCode.INSUFFICIENT_BALANCE: ErrorCategory.EXTERNAL,
    ErrorCode.POLICY_NOT_FOUND: ErrorCategory.EXTERNAL,
    ErrorCode.UNAUTHORIZED: ErrorCategory.AUTHORIZATION,
    ErrorCode.CLAIM_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorCode.FACT_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorCode.ACTOR_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorCode.CHAIN_INTEGRITY: ErrorCategory.INTEGRITY,
}


class ClaimGateError(Exception):
    """
    The one exception type raised by the domain layer.

    Usage:
        raise ClaimGateError(ErrorCode.DUPLICATE_SUBMISSION, "oracle already reported")

        try:
            ...
        except ClaimGateError as e:
            if e.category == ErrorCategory.CONSENSUS:
                # wait for more submissions
    """

    def __init__(
        self,
        code: ErrorCode,
        message: Optional[str] = None,
        **details: Any,
    ):
        self.code = code
        self.message = message or code.value
        self.details = details
        super().__init__(f"{code.value}: {self.message}")

    @property
    def category(self) -> ErrorCategory:
        return _CATEGORIES[self.code]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "code": self.code.value,
            "category": self.category.value,
            "message": self.message,
        }
        if self.details:
            data["details"] = {k: str(v) for k, v in self.details.items()}
        return data
