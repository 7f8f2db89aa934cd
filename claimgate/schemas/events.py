"""
Journal Event Schema

The service is event-sourced. Nothing is updated in place: every committed
transaction appends exactly one event, and every projection (submissions,
results, claims, settlement markers, actors, configuration) is rebuilt by
replaying the journal in order.

Each event:
- carries a typed payload
- is hashed and chained to its predecessor
- is signed by the actor who caused it
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from .actor import Role
from .claim import ClaimAction, ClaimStatus
from .oracle import ConsensusResult, ValidationThresholds


class EventType(str, Enum):
    """
    All journal event types.
    You can add more later, never remove.
    """
    # Identity (the genesis event is always ACTOR_REGISTERED)
    ACTOR_REGISTERED = "ACTOR_REGISTERED"
    ACTOR_ROLE_CHANGED = "ACTOR_ROLE_CHANGED"
    ACTOR_DEACTIVATED = "ACTOR_DEACTIVATED"

    # Administration
    THRESHOLDS_CONFIGURED = "THRESHOLDS_CONFIGURED"
    ORACLE_GATING_SET = "ORACLE_GATING_SET"
    PAUSE_SET = "PAUSE_SET"

    # Oracle
    SUBMISSION_RECORDED = "SUBMISSION_RECORDED"
    FACT_RESOLVED = "FACT_RESOLVED"

    # Claim lifecycle
    CLAIM_SUBMITTED = "CLAIM_SUBMITTED"
    CLAIM_REVIEW_STARTED = "CLAIM_REVIEW_STARTED"
    CLAIM_APPROVED = "CLAIM_APPROVED"
    CLAIM_REJECTED = "CLAIM_REJECTED"
    CLAIM_SETTLED = "CLAIM_SETTLED"


# Which event records each claim action
CLAIM_ACTION_EVENTS: dict[ClaimAction, EventType] = {
    ClaimAction.START_REVIEW: EventType.CLAIM_REVIEW_STARTED,
    ClaimAction.APPROVE: EventType.CLAIM_APPROVED,
    ClaimAction.REJECT: EventType.CLAIM_REJECTED,
    ClaimAction.SETTLE: EventType.CLAIM_SETTLED,
}


# ------------------------------------------------------------
# Identity payloads
# ------------------------------------------------------------

class ActorRegisteredPayload(BaseModel):
    """
    Anchors an actor's public key. The first actor (genesis admin) signs
    their own registration; later actors are registered by an admin.
    """
    actor_id: UUID
    name: str = Field(..., min_length=1)
    role: Role
    public_key: str = Field(..., description="Ed25519 public key (base64). IMMUTABLE.")
    registered_by: Optional[UUID] = None
    schema_version: int = 1


class ActorRoleChangedPayload(BaseModel):
    actor_id: UUID
    new_role: Role
    changed_by: UUID
    schema_version: int = 1


class ActorDeactivatedPayload(BaseModel):
    """Deactivation is permanent; past signatures stay valid."""
    actor_id: UUID
    deactivated_by: UUID
    reason: str = Field(..., min_length=3)
    schema_version: int = 1


# ------------------------------------------------------------
# Administration payloads
# ------------------------------------------------------------

class ThresholdsConfiguredPayload(BaseModel):
    fact_type: str = Field(..., min_length=1)
    thresholds: ValidationThresholds
    schema_version: int = 1


class OracleGatingSetPayload(BaseModel):
    enabled: bool
    schema_version: int = 1


class PauseSetPayload(BaseModel):
    paused: bool
    schema_version: int = 1


# ------------------------------------------------------------
# Oracle payloads
# ------------------------------------------------------------

class SubmissionRecordedPayload(BaseModel):
    fact_id: str
    fact_type: str
    submitter_id: UUID
    value: int
    submitted_at: int
    recorded_at: int = Field(..., description="Clock reading when the submission was admitted")
    schema_version: int = 1


class FactResolvedPayload(BaseModel):
    result: ConsensusResult
    schema_version: int = 1


# ------------------------------------------------------------
# Claim payloads
# ------------------------------------------------------------

class ClaimSubmittedPayload(BaseModel):
    claim_id: int
    policy_id: str
    claimant_id: UUID
    amount: int
    fact_id: Optional[str] = None
    submitted_at: int
    # Policy terms as seen at submission, kept for audit
    coverage_amount: int
    policy_end_time: int
    schema_version: int = 1


class ClaimTransitionPayload(BaseModel):
    """Shared payload for review / approve / reject / settle."""
    claim_id: int
    action: ClaimAction
    from_status: ClaimStatus
    to_status: ClaimStatus
    occurred_at: int
    fact_id: Optional[str] = None
    amount: Optional[int] = None
    schema_version: int = 1


# ============================================================
# The Journal Event
# ============================================================

class JournalEvent(BaseModel):
    """
    One immutable, hash-chained, signed record.

    previous_event_hash is None ONLY for sequence 0 and REQUIRED otherwise.
    """
    event_id: UUID
    sequence_number: int = Field(..., ge=0)
    event_type: EventType
    entity_id: str = Field(..., description="fact_id, claim_id, actor_id or fact_type")
    entity_type: str = Field(..., description="fact, claim, actor or config")
    payload: dict[str, Any]
    previous_event_hash: Optional[str] = None
    event_hash: str
    created_by: UUID
    signature: str
    created_at: datetime

    @property
    def is_genesis(self) -> bool:
        return self.sequence_number == 0

    def validate_chain_rules(self) -> None:
        """
        Raises ValueError if linkage rules are violated.
        """
        if self.sequence_number == 0:
            if self.previous_event_hash is not None:
                raise ValueError(
                    f"Genesis event (sequence 0) must have previous_event_hash=None, "
                    f"got: {self.previous_event_hash}"
                )
        else:
            if self.previous_event_hash is None:
                raise ValueError(
                    f"Non-genesis event (sequence {self.sequence_number}) must have "
                    f"previous_event_hash set, got None"
                )
            if len(self.previous_event_hash) != 64:
                raise ValueError(
                    f"previous_event_hash must be 64 hex characters, "
                    f"got {len(self.previous_event_hash)}"
                )
