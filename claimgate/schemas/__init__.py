# Canonical schemas for the claim gate.
# Oracle reports, consensus results, claims, actors and journal events.

from .actor import Capability, Role, ROLE_CAPABILITIES, role_allows
from .claim import Claim, ClaimAction, ClaimPage, ClaimStatus, PolicyInfo, PolicyStatus
from .oracle import (
    ConsensusResult,
    DEFAULT_FACT_TYPE,
    OracleStats,
    Submission,
    ValidationThresholds,
)
from .events import (
    CLAIM_ACTION_EVENTS,
    ActorDeactivatedPayload,
    ActorRegisteredPayload,
    ActorRoleChangedPayload,
    ClaimSubmittedPayload,
    ClaimTransitionPayload,
    EventType,
    FactResolvedPayload,
    JournalEvent,
    OracleGatingSetPayload,
    PauseSetPayload,
    SubmissionRecordedPayload,
    ThresholdsConfiguredPayload,
)

__all__ = [
    # Actor
    "Capability",
    "Role",
    "ROLE_CAPABILITIES",
    "role_allows",
    # Claim
    "Claim",
    "ClaimAction",
    "ClaimPage",
    "ClaimStatus",
    "PolicyInfo",
    "PolicyStatus",
    # Oracle
    "ConsensusResult",
    "DEFAULT_FACT_TYPE",
    "OracleStats",
    "Submission",
    "ValidationThresholds",
    # Events
    "CLAIM_ACTION_EVENTS",
    "ActorDeactivatedPayload",
    "ActorRegisteredPayload",
    "ActorRoleChangedPayload",
    "ClaimSubmittedPayload",
    "ClaimTransitionPayload",
    "EventType",
    "FactResolvedPayload",
    "JournalEvent",
    "OracleGatingSetPayload",
    "PauseSetPayload",
    "SubmissionRecordedPayload",
    "ThresholdsConfiguredPayload",
]
