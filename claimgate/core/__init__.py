# Core services: consensus, claims, settlement, journal, authorization
from .errors import ClaimGateError, ErrorCategory, ErrorCode
from .hasher import CanonicalSerializationError, Hasher
from .signer import Signer
from .journal import Journal
from .authorization import Authorizer, RegisteredActor
from .submissions import SubmissionLedger
from .consensus import Outcome, Pending, Rejected, Resolved, lower_median, resolve
from .registry import FactRegistry
from .claims import MAX_PAGE_SIZE, TRANSITIONS, ClaimStateMachine
from .external import InMemoryPolicyRegistry, InMemoryRiskPool, PolicyRegistry, RiskPool
from .settlement import SettlementCoordinator
from .config import ServiceConfig
from .service import ClaimGateService, system_clock

__all__ = [
    "ClaimGateError",
    "ErrorCategory",
    "ErrorCode",
    "CanonicalSerializationError",
    "Hasher",
    "Signer",
    "Journal",
    "Authorizer",
    "RegisteredActor",
    "SubmissionLedger",
    "Outcome",
    "Pending",
    "Rejected",
    "Resolved",
    "lower_median",
    "resolve",
    "FactRegistry",
    "MAX_PAGE_SIZE",
    "TRANSITIONS",
    "ClaimStateMachine",
    "InMemoryPolicyRegistry",
    "InMemoryRiskPool",
    "PolicyRegistry",
    "RiskPool",
    "SettlementCoordinator",
    "ServiceConfig",
    "ClaimGateService",
    "system_clock",
]
