"""
API Routes for the Claim Gate

Command-style endpoints (POST only, no PATCH, no PUT):
- POST /admin/actors                     - Register an actor
- POST /admin/actors/{id}/role           - Change an actor's role
- POST /admin/actors/{id}/deactivate     - Deactivate an actor
- POST /admin/thresholds/{fact_type}     - Configure consensus thresholds
- POST /admin/oracle-gating              - Turn oracle gating on or off
- POST /admin/pause, /admin/unpause      - Pause switch
- POST /facts/{fact_id}/submissions      - Submit oracle data
- POST /facts/{fact_id}/resolve          - Resolve a fact on demand
- POST /claims                           - Submit a claim
- POST /claims/{id}/review|approve|reject|settle

Query endpoints:
- GET /admin/actors/{id}, /admin/thresholds/{fact_type}
- GET /facts/{fact_id}, /facts/{fact_id}/submissions, /oracle/stats
- GET /claims/{id}, /claims

Every command carries actor_id and actor_private_key; the service checks
both against the actor registry before doing anything.
"""

from typing import NoReturn, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..core import ClaimGateError, ClaimGateService, ErrorCategory, Pending, Rejected, Resolved
from ..core.authorization import RegisteredActor
from ..core.consensus import Outcome, outcome_name
from ..observability import bind_actor
from ..schemas import (
    DEFAULT_FACT_TYPE,
    Claim,
    ClaimPage,
    ClaimStatus,
    ConsensusResult,
    OracleStats,
    Role,
    Submission,
    ValidationThresholds,
)
from ..schemas.oracle import (
    DEFAULT_MAJORITY_THRESHOLD_PERCENT,
    DEFAULT_MIN_SUBMISSIONS,
    DEFAULT_OUTLIER_DEVIATION_PERCENT,
    DEFAULT_STALENESS_SECONDS,
)
from .deps import get_service


router = APIRouter()


CATEGORY_STATUS: dict[ErrorCategory, int] = {
    ErrorCategory.INPUT: status.HTTP_400_BAD_REQUEST,
    ErrorCategory.AUTHORIZATION: status.HTTP_403_FORBIDDEN,
    ErrorCategory.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCategory.STATE: status.HTTP_409_CONFLICT,
    ErrorCategory.CONSENSUS: status.HTTP_409_CONFLICT,
    ErrorCategory.EXTERNAL: status.HTTP_502_BAD_GATEWAY,
    ErrorCategory.INTEGRITY: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def raise_http(e: ClaimGateError) -> NoReturn:
    raise HTTPException(status_code=CATEGORY_STATUS[e.category], detail=e.to_dict()) from e


# ============================================================
# Request/Response Models
# ============================================================

class ActorAuth(BaseModel):
    """Identity of the caller. In production, use proper auth."""
    actor_id: UUID
    actor_private_key: str


class RegisterActorRequest(BaseModel):
    """actor_id is omitted only for the genesis admin, who signs with their own key."""
    actor_id: Optional[UUID] = None
    actor_private_key: str
    name: str = Field(..., min_length=1)
    role: Role
    public_key: str
    new_actor_id: Optional[UUID] = None


class GrantRoleRequest(ActorAuth):
    role: Role


class DeactivateActorRequest(ActorAuth):
    reason: str = Field(..., min_length=3)


class ConfigureThresholdsRequest(ActorAuth):
    min_submissions: int = Field(default=DEFAULT_MIN_SUBMISSIONS, ge=1)
    majority_threshold_percent: int = Field(
        default=DEFAULT_MAJORITY_THRESHOLD_PERCENT, ge=0, le=100
    )
    outlier_deviation_percent: int = Field(default=DEFAULT_OUTLIER_DEVIATION_PERCENT, ge=0)
    staleness_seconds: int = Field(default=DEFAULT_STALENESS_SECONDS, ge=0)


class OracleGatingRequest(ActorAuth):
    enabled: bool


class SubmitOracleDataRequest(ActorAuth):
    value: int
    submitted_at: Optional[int] = Field(default=None, ge=0)
    fact_type: str = Field(default=DEFAULT_FACT_TYPE, min_length=1)


class SubmitClaimRequest(ActorAuth):
    policy_id: str = Field(..., min_length=1)
    amount: int
    fact_id: Optional[str] = None


class ApproveClaimRequest(ActorAuth):
    fact_id: Optional[str] = None


class ActorResponse(BaseModel):
    actor_id: UUID
    name: str
    role: Role
    public_key: str
    is_active: bool
    registered_by: Optional[UUID] = None

    @classmethod
    def from_actor(cls, actor: RegisteredActor) -> "ActorResponse":
        return cls(
            actor_id=actor.actor_id,
            name=actor.name,
            role=actor.role,
            public_key=actor.public_key,
            is_active=actor.is_active,
            registered_by=actor.registered_by,
        )


class OutcomeResponse(BaseModel):
    """Result of a resolution attempt."""
    fact_id: str
    outcome: str  # resolved, pending, rejected
    result: Optional[ConsensusResult] = None
    reason: Optional[str] = None
    error_code: Optional[str] = None
    consensus_percentage: Optional[int] = None
    submission_count: Optional[int] = None
    fresh_count: Optional[int] = None
    required: Optional[int] = None

    @classmethod
    def from_outcome(cls, outcome: Outcome) -> "OutcomeResponse":
        name = outcome_name(outcome)
        if isinstance(outcome, Resolved):
            return cls(
                fact_id=outcome.result.fact_id,
                outcome=name,
                result=outcome.result,
                consensus_percentage=outcome.result.consensus_percentage,
            )
        if isinstance(outcome, Rejected):
            return cls(
                fact_id=outcome.fact_id,
                outcome=name,
                error_code=outcome.code.value,
                consensus_percentage=outcome.consensus_percentage,
                required=outcome.required_percent,
            )
        if not isinstance(outcome, Pending):
            raise TypeError(f"Unknown outcome type: {type(outcome).__name__}")
        return cls(
            fact_id=outcome.fact_id,
            outcome=name,
            reason=outcome.reason,
            submission_count=outcome.submission_count,
            fresh_count=outcome.fresh_count,
            required=outcome.required,
        )


class FactResponse(BaseModel):
    fact_id: str
    fact_type: Optional[str] = None
    submission_count: int
    finalized: bool
    result: Optional[ConsensusResult] = None


class FlagResponse(BaseModel):
    enabled: bool


class PauseResponse(BaseModel):
    paused: bool


# ============================================================
# Administration
# ============================================================

@router.post(
    "/admin/actors",
    response_model=ActorResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Administration"],
    summary="Register an actor",
)
async def register_actor(
    request: RegisterActorRequest,
    service: ClaimGateService = Depends(get_service),
):
    """
    Anchor a new actor's public key.

    The first registration creates the genesis admin and must be signed
    with that admin's own key. Every later one needs an admin.
    """
    if request.actor_id is not None:
        bind_actor(request.actor_id)
    try:
        actor = service.register_actor(
            actor_id=request.actor_id,
            private_key=request.actor_private_key,
            name=request.name,
            role=request.role,
            public_key=request.public_key,
            new_actor_id=request.new_actor_id,
        )
    except ClaimGateError as e:
        raise_http(e)
    return ActorResponse.from_actor(actor)


@router.get("/admin/actors/{actor_id}", response_model=ActorResponse, tags=["Administration"])
async def get_actor(actor_id: UUID, service: ClaimGateService = Depends(get_service)):
    try:
        return ActorResponse.from_actor(service.get_actor(actor_id))
    except ClaimGateError as e:
        raise_http(e)


@router.post("/admin/actors/{actor_id}/role", response_model=ActorResponse, tags=["Administration"])
async def grant_role(
    actor_id: UUID,
    request: GrantRoleRequest,
    service: ClaimGateService = Depends(get_service),
):
    bind_actor(request.actor_id)
    try:
        actor = service.grant_role(
            request.actor_id, request.actor_private_key, actor_id, request.role
        )
    except ClaimGateError as e:
        raise_http(e)
    return ActorResponse.from_actor(actor)


@router.post(
    "/admin/actors/{actor_id}/deactivate",
    response_model=ActorResponse,
    tags=["Administration"],
)
async def deactivate_actor(
    actor_id: UUID,
    request: DeactivateActorRequest,
    service: ClaimGateService = Depends(get_service),
):
    """Deactivation is permanent; the actor's past events stay valid."""
    bind_actor(request.actor_id)
    try:
        actor = service.deactivate_actor(
            request.actor_id, request.actor_private_key, actor_id, request.reason
        )
    except ClaimGateError as e:
        raise_http(e)
    return ActorResponse.from_actor(actor)


@router.post(
    "/admin/thresholds/{fact_type}",
    response_model=ValidationThresholds,
    tags=["Administration"],
    summary="Configure consensus thresholds for a fact type",
)
async def configure_thresholds(
    fact_type: str,
    request: ConfigureThresholdsRequest,
    service: ClaimGateService = Depends(get_service),
):
    bind_actor(request.actor_id)
    thresholds = ValidationThresholds(
        min_submissions=request.min_submissions,
        majority_threshold_percent=request.majority_threshold_percent,
        outlier_deviation_percent=request.outlier_deviation_percent,
        staleness_seconds=request.staleness_seconds,
    )
    try:
        return service.configure_thresholds(
            request.actor_id, request.actor_private_key, fact_type, thresholds
        )
    except ClaimGateError as e:
        raise_http(e)


@router.get(
    "/admin/thresholds/{fact_type}",
    response_model=ValidationThresholds,
    tags=["Administration"],
)
async def get_thresholds(fact_type: str, service: ClaimGateService = Depends(get_service)):
    return service.get_thresholds(fact_type)


@router.post("/admin/oracle-gating", response_model=FlagResponse, tags=["Administration"])
async def set_oracle_gating(
    request: OracleGatingRequest,
    service: ClaimGateService = Depends(get_service),
):
    bind_actor(request.actor_id)
    try:
        enabled = service.set_oracle_gating(
            request.actor_id, request.actor_private_key, request.enabled
        )
    except ClaimGateError as e:
        raise_http(e)
    return FlagResponse(enabled=enabled)


@router.post("/admin/pause", response_model=PauseResponse, tags=["Administration"])
async def pause(request: ActorAuth, service: ClaimGateService = Depends(get_service)):
    bind_actor(request.actor_id)
    try:
        service.pause(request.actor_id, request.actor_private_key)
    except ClaimGateError as e:
        raise_http(e)
    return PauseResponse(paused=service.is_paused)


@router.post("/admin/unpause", response_model=PauseResponse, tags=["Administration"])
async def unpause(request: ActorAuth, service: ClaimGateService = Depends(get_service)):
    bind_actor(request.actor_id)
    try:
        service.unpause(request.actor_id, request.actor_private_key)
    except ClaimGateError as e:
        raise_http(e)
    return PauseResponse(paused=service.is_paused)


# ============================================================
# Oracle
# ============================================================

@router.post(
    "/facts/{fact_id}/submissions",
    response_model=OutcomeResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Oracle"],
    summary="Submit oracle data",
)
async def submit_oracle_data(
    fact_id: str,
    request: SubmitOracleDataRequest,
    service: ClaimGateService = Depends(get_service),
):
    """
    Record one report for a fact.

    Once the fact has min_submissions reports, resolution is attempted
    immediately and its outcome returned.
    """
    bind_actor(request.actor_id)
    try:
        outcome = service.submit_oracle_data(
            request.actor_id,
            request.actor_private_key,
            fact_id,
            request.value,
            submitted_at=request.submitted_at,
            fact_type=request.fact_type,
        )
    except ClaimGateError as e:
        raise_http(e)
    return OutcomeResponse.from_outcome(outcome)


@router.post("/facts/{fact_id}/resolve", response_model=OutcomeResponse, tags=["Oracle"])
async def resolve_fact(
    fact_id: str,
    request: ActorAuth,
    service: ClaimGateService = Depends(get_service),
):
    bind_actor(request.actor_id)
    try:
        outcome = service.resolve_fact(request.actor_id, request.actor_private_key, fact_id)
    except ClaimGateError as e:
        raise_http(e)
    return OutcomeResponse.from_outcome(outcome)


@router.get("/facts/{fact_id}", response_model=FactResponse, tags=["Oracle"])
async def get_fact(fact_id: str, service: ClaimGateService = Depends(get_service)):
    """Submission count and, once finalized, the consensus result."""
    result = service.get_consensus_result(fact_id)
    try:
        count = service.get_submission_count(fact_id)
    except ClaimGateError as e:
        raise_http(e)
    return FactResponse(
        fact_id=fact_id,
        fact_type=result.fact_type if result else None,
        submission_count=count,
        finalized=result is not None,
        result=result,
    )


@router.get("/facts/{fact_id}/result", response_model=ConsensusResult, tags=["Oracle"])
async def get_consensus_result(fact_id: str, service: ClaimGateService = Depends(get_service)):
    """The finalized consensus result. 409 Pending until the fact resolves."""
    try:
        return service.require_consensus_result(fact_id)
    except ClaimGateError as e:
        raise_http(e)


@router.get("/facts/{fact_id}/submissions", response_model=list[Submission], tags=["Oracle"])
async def get_pending_submissions(fact_id: str, service: ClaimGateService = Depends(get_service)):
    try:
        return list(service.get_pending_submissions(fact_id))
    except ClaimGateError as e:
        raise_http(e)


@router.get("/oracle/stats", response_model=OracleStats, tags=["Oracle"])
async def get_oracle_stats(service: ClaimGateService = Depends(get_service)):
    return service.get_oracle_stats()


# ============================================================
# Claims
# ============================================================

@router.post(
    "/claims",
    response_model=Claim,
    status_code=status.HTTP_201_CREATED,
    tags=["Claims"],
    summary="Submit a claim",
)
async def submit_claim(
    request: SubmitClaimRequest,
    service: ClaimGateService = Depends(get_service),
):
    """
    File a claim against a policy.

    One claim per policy. The amount must be positive and within coverage,
    and the policy must not have ended more than the grace period ago.
    """
    bind_actor(request.actor_id)
    try:
        return service.submit_claim(
            request.actor_id,
            request.actor_private_key,
            request.policy_id,
            request.amount,
            fact_id=request.fact_id,
        )
    except ClaimGateError as e:
        raise_http(e)


@router.post("/claims/{claim_id}/review", response_model=Claim, tags=["Claims"])
async def start_review(
    claim_id: int,
    request: ActorAuth,
    service: ClaimGateService = Depends(get_service),
):
    bind_actor(request.actor_id)
    try:
        return service.start_review(request.actor_id, request.actor_private_key, claim_id)
    except ClaimGateError as e:
        raise_http(e)


@router.post("/claims/{claim_id}/approve", response_model=Claim, tags=["Claims"])
async def approve_claim(
    claim_id: int,
    request: ApproveClaimRequest,
    service: ClaimGateService = Depends(get_service),
):
    """With oracle gating on, the linked fact must already be resolved."""
    bind_actor(request.actor_id)
    try:
        return service.approve(
            request.actor_id, request.actor_private_key, claim_id, fact_id=request.fact_id
        )
    except ClaimGateError as e:
        raise_http(e)


@router.post("/claims/{claim_id}/reject", response_model=Claim, tags=["Claims"])
async def reject_claim(
    claim_id: int,
    request: ActorAuth,
    service: ClaimGateService = Depends(get_service),
):
    bind_actor(request.actor_id)
    try:
        return service.reject(request.actor_id, request.actor_private_key, claim_id)
    except ClaimGateError as e:
        raise_http(e)


@router.post("/claims/{claim_id}/settle", response_model=Claim, tags=["Claims"])
async def settle_claim(
    claim_id: int,
    request: ActorAuth,
    service: ClaimGateService = Depends(get_service),
):
    """Pays the claimant from the risk pool. A second call is refused."""
    bind_actor(request.actor_id)
    try:
        return service.settle(request.actor_id, request.actor_private_key, claim_id)
    except ClaimGateError as e:
        raise_http(e)


@router.get("/claims/{claim_id}", response_model=Claim, tags=["Claims"])
async def get_claim(claim_id: int, service: ClaimGateService = Depends(get_service)):
    try:
        return service.get_claim(claim_id)
    except ClaimGateError as e:
        raise_http(e)


@router.get("/claims", response_model=ClaimPage, tags=["Claims"])
async def list_claims(
    status_filter: Optional[ClaimStatus] = Query(default=None, alias="status"),
    start: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=0),
    service: ClaimGateService = Depends(get_service),
):
    """Paginated by claim_id; limit is capped at 50 and 0 means 50."""
    try:
        return service.list_claims(status=status_filter, start=start, limit=limit)
    except ClaimGateError as e:
        raise_http(e)
