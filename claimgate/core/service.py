"""
ClaimGate Service - the transactional facade

Every mutating operation follows the same path:

    1. take the service lock
    2. refuse if paused (participant operations only)
    3. authorize(actor, key, capability)
    4. validate against the latest committed projections (raises, no writes)
    5. journal.record(...) - one signed, chained event, with any external
       side effect (pool reserve / payout) run before commit
    6. _apply_event(event) - update projections from the event itself

Replay (load_from_events / load_from_store) runs step 6 alone over the
stored history, so a rebuilt service is the same service.

Rules enforced here:
- Oracle data: one submission per (fact, oracle), never in the future, a
  fact's type is bound by its first submission, finalized facts are closed
- Resolution runs automatically once min_submissions is reached and can be
  requested at any time with resolve_fact()
- Claims: one per policy, coverage and grace window enforced, approval gated
  on a resolved fact when oracle gating is on, settlement pays out once
"""

import time
from contextlib import contextmanager
from threading import RLock
from typing import Any, Callable, Iterator, Optional, TYPE_CHECKING
from uuid import UUID, uuid4

from ..schemas import (
    DEFAULT_FACT_TYPE,
    ActorDeactivatedPayload,
    ActorRegisteredPayload,
    ActorRoleChangedPayload,
    CLAIM_ACTION_EVENTS,
    Capability,
    Claim,
    ClaimAction,
    ClaimPage,
    ClaimStatus,
    ClaimSubmittedPayload,
    ClaimTransitionPayload,
    ConsensusResult,
    EventType,
    FactResolvedPayload,
    JournalEvent,
    OracleGatingSetPayload,
    OracleStats,
    PauseSetPayload,
    Role,
    Submission,
    SubmissionRecordedPayload,
    ThresholdsConfiguredPayload,
    ValidationThresholds,
)
from ..observability import get_logger, get_metrics
from .authorization import Authorizer, RegisteredActor
from .claims import TRANSITIONS, ClaimStateMachine
from .config import ServiceConfig
from .consensus import Outcome, Pending, Rejected, Resolved, outcome_name, resolve
from .errors import ClaimGateError, ErrorCode
from .external import InMemoryPolicyRegistry, InMemoryRiskPool, PolicyRegistry, RiskPool
from .hasher import Hasher
from .journal import Journal
from .registry import FactRegistry
from .settlement import SettlementCoordinator
from .signer import Signer
from .submissions import SubmissionLedger

if TYPE_CHECKING:
    from ..db.store import EventStore

logger = get_logger(__name__)

Clock = Callable[[], int]


def system_clock() -> int:
    """UNIX seconds."""
    return int(time.time())


class ClaimGateService:
    """
    Oracle consensus gating a claim settlement workflow.

    Thread safety: every public method holds one re-entrant lock, so
    transactions are applied one at a time in admission order.
    """

    def __init__(
        self,
        journal: Optional[Journal] = None,
        policy_registry: Optional[PolicyRegistry] = None,
        risk_pool: Optional[RiskPool] = None,
        config: Optional[ServiceConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self._journal = journal or Journal()
        self._policies = policy_registry if policy_registry is not None else InMemoryPolicyRegistry()
        self._pool = risk_pool if risk_pool is not None else InMemoryRiskPool()
        self._config = config or ServiceConfig()
        self._clock = clock or system_clock
        self._lock = RLock()

        # Projections of the journal
        self._authorizer = Authorizer()
        self._submissions = SubmissionLedger()
        self._registry = FactRegistry()
        self._claims = ClaimStateMachine(self._registry, oracle_gating=self._config.oracle_gating)
        self._settlement = SettlementCoordinator(self._pool, self._claims)
        self._thresholds: dict[str, ValidationThresholds] = {}
        self._thresholds_version = 0
        self._paused = False

    # ================================================================
    # PROPERTIES
    # ================================================================

    @property
    def journal(self) -> Journal:
        return self._journal

    @property
    def config(self) -> ServiceConfig:
        return self._config

    @property
    def policy_registry(self) -> PolicyRegistry:
        return self._policies

    @property
    def risk_pool(self) -> RiskPool:
        return self._pool

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def oracle_gating(self) -> bool:
        return self._claims.oracle_gating

    @property
    def has_genesis_admin(self) -> bool:
        return self._authorizer.has_genesis

    # ================================================================
    # PLUMBING
    # ================================================================

    @contextmanager
    def _operation(self, operation: str, **fields: Any) -> Iterator[None]:
        """Serialize one transaction and log it if it is rejected."""
        with self._lock:
            try:
                yield
            except ClaimGateError as e:
                get_metrics().record_rejection()
                logger.warning(
                    f"{operation} rejected: {e.message}",
                    operation=operation,
                    error_code=e.code.value,
                    error_category=e.category.value,
                    **{k: str(v) for k, v in fields.items()},
                )
                raise

    def _require_not_paused(self) -> None:
        if self._paused:
            raise ClaimGateError(ErrorCode.PAUSED, "Service is paused")

    def _authorize(self, actor_id: UUID, private_key: str, capability: Capability) -> RegisteredActor:
        return self._authorizer.authorize(actor_id, private_key, capability)

    def _commit(
        self,
        event_type: EventType,
        entity_id: Any,
        entity_type: str,
        payload,
        actor_id: UUID,
        private_key: str,
        before_commit: Optional[Callable[[], None]] = None,
    ) -> Any:
        """Journal one event and apply it; returns what the projection returns."""
        event = self._journal.record(
            event_type=event_type,
            entity_id=entity_id,
            entity_type=entity_type,
            payload=payload,
            actor_id=actor_id,
            actor_private_key=private_key,
            before_commit=before_commit,
        )
        return self._apply_event(event)

    # ================================================================
    # ADMINISTRATION: ACTORS
    # ================================================================

    def register_actor(
        self,
        actor_id: Optional[UUID],
        private_key: str,
        name: str,
        role: Role,
        public_key: str,
        new_actor_id: Optional[UUID] = None,
    ) -> RegisteredActor:
        """
        Register an actor and anchor their public key.

        The first actor is the genesis admin: actor_id must be None and the
        registration is signed with the new actor's own key. After that only
        an admin may register actors.
        """
        new_actor_id = new_actor_id or uuid4()
        with self._operation("register_actor", target_id=new_actor_id):
            genesis = not self._authorizer.has_genesis

            if genesis:
                if not Signer.key_matches(private_key, public_key):
                    raise ClaimGateError(
                        ErrorCode.UNAUTHORIZED,
                        "Genesis registration must be signed with the registered key",
                        actor_id=new_actor_id,
                    )
                signer_id = new_actor_id
                registered_by = None
            else:
                if actor_id is None:
                    raise ClaimGateError(
                        ErrorCode.UNAUTHORIZED, "Only an admin can register actors"
                    )
                self._authorize(actor_id, private_key, Capability.ADMINISTER)
                signer_id = actor_id
                registered_by = actor_id

            payload = ActorRegisteredPayload(
                actor_id=new_actor_id,
                name=name,
                role=role,
                public_key=public_key,
                registered_by=registered_by,
            )
            self._authorizer.check_register(payload)

            actor = self._commit(
                EventType.ACTOR_REGISTERED, new_actor_id, "actor", payload,
                signer_id, private_key,
            )
            logger.info(
                "Actor registered",
                target_id=str(new_actor_id),
                role=role.value,
                genesis=genesis,
            )
            return actor

    def grant_role(
        self,
        actor_id: UUID,
        private_key: str,
        target_id: UUID,
        role: Role,
    ) -> RegisteredActor:
        with self._operation("grant_role", target_id=target_id):
            self._authorize(actor_id, private_key, Capability.ADMINISTER)
            self._authorizer.check_target(target_id)

            payload = ActorRoleChangedPayload(actor_id=target_id, new_role=role, changed_by=actor_id)
            actor = self._commit(
                EventType.ACTOR_ROLE_CHANGED, target_id, "actor", payload, actor_id, private_key
            )
            logger.info("Actor role changed", target_id=str(target_id), role=role.value)
            return actor

    def deactivate_actor(
        self,
        actor_id: UUID,
        private_key: str,
        target_id: UUID,
        reason: str,
    ) -> RegisteredActor:
        """Permanent. Past events signed by the actor stay valid."""
        with self._operation("deactivate_actor", target_id=target_id):
            self._authorize(actor_id, private_key, Capability.ADMINISTER)
            self._authorizer.check_target(target_id)

            payload = ActorDeactivatedPayload(
                actor_id=target_id, deactivated_by=actor_id, reason=reason
            )
            actor = self._commit(
                EventType.ACTOR_DEACTIVATED, target_id, "actor", payload, actor_id, private_key
            )
            logger.info("Actor deactivated", target_id=str(target_id))
            return actor

    def get_actor(self, actor_id: UUID) -> RegisteredActor:
        actor = self._authorizer.get(actor_id)
        if actor is None:
            raise ClaimGateError(
                ErrorCode.ACTOR_NOT_FOUND, f"Actor {actor_id} does not exist", actor_id=actor_id
            )
        return actor

    def list_actors(self, active_only: bool = False) -> list[RegisteredActor]:
        return self._authorizer.list_actors(active_only=active_only)

    # ================================================================
    # ADMINISTRATION: CONFIGURATION
    # ================================================================

    def configure_thresholds(
        self,
        actor_id: UUID,
        private_key: str,
        fact_type: str,
        thresholds: ValidationThresholds,
    ) -> ValidationThresholds:
        """
        Replace the thresholds for a fact type.

        The stored copy gets the next configuration version; resolutions
        already finished keep the version they were computed under.
        """
        with self._operation("configure_thresholds", fact_type=fact_type):
            self._authorize(actor_id, private_key, Capability.ADMINISTER)
            if not fact_type:
                raise ClaimGateError(ErrorCode.INVALID_INPUT, "fact_type must not be empty")

            versioned = thresholds.model_copy(update={"version": self._thresholds_version + 1})
            payload = ThresholdsConfiguredPayload(fact_type=fact_type, thresholds=versioned)
            stored = self._commit(
                EventType.THRESHOLDS_CONFIGURED, fact_type, "config", payload,
                actor_id, private_key,
            )
            logger.info(
                "Thresholds configured",
                fact_type=fact_type,
                version=stored.version,
                min_submissions=stored.min_submissions,
                majority_threshold_percent=stored.majority_threshold_percent,
                outlier_deviation_percent=stored.outlier_deviation_percent,
                staleness_seconds=stored.staleness_seconds,
            )
            return stored

    def get_thresholds(self, fact_type: str = DEFAULT_FACT_TYPE) -> ValidationThresholds:
        """Configured thresholds for the type, or the service defaults (version 0)."""
        return self._thresholds.get(fact_type, self._config.default_thresholds)

    def set_oracle_gating(self, actor_id: UUID, private_key: str, enabled: bool) -> bool:
        with self._operation("set_oracle_gating"):
            self._authorize(actor_id, private_key, Capability.ADMINISTER)
            self._commit(
                EventType.ORACLE_GATING_SET, "oracle_gating", "config",
                OracleGatingSetPayload(enabled=enabled), actor_id, private_key,
            )
            logger.info("Oracle gating set", enabled=enabled)
            return enabled

    def pause(self, actor_id: UUID, private_key: str) -> None:
        self._set_paused(actor_id, private_key, True)

    def unpause(self, actor_id: UUID, private_key: str) -> None:
        self._set_paused(actor_id, private_key, False)

    def _set_paused(self, actor_id: UUID, private_key: str, paused: bool) -> None:
        with self._operation("pause" if paused else "unpause"):
            self._authorize(actor_id, private_key, Capability.ADMINISTER)
            if self._paused == paused:
                raise ClaimGateError(
                    ErrorCode.INVALID_STATE_TRANSITION,
                    "Service is already paused" if paused else "Service is not paused",
                )
            self._commit(
                EventType.PAUSE_SET, "pause", "config",
                PauseSetPayload(paused=paused), actor_id, private_key,
            )
            logger.info("Service paused" if paused else "Service unpaused")

    # ================================================================
    # ORACLE
    # ================================================================

    def submit_oracle_data(
        self,
        actor_id: UUID,
        private_key: str,
        fact_id: str,
        value: int,
        submitted_at: Optional[int] = None,
        fact_type: str = DEFAULT_FACT_TYPE,
    ) -> Outcome:
        """
        Record one oracle report, then try to resolve the fact.

        Returns the resolution outcome: Pending until min_submissions is
        reached, otherwise whatever the resolver decided.
        """
        with self._operation("submit_oracle_data", fact_id=fact_id):
            self._require_not_paused()
            self._authorize(actor_id, private_key, Capability.SUBMIT_ORACLE_DATA)

            now = self._clock()
            if submitted_at is None:
                submitted_at = now

            self._registry.check_not_finalized(fact_id)
            self._submissions.validate(fact_id, actor_id, submitted_at, now, fact_type)

            payload = SubmissionRecordedPayload(
                fact_id=fact_id,
                fact_type=fact_type,
                submitter_id=actor_id,
                value=value,
                submitted_at=submitted_at,
                recorded_at=now,
            )
            self._commit(
                EventType.SUBMISSION_RECORDED, fact_id, "fact", payload, actor_id, private_key
            )
            get_metrics().record_submission()

            count = self._submissions.count(fact_id)
            thresholds = self.get_thresholds(fact_type)
            logger.info(
                "Oracle submission recorded",
                fact_id=fact_id,
                submission_count=count,
                min_submissions=thresholds.min_submissions,
            )

            if count < thresholds.min_submissions:
                outcome = Pending(
                    fact_id=fact_id,
                    reason="insufficient_submissions",
                    submission_count=count,
                    fresh_count=count,
                    required=thresholds.min_submissions,
                )
                get_metrics().record_resolution(outcome_name(outcome))
                return outcome

            return self._attempt_resolution(fact_id, actor_id, private_key, now)

    def resolve_fact(self, actor_id: UUID, private_key: str, fact_id: str) -> Outcome:
        """Resolve on demand. Safe to call repeatedly until it resolves."""
        with self._operation("resolve_fact", fact_id=fact_id):
            self._require_not_paused()
            self._authorize(actor_id, private_key, Capability.RESOLVE)
            self._registry.check_not_finalized(fact_id)
            if self._submissions.count(fact_id) == 0:
                raise ClaimGateError(
                    ErrorCode.FACT_NOT_FOUND,
                    f"Fact '{fact_id}' has no submissions",
                    fact_id=fact_id,
                )
            return self._attempt_resolution(fact_id, actor_id, private_key, self._clock())

    def _attempt_resolution(
        self,
        fact_id: str,
        actor_id: UUID,
        private_key: str,
        now: int,
    ) -> Outcome:
        fact_type = self._submissions.fact_type(fact_id) or DEFAULT_FACT_TYPE
        thresholds = self.get_thresholds(fact_type)
        snapshot = self._submissions.snapshot(fact_id)

        outcome = resolve(fact_id, snapshot, thresholds, now, fact_type=fact_type)
        get_metrics().record_resolution(outcome_name(outcome))

        if isinstance(outcome, Resolved):
            self._commit(
                EventType.FACT_RESOLVED, fact_id, "fact",
                FactResolvedPayload(result=outcome.result), actor_id, private_key,
            )
            logger.info(
                "Fact resolved",
                fact_id=fact_id,
                consensus_value=outcome.result.consensus_value,
                consensus_percentage=outcome.result.consensus_percentage,
                included_count=outcome.result.included_count,
                total_count=outcome.result.total_count,
                thresholds_version=outcome.result.thresholds_version,
            )
        elif isinstance(outcome, Rejected):
            logger.warning(
                "Consensus not reached",
                fact_id=fact_id,
                consensus_percentage=outcome.consensus_percentage,
                required_percent=outcome.required_percent,
            )
        else:
            logger.info(
                "Fact pending",
                fact_id=fact_id,
                reason=outcome.reason,
                fresh_count=outcome.fresh_count,
                required=outcome.required,
            )
        return outcome

    def get_consensus_result(self, fact_id: str) -> Optional[ConsensusResult]:
        return self._registry.get(fact_id)

    def require_consensus_result(self, fact_id: str) -> ConsensusResult:
        """The finalized result; Pending while oracles are still reporting."""
        result = self._registry.get(fact_id)
        if result is not None:
            return result
        if self._submissions.count(fact_id) == 0:
            raise ClaimGateError(
                ErrorCode.FACT_NOT_FOUND, f"Fact '{fact_id}' has no submissions", fact_id=fact_id
            )
        raise ClaimGateError(
            ErrorCode.PENDING,
            f"Fact '{fact_id}' has no consensus result yet",
            fact_id=fact_id,
            submission_count=self._submissions.count(fact_id),
        )

    def get_pending_submissions(self, fact_id: str) -> tuple[Submission, ...]:
        """All submissions for a fact in admission order."""
        if self._submissions.count(fact_id) == 0:
            raise ClaimGateError(
                ErrorCode.FACT_NOT_FOUND, f"Fact '{fact_id}' has no submissions", fact_id=fact_id
            )
        return self._submissions.snapshot(fact_id)

    def get_submission_count(self, fact_id: str) -> int:
        if self._submissions.count(fact_id) == 0:
            raise ClaimGateError(
                ErrorCode.FACT_NOT_FOUND, f"Fact '{fact_id}' has no submissions", fact_id=fact_id
            )
        return self._submissions.count(fact_id)

    def get_oracle_stats(self) -> OracleStats:
        total = self._submissions.total_submissions()
        facts = len(self._submissions.facts())
        return OracleStats(
            total_submissions=total,
            facts_with_submissions=facts,
            total_consensus_reached=self._registry.count(),
            average_submissions_per_fact=total // facts if facts else 0,
        )

    # ================================================================
    # CLAIMS
    # ================================================================

    def submit_claim(
        self,
        actor_id: UUID,
        private_key: str,
        policy_id: str,
        amount: int,
        fact_id: Optional[str] = None,
    ) -> Claim:
        with self._operation("submit_claim", policy_id=policy_id):
            self._require_not_paused()
            self._authorize(actor_id, private_key, Capability.SUBMIT_CLAIM)

            now = self._clock()
            self._claims.validate_submit(policy_id, amount)
            policy = self._policies.get_policy(policy_id)
            self._claims.validate_policy_terms(
                policy, amount, now, self._config.grace_period_seconds
            )

            claim_id = self._claims.next_claim_id
            payload = ClaimSubmittedPayload(
                claim_id=claim_id,
                policy_id=policy_id,
                claimant_id=actor_id,
                amount=amount,
                fact_id=fact_id,
                submitted_at=now,
                coverage_amount=policy.coverage_amount,
                policy_end_time=policy.end_time,
            )
            claim = self._commit(
                EventType.CLAIM_SUBMITTED, claim_id, "claim", payload, actor_id, private_key
            )
            get_metrics().record_claim_transition("submit")
            logger.info(
                "Claim submitted",
                claim_id=claim_id,
                policy_id=policy_id,
                amount=amount,
                fact_id=fact_id,
            )
            return claim

    def start_review(self, actor_id: UUID, private_key: str, claim_id: int) -> Claim:
        return self._transition(actor_id, private_key, claim_id, ClaimAction.START_REVIEW)

    def reject(self, actor_id: UUID, private_key: str, claim_id: int) -> Claim:
        return self._transition(actor_id, private_key, claim_id, ClaimAction.REJECT)

    def approve(
        self,
        actor_id: UUID,
        private_key: str,
        claim_id: int,
        fact_id: Optional[str] = None,
    ) -> Claim:
        """
        Approve a claim under review and reserve its amount in the pool.

        With oracle gating on, the linked fact (the claim's own, or fact_id
        when the claim has none) must already be resolved. If the pool
        cannot reserve the amount the claim stays UnderReview.
        """
        return self._transition(actor_id, private_key, claim_id, ClaimAction.APPROVE, fact_id)

    def _transition(
        self,
        actor_id: UUID,
        private_key: str,
        claim_id: int,
        action: ClaimAction,
        fact_id: Optional[str] = None,
    ) -> Claim:
        with self._operation(action.value, claim_id=claim_id):
            self._require_not_paused()
            self._authorize(actor_id, private_key, Capability.PROCESS_CLAIMS)

            claim, linked = self._claims.check_transition(claim_id, action, fact_id)
            from_status, to_status = TRANSITIONS[action]
            payload = ClaimTransitionPayload(
                claim_id=claim_id,
                action=action,
                from_status=from_status,
                to_status=to_status,
                occurred_at=self._clock(),
                fact_id=linked,
                amount=claim.amount if action == ClaimAction.APPROVE else None,
            )

            reserved = []

            def reserve() -> None:
                self._pool.reserve(claim.amount)
                reserved.append(claim.amount)

            try:
                updated = self._commit(
                    CLAIM_ACTION_EVENTS[action], claim_id, "claim", payload,
                    actor_id, private_key,
                    before_commit=reserve if action == ClaimAction.APPROVE else None,
                )
            except Exception:
                if reserved:
                    self._pool.release(reserved[0])
                raise

            get_metrics().record_claim_transition(action.value)
            logger.info(
                "Claim transitioned",
                claim_id=claim_id,
                action=action.value,
                status=updated.status.value,
                fact_id=updated.fact_id,
            )
            return updated

    def settle(self, actor_id: UUID, private_key: str, claim_id: int) -> Claim:
        """
        Pay the claimant and settle the claim. At most one payout per claim.

        A pool failure is logged and re-raised; the claim stays Approved.
        """
        with self._operation("settle", claim_id=claim_id):
            self._require_not_paused()
            self._authorize(actor_id, private_key, Capability.PROCESS_CLAIMS)

            def commit(payload: ClaimTransitionPayload, pay: Callable[[], None]) -> None:
                self._journal.record(
                    event_type=EventType.CLAIM_SETTLED,
                    entity_id=claim_id,
                    entity_type="claim",
                    payload=payload,
                    actor_id=actor_id,
                    actor_private_key=private_key,
                    before_commit=pay,
                )

            try:
                claim = self._settlement.settle(claim_id, self._clock(), commit=commit)
            except ClaimGateError as e:
                if e.code == ErrorCode.INSUFFICIENT_BALANCE:
                    get_metrics().record_settlement(success=False)
                    logger.error(
                        "Payout failed",
                        claim_id=claim_id,
                        error_code=e.code.value,
                        error=e.message,
                    )
                raise

            get_metrics().record_settlement(success=True)
            get_metrics().record_claim_transition(ClaimAction.SETTLE.value)
            logger.info(
                "Claim settled",
                claim_id=claim_id,
                amount=claim.amount,
                claimant_id=str(claim.claimant_id),
            )
            return claim

    def get_claim(self, claim_id: int) -> Claim:
        return self._claims.require(claim_id)

    def is_settled(self, claim_id: int) -> bool:
        return self._settlement.is_settled(claim_id)

    def unrecorded_payouts(self) -> list[ClaimTransitionPayload]:
        """Payouts made whose settle event never reached the journal."""
        return self._settlement.unrecorded_payouts()

    def claim_count(self) -> int:
        return self._claims.claim_count()

    def list_claims(
        self,
        status: Optional[ClaimStatus] = None,
        start: int = 0,
        limit: int = 50,
    ) -> ClaimPage:
        return self._claims.list_claims(status=status, start=start, limit=limit)

    # ================================================================
    # PROJECTIONS
    # ================================================================

    def _apply_event(self, event: JournalEvent) -> Any:
        """
        Apply one committed event to the projections.

        Live operations and replay both come through here.
        """
        payload = event.payload
        event_type = event.event_type

        if event_type == EventType.ACTOR_REGISTERED:
            return self._authorizer.apply_registered(ActorRegisteredPayload.model_validate(payload))

        if event_type == EventType.ACTOR_ROLE_CHANGED:
            return self._authorizer.apply_role_changed(ActorRoleChangedPayload.model_validate(payload))

        if event_type == EventType.ACTOR_DEACTIVATED:
            return self._authorizer.apply_deactivated(ActorDeactivatedPayload.model_validate(payload))

        if event_type == EventType.THRESHOLDS_CONFIGURED:
            configured = ThresholdsConfiguredPayload.model_validate(payload)
            self._thresholds[configured.fact_type] = configured.thresholds
            self._thresholds_version = max(self._thresholds_version, configured.thresholds.version)
            return configured.thresholds

        if event_type == EventType.ORACLE_GATING_SET:
            self._claims.oracle_gating = OracleGatingSetPayload.model_validate(payload).enabled
            return self._claims.oracle_gating

        if event_type == EventType.PAUSE_SET:
            self._paused = PauseSetPayload.model_validate(payload).paused
            return self._paused

        if event_type == EventType.SUBMISSION_RECORDED:
            recorded = SubmissionRecordedPayload.model_validate(payload)
            return self._submissions.append(
                Submission(
                    fact_id=recorded.fact_id,
                    submitter_id=recorded.submitter_id,
                    value=recorded.value,
                    submitted_at=recorded.submitted_at,
                ),
                recorded.fact_type,
            )

        if event_type == EventType.FACT_RESOLVED:
            result = FactResolvedPayload.model_validate(payload).result
            if result.snapshot_digest is not None:
                digest = Hasher.hash_snapshot(
                    result.fact_id, list(self._submissions.snapshot(result.fact_id))
                )
                if digest != result.snapshot_digest:
                    raise ClaimGateError(
                        ErrorCode.CHAIN_INTEGRITY,
                        f"Consensus result for '{result.fact_id}' does not match "
                        f"its recorded submissions",
                        sequence_number=event.sequence_number,
                    )
            return self._registry.finalize(result)

        if event_type == EventType.CLAIM_SUBMITTED:
            return self._claims.apply_submitted(ClaimSubmittedPayload.model_validate(payload))

        if event_type == EventType.CLAIM_SETTLED:
            return self._settlement.apply_settled(ClaimTransitionPayload.model_validate(payload))

        if event_type in (
            EventType.CLAIM_REVIEW_STARTED,
            EventType.CLAIM_APPROVED,
            EventType.CLAIM_REJECTED,
        ):
            return self._claims.apply_transition(ClaimTransitionPayload.model_validate(payload))

        raise ClaimGateError(
            ErrorCode.CHAIN_INTEGRITY,
            f"Unknown event type {event_type} at sequence {event.sequence_number}",
        )

    # ================================================================
    # REPLAY
    # ================================================================

    @classmethod
    def load_from_events(
        cls,
        events: list[JournalEvent],
        verify: bool = True,
        event_store: Optional["EventStore"] = None,
        **kwargs: Any,
    ) -> "ClaimGateService":
        """
        Rebuild a service from a list of events (e.g. an export).

        With verify=True the whole chain is checked first, then every
        signature is checked against the actor registry as it is rebuilt,
        so an event signed by a key that was not registered at that point
        fails the load.

        If event_store is None the events are loaded into a fresh
        InMemoryEventStore. A given store must already hold these events.

        Raises:
            ClaimGateError(CHAIN_INTEGRITY): the history has been tampered with
        """
        ordered = sorted(events, key=lambda e: e.sequence_number)

        if verify:
            Journal.verify_event_chain(ordered)

        if event_store is None:
            from ..db.store import InMemoryEventStore
            event_store = InMemoryEventStore()
            event_store.load(ordered)

        service = cls(journal=Journal(event_store), **kwargs)
        service._replay(ordered, verify=verify)
        return service

    @classmethod
    def load_from_store(
        cls,
        event_store: "EventStore",
        verify: bool = True,
        **kwargs: Any,
    ) -> "ClaimGateService":
        """The usual way to start a service against a persistent store."""
        return cls.load_from_events(
            event_store.list_all(), verify=verify, event_store=event_store, **kwargs
        )

    def _replay(self, events: list[JournalEvent], verify: bool) -> None:
        with self._lock:
            for event in events:
                if verify:
                    self._verify_signer(event)
                self._apply_event(event)
        logger.info(
            "Service rebuilt from journal",
            event_count=len(events),
            claim_count=self._claims.claim_count(),
            facts_resolved=self._registry.count(),
        )

    def _verify_signer(self, event: JournalEvent) -> None:
        if event.is_genesis:
            if event.event_type != EventType.ACTOR_REGISTERED:
                raise ClaimGateError(
                    ErrorCode.CHAIN_INTEGRITY, "Genesis event must register the first admin"
                )
            public_key = ActorRegisteredPayload.model_validate(event.payload).public_key
        else:
            actor = self._authorizer.get(event.created_by)
            if actor is None:
                raise ClaimGateError(
                    ErrorCode.CHAIN_INTEGRITY,
                    f"Event {event.sequence_number} signed by unknown actor {event.created_by}",
                    sequence_number=event.sequence_number,
                )
            public_key = actor.public_key
        Journal.verify_signature(event, public_key)
