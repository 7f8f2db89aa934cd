"""Tests for the claim state machine, on its own (no journal, no auth)."""

from uuid import uuid4

import pytest

from claimgate.core import ClaimGateError, ClaimStateMachine, ErrorCategory, ErrorCode, FactRegistry
from claimgate.core.claims import DEFAULT_GRACE_PERIOD_SECONDS, TRANSITIONS
from claimgate.schemas import (
    ClaimAction,
    ClaimStatus,
    ClaimSubmittedPayload,
    ClaimTransitionPayload,
    ConsensusResult,
    PolicyInfo,
    PolicyStatus,
)


NOW = 1_700_000_000


def submit(machine, policy_id="POL-1", amount=500, fact_id=None):
    payload = ClaimSubmittedPayload(
        claim_id=machine.next_claim_id,
        policy_id=policy_id,
        claimant_id=uuid4(),
        amount=amount,
        fact_id=fact_id,
        submitted_at=NOW,
        coverage_amount=1000,
        policy_end_time=NOW + 1000,
    )
    return machine.apply_submitted(payload)


def move(machine, claim_id, action, fact_id=None):
    claim, linked = machine.check_transition(claim_id, action, fact_id)
    from_status, to_status = TRANSITIONS[action]
    return machine.apply_transition(ClaimTransitionPayload(
        claim_id=claim_id,
        action=action,
        from_status=from_status,
        to_status=to_status,
        occurred_at=NOW + 10,
        fact_id=linked,
    ))


def finalize(registry, fact_id):
    registry.finalize(ConsensusResult(
        fact_id=fact_id,
        consensus_value=500,
        consensus_percentage=100,
        included_count=3,
        total_count=3,
        resolved_at=NOW,
    ))


class TestSubmitValidation:

    @pytest.fixture
    def machine(self):
        return ClaimStateMachine(FactRegistry())

    @pytest.fixture
    def policy(self):
        return PolicyInfo(policy_id="POL-1", coverage_amount=1000, end_time=NOW)

    def test_non_positive_amount(self, machine):
        for amount in (0, -5):
            with pytest.raises(ClaimGateError) as exc_info:
                machine.validate_submit("POL-1", amount)
            assert exc_info.value.code == ErrorCode.INVALID_AMOUNT

    def test_one_claim_per_policy(self, machine):
        submit(machine, policy_id="POL-1")

        with pytest.raises(ClaimGateError) as exc_info:
            machine.validate_submit("POL-1", 100)

        assert exc_info.value.code == ErrorCode.CLAIM_ALREADY_EXISTS

    def test_coverage_exceeded(self, machine, policy):
        with pytest.raises(ClaimGateError) as exc_info:
            machine.validate_policy_terms(policy, 1001, NOW)
        assert exc_info.value.code == ErrorCode.COVERAGE_EXCEEDED

    def test_amount_equal_to_coverage_allowed(self, machine, policy):
        machine.validate_policy_terms(policy, 1000, NOW)

    def test_grace_period_boundary(self, machine, policy):
        machine.validate_policy_terms(policy, 100, NOW + DEFAULT_GRACE_PERIOD_SECONDS)

        with pytest.raises(ClaimGateError) as exc_info:
            machine.validate_policy_terms(policy, 100, NOW + DEFAULT_GRACE_PERIOD_SECONDS + 1)
        assert exc_info.value.code == ErrorCode.POLICY_EXPIRED

    def test_cancelled_policy(self, machine):
        policy = PolicyInfo(
            policy_id="POL-1", coverage_amount=1000, end_time=NOW, status=PolicyStatus.CANCELLED
        )
        with pytest.raises(ClaimGateError) as exc_info:
            machine.validate_policy_terms(policy, 100, NOW)
        assert exc_info.value.code == ErrorCode.INVALID_POLICY_STATE

    def test_claim_ids_are_sequential(self, machine):
        first = submit(machine, policy_id="POL-1")
        second = submit(machine, policy_id="POL-2")

        assert (first.claim_id, second.claim_id) == (1, 2)
        assert first.status == ClaimStatus.SUBMITTED


class TestTransitions:

    @pytest.fixture
    def registry(self):
        return FactRegistry()

    @pytest.fixture
    def machine(self, registry):
        return ClaimStateMachine(registry, oracle_gating=True)

    def test_happy_path(self, machine, registry):
        claim = submit(machine, fact_id="fact-1")
        finalize(registry, "fact-1")

        assert move(machine, claim.claim_id, ClaimAction.START_REVIEW).status == ClaimStatus.UNDER_REVIEW
        approved = move(machine, claim.claim_id, ClaimAction.APPROVE)
        assert approved.status == ClaimStatus.APPROVED
        assert approved.updated_at == NOW + 10
        assert move(machine, claim.claim_id, ClaimAction.SETTLE).status == ClaimStatus.SETTLED

    def test_approve_from_submitted_is_invalid(self, machine):
        claim = submit(machine)

        with pytest.raises(ClaimGateError) as exc_info:
            machine.check_transition(claim.claim_id, ClaimAction.APPROVE)

        assert exc_info.value.code == ErrorCode.INVALID_STATE_TRANSITION
        assert exc_info.value.category == ErrorCategory.STATE
        assert "is submitted, not under_review" in exc_info.value.message

    def test_terminal_states_have_no_exits(self, machine):
        claim = submit(machine)
        move(machine, claim.claim_id, ClaimAction.START_REVIEW)
        move(machine, claim.claim_id, ClaimAction.REJECT)

        for action in ClaimAction:
            with pytest.raises(ClaimGateError) as exc_info:
                machine.check_transition(claim.claim_id, action)
            assert exc_info.value.code == ErrorCode.INVALID_STATE_TRANSITION
            assert "already rejected" in exc_info.value.message

    def test_unknown_claim(self, machine):
        with pytest.raises(ClaimGateError) as exc_info:
            machine.check_transition(99, ClaimAction.START_REVIEW)
        assert exc_info.value.code == ErrorCode.CLAIM_NOT_FOUND

    def test_gating_requires_linked_fact(self, machine):
        claim = submit(machine)
        move(machine, claim.claim_id, ClaimAction.START_REVIEW)

        with pytest.raises(ClaimGateError) as exc_info:
            machine.check_transition(claim.claim_id, ClaimAction.APPROVE)

        assert exc_info.value.code == ErrorCode.FACT_NOT_RESOLVED
        assert exc_info.value.category == ErrorCategory.CONSENSUS

    def test_gating_requires_finalized_fact(self, machine):
        claim = submit(machine, fact_id="fact-1")
        move(machine, claim.claim_id, ClaimAction.START_REVIEW)

        with pytest.raises(ClaimGateError) as exc_info:
            machine.check_transition(claim.claim_id, ClaimAction.APPROVE)

        assert exc_info.value.code == ErrorCode.FACT_NOT_RESOLVED
        assert machine.get(claim.claim_id).status == ClaimStatus.UNDER_REVIEW

    def test_approve_can_link_fact(self, machine, registry):
        claim = submit(machine)
        finalize(registry, "fact-9")
        move(machine, claim.claim_id, ClaimAction.START_REVIEW)

        approved = move(machine, claim.claim_id, ClaimAction.APPROVE, fact_id="fact-9")

        assert approved.fact_id == "fact-9"

    def test_approve_with_conflicting_fact(self, machine, registry):
        claim = submit(machine, fact_id="fact-1")
        finalize(registry, "fact-1")
        finalize(registry, "fact-2")
        move(machine, claim.claim_id, ClaimAction.START_REVIEW)

        with pytest.raises(ClaimGateError) as exc_info:
            machine.check_transition(claim.claim_id, ClaimAction.APPROVE, fact_id="fact-2")

        assert exc_info.value.code == ErrorCode.INVALID_INPUT

    def test_gating_off_approves_unconditionally(self, registry):
        machine = ClaimStateMachine(registry, oracle_gating=False)
        claim = submit(machine)
        move(machine, claim.claim_id, ClaimAction.START_REVIEW)

        assert move(machine, claim.claim_id, ClaimAction.APPROVE).status == ClaimStatus.APPROVED


class TestListClaims:

    @pytest.fixture
    def machine(self):
        machine = ClaimStateMachine(FactRegistry(), oracle_gating=False)
        for i in range(60):
            submit(machine, policy_id=f"POL-{i}")
        move(machine, 3, ClaimAction.START_REVIEW)
        return machine

    def test_limit_capped_at_fifty(self, machine):
        page = machine.list_claims(limit=500)
        assert len(page.claims) == 50
        assert page.total_count == 60

    def test_zero_limit_means_fifty(self, machine):
        assert len(machine.list_claims(limit=0).claims) == 50

    def test_offset(self, machine):
        page = machine.list_claims(start=55, limit=10)
        assert [c.claim_id for c in page.claims] == [56, 57, 58, 59, 60]

    def test_status_filter(self, machine):
        page = machine.list_claims(status=ClaimStatus.UNDER_REVIEW)
        assert page.total_count == 1
        assert page.claims[0].claim_id == 3

    def test_negative_start_rejected(self, machine):
        with pytest.raises(ClaimGateError) as exc_info:
            machine.list_claims(start=-1)
        assert exc_info.value.code == ErrorCode.INVALID_INPUT
