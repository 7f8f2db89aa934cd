"""
Tests for the settlement coordinator and the in-memory risk pool.

RecordingPool counts payout attempts, so "no double payout" is checked
against the external interface itself.
"""

from uuid import uuid4

import pytest

from claimgate.core import (
    ClaimGateError,
    ClaimStateMachine,
    ErrorCategory,
    ErrorCode,
    FactRegistry,
    InMemoryRiskPool,
    SettlementCoordinator,
)
from claimgate.core.claims import TRANSITIONS
from claimgate.schemas import ClaimAction, ClaimStatus, ClaimSubmittedPayload, ClaimTransitionPayload

from conftest import RecordingPool


NOW = 1_700_000_000


@pytest.fixture
def claims():
    return ClaimStateMachine(FactRegistry(), oracle_gating=False)


@pytest.fixture
def pool():
    return RecordingPool(available=1000)


@pytest.fixture
def coordinator(pool, claims):
    return SettlementCoordinator(pool, claims)


def approved_claim(claims, amount=500):
    claimant = uuid4()
    claim = claims.apply_submitted(ClaimSubmittedPayload(
        claim_id=claims.next_claim_id,
        policy_id=f"POL-{claims.next_claim_id}",
        claimant_id=claimant,
        amount=amount,
        submitted_at=NOW,
        coverage_amount=1000,
        policy_end_time=NOW + 1000,
    ))
    for action in (ClaimAction.START_REVIEW, ClaimAction.APPROVE):
        claims.check_transition(claim.claim_id, action)
        from_status, to_status = TRANSITIONS[action]
        claims.apply_transition(ClaimTransitionPayload(
            claim_id=claim.claim_id,
            action=action,
            from_status=from_status,
            to_status=to_status,
            occurred_at=NOW,
        ))
    return claims.get(claim.claim_id)


class TestSettlementCoordinator:

    def test_settle_pays_once(self, coordinator, claims, pool):
        claim = approved_claim(claims)

        settled = coordinator.settle(claim.claim_id, NOW + 1)

        assert settled.status == ClaimStatus.SETTLED
        assert pool.payout_calls == [(str(claim.claimant_id), 500)]
        assert coordinator.is_settled(claim.claim_id)

    def test_second_settle_is_already_settled_without_payout(self, coordinator, claims, pool):
        claim = approved_claim(claims)
        coordinator.settle(claim.claim_id, NOW + 1)

        with pytest.raises(ClaimGateError) as exc_info:
            coordinator.settle(claim.claim_id, NOW + 2)

        assert exc_info.value.code == ErrorCode.ALREADY_SETTLED
        assert len(pool.payout_calls) == 1

    def test_requires_approved(self, coordinator, claims, pool):
        claim = approved_claim(claims)
        claims.apply_transition(ClaimTransitionPayload(
            claim_id=claim.claim_id,
            action=ClaimAction.SETTLE,
            from_status=ClaimStatus.APPROVED,
            to_status=ClaimStatus.SETTLED,
            occurred_at=NOW,
        ))

        # Settled without the marker: state check catches it
        with pytest.raises(ClaimGateError) as exc_info:
            coordinator.settle(claim.claim_id, NOW + 1)

        assert exc_info.value.code == ErrorCode.INVALID_STATE_TRANSITION
        assert pool.payout_calls == []

    def test_pool_failure_leaves_claim_approved_and_retryable(self, coordinator, claims, pool):
        claim = approved_claim(claims)
        pool.fail_payouts = True

        with pytest.raises(ClaimGateError) as exc_info:
            coordinator.settle(claim.claim_id, NOW + 1)

        assert exc_info.value.code == ErrorCode.INSUFFICIENT_BALANCE
        assert exc_info.value.category == ErrorCategory.EXTERNAL
        assert claims.get(claim.claim_id).status == ClaimStatus.APPROVED
        assert not coordinator.is_settled(claim.claim_id)

        pool.fail_payouts = False
        assert coordinator.settle(claim.claim_id, NOW + 2).status == ClaimStatus.SETTLED
        assert len(pool.payout_calls) == 2

    def test_commit_failure_after_payout_blocks_retry(self, coordinator, claims, pool):
        claim = approved_claim(claims)

        def failing_commit(payload, pay):
            pay()
            raise RuntimeError("store unavailable")

        with pytest.raises(RuntimeError):
            coordinator.settle(claim.claim_id, NOW + 1, commit=failing_commit)

        assert coordinator.is_settled(claim.claim_id)
        assert [p.claim_id for p in coordinator.unrecorded_payouts()] == [claim.claim_id]

        with pytest.raises(ClaimGateError) as exc_info:
            coordinator.settle(claim.claim_id, NOW + 2, commit=lambda payload, pay: pay())

        assert exc_info.value.code == ErrorCode.ALREADY_SETTLED
        assert pool.payout_calls == [(str(claim.claimant_id), 500)]

    def test_commit_failure_before_payout_stays_retryable(self, coordinator, claims, pool):
        claim = approved_claim(claims)

        def failing_commit(payload, pay):
            raise RuntimeError("store unavailable")

        with pytest.raises(RuntimeError):
            coordinator.settle(claim.claim_id, NOW + 1, commit=failing_commit)

        assert not coordinator.is_settled(claim.claim_id)
        assert coordinator.unrecorded_payouts() == []
        assert claims.get(claim.claim_id).status == ClaimStatus.APPROVED

        coordinator.settle(claim.claim_id, NOW + 2, commit=lambda payload, pay: pay())
        assert len(pool.payout_calls) == 1

    def test_commit_receives_settle_payload(self, coordinator, claims):
        claim = approved_claim(claims)
        seen = []

        def commit(payload, pay):
            seen.append(payload)
            pay()

        coordinator.settle(claim.claim_id, NOW + 1, commit=commit)

        assert seen[0].action == ClaimAction.SETTLE
        assert seen[0].amount == 500
        assert seen[0].occurred_at == NOW + 1


class TestInMemoryRiskPool:

    def test_reserve_and_release(self):
        pool = InMemoryRiskPool(available=100)
        pool.reserve(60)
        assert (pool.available, pool.reserved) == (40, 60)

        pool.release(60)
        assert (pool.available, pool.reserved) == (100, 0)

    def test_reserve_more_than_available(self):
        pool = InMemoryRiskPool(available=10)
        with pytest.raises(ClaimGateError) as exc_info:
            pool.reserve(11)
        assert exc_info.value.code == ErrorCode.INSUFFICIENT_BALANCE
        assert pool.available == 10

    def test_payout_spends_reserved_first(self):
        pool = InMemoryRiskPool(available=100)
        pool.reserve(30)
        pool.payout("someone", 50)

        assert pool.reserved == 0
        assert pool.available == 50
        assert pool.payouts == [("someone", 50)]

    def test_payout_beyond_balance(self):
        pool = InMemoryRiskPool(available=10)
        with pytest.raises(ClaimGateError) as exc_info:
            pool.payout("someone", 11)
        assert exc_info.value.code == ErrorCode.INSUFFICIENT_BALANCE
        assert pool.payouts == []
