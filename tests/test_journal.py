"""
Tests for the journal layer: canonical hashing, signatures, the chained
journal itself and the in-memory event store.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from claimgate.core import ClaimGateError, ErrorCode, Hasher, Journal, Signer
from claimgate.core.hasher import CanonicalSerializationError
from claimgate.db import ChainIntegrityError, InMemoryEventStore
from claimgate.schemas import ClaimStatus, EventType, PauseSetPayload


class TestHasher:
    """Canonical hashing. Every stored hash depends on these rules."""

    def test_deterministic_hash(self):
        data = {"name": "test", "value": 42}
        assert Hasher.hash_data(data) == Hasher.hash_data(data)

    def test_key_order_irrelevant(self):
        data1 = {"outer": {"z": 1, "a": 2}, "b": 3}
        data2 = {"b": 3, "outer": {"a": 2, "z": 1}}
        assert Hasher.hash_data(data1) == Hasher.hash_data(data2)

    def test_nulls_omitted(self):
        assert Hasher.canonicalize({"a": 1, "b": None}) == Hasher.canonicalize({"a": 1})

    def test_empty_values_preserved(self):
        assert Hasher.canonicalize({"a": ""}) != Hasher.canonicalize({})
        assert Hasher.canonicalize({"a": []}) != Hasher.canonicalize({})

    def test_version_tag_and_no_whitespace(self):
        canonical = Hasher.canonicalize({"a": 1, "b": {"c": 2}})

        assert canonical.startswith('{"__canon_v":1')
        assert " " not in canonical

    def test_datetime_normalized_to_utc(self):
        utc_time = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        other_time = datetime(2024, 1, 1, 17, 0, 0, tzinfo=timezone(timedelta(hours=5)))

        assert Hasher.hash_data({"t": utc_time}) == Hasher.hash_data({"t": other_time})

    def test_naive_datetime_rejected(self):
        with pytest.raises(CanonicalSerializationError, match="timezone-naive"):
            Hasher.canonicalize({"t": datetime(2024, 1, 1)})

    def test_uuid_lowercase_and_enum_value(self):
        canonical = Hasher.canonicalize({
            "id": UUID("550E8400-E29B-41D4-A716-446655440000"),
            "status": ClaimStatus.UNDER_REVIEW,
        })

        assert "550e8400" in canonical
        assert '"under_review"' in canonical
        assert "UNDER_REVIEW" not in canonical

    def test_big_integers_exact(self):
        big = 10 ** 40 + 1
        assert str(big) in Hasher.canonicalize({"value": big})

    def test_floats_banned(self):
        for value in (3.14, float("nan"), float("inf")):
            with pytest.raises(CanonicalSerializationError, match="Floats are banned"):
                Hasher.canonicalize({"value": value})

    def test_decimal_allowed(self):
        assert '"1.50"' in Hasher.canonicalize({"value": Decimal("1.50")})

    def test_sets_and_bytes_banned(self):
        with pytest.raises(CanonicalSerializationError, match="set"):
            Hasher.canonicalize({"items": {1, 2}})
        with pytest.raises(CanonicalSerializationError, match="bytes"):
            Hasher.canonicalize({"raw": b"\x00"})

    def test_chain_hash_depends_on_previous(self):
        payload = {"test": "data"}
        assert Hasher.hash_event(payload, "a" * 64) != Hasher.hash_event(payload, None)

    def test_previous_hash_format_checked(self):
        for bad in ("abc123", "g" * 64):
            with pytest.raises(CanonicalSerializationError, match="Invalid previous_hash"):
                Hasher.hash_event({"test": "data"}, bad)

    def test_verify_chain(self):
        payload = {"x": 1}
        event_hash = Hasher.hash_event(payload, None)

        assert Hasher.verify_chain(payload, event_hash)
        assert not Hasher.verify_chain({"x": 2}, event_hash)

    def test_snapshot_digest_depends_on_order(self):
        a = {"submitter": "a", "value": 1}
        b = {"submitter": "b", "value": 2}

        assert Hasher.hash_snapshot("f", [a, b]) != Hasher.hash_snapshot("f", [b, a])


class TestSigner:

    def test_sign_and_verify(self):
        private_key, public_key = Signer.generate_keypair()
        signature = Signer.sign("hello", private_key)

        assert Signer.verify("hello", signature, public_key)
        assert not Signer.verify("hellO", signature, public_key)

    def test_wrong_key_fails(self):
        private_key, _ = Signer.generate_keypair()
        _, other_public = Signer.generate_keypair()

        assert not Signer.verify("hello", Signer.sign("hello", private_key), other_public)

    def test_malformed_signature_is_false(self):
        _, public_key = Signer.generate_keypair()
        assert not Signer.verify("hello", "not base64!", public_key)

    def test_key_matches(self):
        private_key, public_key = Signer.generate_keypair()
        _, other_public = Signer.generate_keypair()

        assert Signer.key_matches(private_key, public_key)
        assert not Signer.key_matches(private_key, other_public)
        assert not Signer.key_matches("garbage", public_key)

    def test_public_key_for(self):
        private_key, public_key = Signer.generate_keypair()
        assert Signer.public_key_for(private_key) == public_key


class TestJournal:

    @pytest.fixture
    def keys(self):
        return Signer.generate_keypair()

    @pytest.fixture
    def journal(self):
        return Journal(InMemoryEventStore())

    def append(self, journal, keys, actor_id=None, paused=True, **kwargs):
        return journal.record(
            event_type=EventType.PAUSE_SET,
            entity_id="pause",
            entity_type="config",
            payload=PauseSetPayload(paused=paused),
            actor_id=actor_id or uuid4(),
            actor_private_key=keys[0],
            **kwargs,
        )

    def test_genesis_then_chained(self, journal, keys):
        first = self.append(journal, keys)
        second = self.append(journal, keys, paused=False)

        assert first.sequence_number == 0
        assert first.previous_event_hash is None
        assert second.sequence_number == 1
        assert second.previous_event_hash == first.event_hash
        assert journal.last_event_hash == second.event_hash
        assert journal.event_count == 2

    def test_event_is_signed_by_actor(self, journal, keys):
        event = self.append(journal, keys)

        Journal.verify_signature(event, keys[1])

        _, other_public = Signer.generate_keypair()
        with pytest.raises(ClaimGateError) as exc_info:
            Journal.verify_signature(event, other_public)
        assert exc_info.value.code == ErrorCode.CHAIN_INTEGRITY

    def test_before_commit_failure_writes_nothing(self, journal, keys):
        self.append(journal, keys)

        def fail():
            raise ClaimGateError(ErrorCode.INSUFFICIENT_BALANCE)

        with pytest.raises(ClaimGateError):
            self.append(journal, keys, before_commit=fail)

        assert journal.event_count == 1
        # The head lock was released: the next append still works
        assert self.append(journal, keys).sequence_number == 1

    def test_before_commit_runs_once(self, journal, keys):
        calls = []
        self.append(journal, keys, before_commit=lambda: calls.append(1))
        assert calls == [1]

    def test_verify_chain_integrity(self, journal, keys):
        for _ in range(3):
            self.append(journal, keys)
        assert journal.verify_chain_integrity()

    def test_verify_event_chain_detects_reordering(self, journal, keys):
        for _ in range(3):
            self.append(journal, keys)
        events = journal.events()
        events[1], events[2] = events[2], events[1]

        with pytest.raises(ClaimGateError) as exc_info:
            Journal.verify_event_chain(events)
        assert exc_info.value.code == ErrorCode.CHAIN_INTEGRITY

    def test_events_for_entity(self, journal, keys):
        self.append(journal, keys)
        journal.record(
            event_type=EventType.PAUSE_SET,
            entity_id=7,
            entity_type="claim",
            payload={"paused": True},
            actor_id=uuid4(),
            actor_private_key=keys[0],
        )

        events = journal.events_for_entity("claim", 7)

        assert len(events) == 1
        assert events[0].entity_id == "7"


class TestInMemoryEventStore:

    def make_events(self, count):
        journal = Journal(InMemoryEventStore())
        private_key, _ = Signer.generate_keypair()
        for i in range(count):
            journal.record(
                event_type=EventType.PAUSE_SET,
                entity_id="pause",
                entity_type="config",
                payload={"paused": i % 2 == 0},
                actor_id=uuid4(),
                actor_private_key=private_key,
            )
        return journal.events()

    def test_load_preserves_chain(self):
        events = self.make_events(3)
        store = InMemoryEventStore()

        store.load(events)

        assert store.get_event_count() == 3
        assert store.get_head().last_event_hash == events[-1].event_hash
        assert store.get_head().next_sequence == 3

    def test_load_rejects_tampered_event(self):
        events = self.make_events(2)
        events[1] = events[1].model_copy(update={"payload": {"paused": True}})
        store = InMemoryEventStore()

        with pytest.raises(ChainIntegrityError):
            store.load(events)

        assert store.get_event_count() == 1

    def test_empty_head(self):
        head = InMemoryEventStore().get_head()
        assert head.is_empty
        assert head.next_sequence == 0

    def test_clear(self):
        store = InMemoryEventStore()
        store.load(self.make_events(2))

        store.clear()

        assert store.get_event_count() == 0
        assert store.list_all() == []
