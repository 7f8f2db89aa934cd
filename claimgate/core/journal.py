"""
Journal - the append-only event history

Every committed transaction is exactly one JournalEvent. The journal:
- Canonically hashes the payload and chains it to the previous event
- Signs the event hash with the acting actor's key
- Appends atomically through the EventStore

Storage is delegated to an EventStore. The store is the single source of
truth for sequence numbers and previous hashes; the journal asks for them
inside begin_append() and never from a local cache.

External side effects that must happen together with the append (risk pool
reserve / payout) run through the before_commit hook while the append lock
is held. If the hook raises, nothing is written.
"""

import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TYPE_CHECKING
from uuid import UUID, uuid4

from pydantic import BaseModel

from ..schemas import EventType, JournalEvent
from .errors import ClaimGateError, ErrorCode
from .hasher import Hasher
from .signer import Signer
from ..observability import get_logger, get_metrics

if TYPE_CHECKING:
    from ..db.store import EventStore

logger = get_logger(__name__)


def _integrity_error(message: str, **details: Any) -> ClaimGateError:
    return ClaimGateError(ErrorCode.CHAIN_INTEGRITY, message, **details)


class Journal:
    """
    Hash-chained, signed, append-only journal over an EventStore.

    CHAIN INTEGRITY GUARANTEES:
    - Sequence numbers are 0, 1, 2, ... with no gaps
    - previous_event_hash is None ONLY for the genesis event
    - Hashes are recomputed and checked on append AND on load
    """

    def __init__(self, event_store: Optional["EventStore"] = None):
        if event_store is None:
            from ..db.store import InMemoryEventStore
            event_store = InMemoryEventStore()
        self._store = event_store

    @property
    def event_store(self) -> "EventStore":
        return self._store

    @property
    def event_count(self) -> int:
        return self._store.get_event_count()

    @property
    def last_event_hash(self) -> Optional[str]:
        return self._store.get_head().last_event_hash

    def record(
        self,
        event_type: EventType,
        entity_id: Any,
        entity_type: str,
        payload: BaseModel | dict,
        actor_id: UUID,
        actor_private_key: str,
        before_commit: Optional[Callable[[], None]] = None,
    ) -> JournalEvent:
        """
        Append one signed event.

        Args:
            entity_id: fact_id, claim_id, actor_id or fact_type (stored as text)
            payload: pydantic payload model or an already-dumped dict
            before_commit: runs after the event is built and before it is
                committed, with the append lock held

        Raises:
            ClaimGateError(CHAIN_INTEGRITY): the head is inconsistent
            Whatever before_commit raises (the append is rolled back)
        """
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(mode="json")

        start = time.perf_counter()
        with self._store.begin_append() as ctx:
            sequence_number = ctx.head.next_sequence

            if sequence_number == 0:
                previous_hash = None
            else:
                previous_hash = ctx.head.last_event_hash
                if previous_hash is None:
                    raise _integrity_error(
                        f"Cannot create event with sequence {sequence_number}: "
                        "previous event hash is missing but this is not genesis"
                    )

            event_hash = Hasher.hash_event(payload, previous_hash)
            signature = Signer.sign_event(event_hash, actor_private_key)

            event = JournalEvent(
                event_id=uuid4(),
                sequence_number=sequence_number,
                event_type=event_type,
                entity_id=str(entity_id),
                entity_type=entity_type,
                payload=payload,
                previous_event_hash=previous_hash,
                event_hash=event_hash,
                created_by=actor_id,
                signature=signature,
                created_at=datetime.now(timezone.utc),
            )
            event.validate_chain_rules()

            if before_commit is not None:
                before_commit()

            ctx.commit(event, Hasher.canonicalize(payload), Hasher.SERIALIZATION_VERSION)

        latency_ms = (time.perf_counter() - start) * 1000
        get_metrics().record_append(latency_ms)
        logger.debug(
            "Event appended",
            event_type=event_type.value,
            sequence_number=sequence_number,
            entity_id=str(entity_id),
            duration_ms=round(latency_ms, 2),
        )
        return event

    def events(self) -> list[JournalEvent]:
        return self._store.list_all()

    def events_for_entity(self, entity_type: str, entity_id: Any) -> list[JournalEvent]:
        return self._store.list_for_entity(entity_type, str(entity_id))

    def verify_chain_integrity(self) -> bool:
        """
        True if the stored chain is intact.

        Meant to be run periodically as a health check.
        """
        try:
            self.verify_event_chain(self._store.list_all())
        except ClaimGateError:
            return False
        return True

    @staticmethod
    def verify_event_chain(events: list[JournalEvent]) -> None:
        """
        Verify a complete, ordered event chain.

        Raises ClaimGateError(CHAIN_INTEGRITY) at the first bad event.
        """
        prev_hash = None
        expected_sequence = 0

        for event in events:
            if event.sequence_number != expected_sequence:
                raise _integrity_error(
                    f"Sequence number gap or out-of-order event. "
                    f"Expected {expected_sequence}, got {event.sequence_number}",
                    sequence_number=event.sequence_number,
                )

            if event.previous_event_hash != prev_hash:
                raise _integrity_error(
                    f"Chain linkage broken at sequence {expected_sequence}",
                    sequence_number=expected_sequence,
                )

            try:
                event.validate_chain_rules()
            except ValueError as e:
                raise _integrity_error(str(e), sequence_number=expected_sequence) from e

            computed_hash = Hasher.hash_event(event.payload, prev_hash)
            if computed_hash != event.event_hash:
                raise _integrity_error(
                    f"Hash verification failed at sequence {expected_sequence}. "
                    f"Computed: {computed_hash[:16]}..., "
                    f"Stored: {event.event_hash[:16]}...",
                    sequence_number=expected_sequence,
                )

            prev_hash = event.event_hash
            expected_sequence += 1

    @staticmethod
    def verify_signature(event: JournalEvent, public_key: str) -> None:
        """Raises ClaimGateError(CHAIN_INTEGRITY) if the signature is not the signer's."""
        if not Signer.verify_event(event.event_hash, event.signature, public_key):
            raise _integrity_error(
                f"Signature verification failed at sequence {event.sequence_number}",
                sequence_number=event.sequence_number,
                created_by=event.created_by,
            )
