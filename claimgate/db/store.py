"""
Event Store Abstraction

Two implementations of the journal's persistence:
- InMemoryEventStore: development and tests
- PostgresEventStore: production, durable and safe across processes

The EventStore is responsible for:
- Atomic append with sequence number and previous-hash assignment
- Ordering and durability
- The chain head (single source of truth for sequence / last hash)

The Journal keeps responsibility for hashing, signing and validation.

TRANSACTION CONTRACT:
All appends go through the begin_append() context manager:

    with store.begin_append() as ctx:
        seq, prev_hash = ctx.head.next_sequence, ctx.head.last_event_hash
        # ... build, hash and sign the event, run side effects ...
        ctx.commit(event, payload_canon, canon_version)

Leaving the block without commit() (including by exception) rolls back.
"""

import json
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from threading import Lock
from typing import Any, Callable, Generator, Optional
from uuid import UUID

from ..core.hasher import Hasher
from ..schemas import EventType, JournalEvent


def _json_serial(obj):
    """JSON serializer for values the json module does not handle."""
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Decimal):
        return str(obj)
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    if hasattr(obj, "value"):
        return obj.value
    raise TypeError(f"Type {type(obj)} not serializable")


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS journal_events (
    event_id            UUID PRIMARY KEY,
    sequence_number     BIGINT NOT NULL UNIQUE,
    previous_event_hash CHAR(64),
    event_hash          CHAR(64) NOT NULL UNIQUE,
    event_type          TEXT NOT NULL,
    entity_type         TEXT NOT NULL,
    entity_id           TEXT NOT NULL,
    created_by          UUID NOT NULL,
    signature           TEXT NOT NULL,
    created_at          TIMESTAMPTZ NOT NULL,
    payload_json        JSONB NOT NULL,
    payload_canon       TEXT NOT NULL,
    canon_version       INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS journal_events_entity_idx
    ON journal_events (entity_type, entity_id, sequence_number);

CREATE TABLE IF NOT EXISTS journal_head (
    id              BOOLEAN PRIMARY KEY DEFAULT TRUE CHECK (id),
    last_sequence   BIGINT NOT NULL DEFAULT -1,
    last_event_hash CHAR(64)
);
"""


# ============================================================
# EXCEPTIONS
# ============================================================

class EventStoreError(Exception):
    """Base exception for event store errors."""
    pass


class ConcurrencyError(EventStoreError):
    """Raised when a concurrent append moved the head underneath us."""
    pass


class ChainIntegrityError(EventStoreError):
    """Raised when an event would break chain linkage."""
    pass


class LockTimeoutError(EventStoreError):
    """Raised when the head lock could not be acquired in time."""
    pass


# ============================================================
# DATA STRUCTURES
# ============================================================

@dataclass
class ChainHead:
    """Current state of the chain head; locked during an append."""
    last_sequence: int  # -1 means empty journal
    last_event_hash: Optional[str]

    @property
    def next_sequence(self) -> int:
        return self.last_sequence + 1

    @property
    def is_empty(self) -> bool:
        return self.last_sequence == -1


@dataclass
class AppendContext:
    """
    Transaction context for one atomic append.

    Holds the connection and cursor for the transaction so commit and
    rollback always happen on the connection that took the lock.
    """
    head: ChainHead
    _store: "EventStore"
    _conn: Any = field(default=None)
    _cursor: Any = field(default=None)
    _committed: bool = field(default=False, init=False)
    _rolled_back: bool = field(default=False, init=False)

    def commit(self, event: JournalEvent, payload_canon: str, canon_version: int) -> JournalEvent:
        if self._committed:
            raise EventStoreError("Transaction already committed")
        if self._rolled_back:
            raise EventStoreError("Transaction already rolled back")

        result = self._store._do_commit(self, event, payload_canon, canon_version)
        self._committed = True
        return result

    def rollback(self) -> None:
        if not self._committed and not self._rolled_back:
            self._store._do_rollback(self)
            self._rolled_back = True


# ============================================================
# ABSTRACT BASE CLASS
# ============================================================

class EventStore(ABC):
    """
    Persistence for the journal.

    Implementations must guarantee:
    1. begin_append holds one connection/transaction from reserve to commit
    2. No gaps and no duplicates in sequence numbers
    3. Chain linkage is always correct
    """

    @contextmanager
    @abstractmethod
    def begin_append(self) -> Generator[AppendContext, None, None]:
        """Lock the head and yield an AppendContext; roll back unless committed."""
        pass

    @abstractmethod
    def _do_commit(
        self,
        ctx: AppendContext,
        event: JournalEvent,
        payload_canon: str,
        canon_version: int,
    ) -> JournalEvent:
        """Internal: use ctx.commit() instead."""
        pass

    @abstractmethod
    def _do_rollback(self, ctx: AppendContext) -> None:
        """Internal: use ctx.rollback() instead."""
        pass

    @abstractmethod
    def list_all(self) -> list[JournalEvent]:
        """All events, ordered by sequence number."""
        pass

    @abstractmethod
    def list_for_entity(self, entity_type: str, entity_id: str) -> list[JournalEvent]:
        """Events for one entity, ordered by sequence number."""
        pass

    @abstractmethod
    def get_head(self) -> ChainHead:
        """Current head without locking; read-only use."""
        pass

    @abstractmethod
    def get_event_count(self) -> int:
        pass

    @staticmethod
    def _check_linkage(
        event: JournalEvent,
        expected_sequence: int,
        expected_prev_hash: Optional[str],
        mismatch_error: type = ChainIntegrityError,
    ) -> None:
        """Shared pre-commit validation for every implementation."""
        if event.sequence_number != expected_sequence:
            raise mismatch_error(
                f"Sequence mismatch: expected {expected_sequence}, "
                f"got {event.sequence_number}"
            )

        if expected_sequence == 0:
            if event.previous_event_hash is not None:
                raise ChainIntegrityError("Genesis event must have previous_event_hash=None")
        elif event.previous_event_hash != expected_prev_hash:
            raise mismatch_error(
                f"Previous hash mismatch: expected {expected_prev_hash}, "
                f"got {event.previous_event_hash}"
            )

        computed_hash = Hasher.hash_event(event.payload, event.previous_event_hash)
        if computed_hash != event.event_hash:
            raise ChainIntegrityError(
                f"Hash verification failed: computed {computed_hash[:16]}..., "
                f"claimed {event.event_hash[:16]}..."
            )


# ============================================================
# IN-MEMORY IMPLEMENTATION
# ============================================================

class InMemoryEventStore(EventStore):
    """
    In-memory EventStore.

    Fine for development, tests and single-process demos.
    Nothing survives a restart.
    """

    _LOCK_TOKEN = "in_memory_lock"

    def __init__(self):
        self._events: list[JournalEvent] = []
        self._head = ChainHead(last_sequence=-1, last_event_hash=None)
        self._lock = Lock()

    @contextmanager
    def begin_append(self) -> Generator[AppendContext, None, None]:
        self._lock.acquire()
        head = ChainHead(
            last_sequence=self._head.last_sequence,
            last_event_hash=self._head.last_event_hash,
        )
        ctx = AppendContext(head=head, _store=self, _conn=self._LOCK_TOKEN)
        try:
            yield ctx
        finally:
            if not ctx._committed and not ctx._rolled_back:
                ctx.rollback()

    def _do_commit(
        self,
        ctx: AppendContext,
        event: JournalEvent,
        payload_canon: str,
        canon_version: int,
    ) -> JournalEvent:
        if ctx._conn != self._LOCK_TOKEN:
            raise EventStoreError("_do_commit called outside transaction")

        try:
            self._check_linkage(
                event,
                expected_sequence=self._head.last_sequence + 1,
                expected_prev_hash=self._head.last_event_hash,
            )
            self._events.append(event)
            self._head = ChainHead(
                last_sequence=event.sequence_number,
                last_event_hash=event.event_hash,
            )
            return event
        finally:
            ctx._conn = None
            self._lock.release()

    def _do_rollback(self, ctx: AppendContext) -> None:
        if ctx._conn == self._LOCK_TOKEN:
            ctx._conn = None
            self._lock.release()

    def list_all(self) -> list[JournalEvent]:
        return sorted(self._events, key=lambda e: e.sequence_number)

    def list_for_entity(self, entity_type: str, entity_id: str) -> list[JournalEvent]:
        return [
            e for e in self.list_all()
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]

    def get_head(self) -> ChainHead:
        return ChainHead(
            last_sequence=self._head.last_sequence,
            last_event_hash=self._head.last_event_hash,
        )

    def get_event_count(self) -> int:
        return len(self._events)

    def load(self, events: list[JournalEvent]) -> None:
        """Bulk-load previously verified events (e.g. from an export)."""
        for event in sorted(events, key=lambda e: e.sequence_number):
            with self.begin_append() as ctx:
                ctx.commit(event, Hasher.canonicalize(event.payload), Hasher.SERIALIZATION_VERSION)

    def clear(self) -> None:
        """Drop everything (tests only)."""
        with self._lock:
            self._events.clear()
            self._head = ChainHead(last_sequence=-1, last_event_hash=None)


# ============================================================
# POSTGRESQL IMPLEMENTATION
# ============================================================

class PostgresEventStore(EventStore):
    """
    PostgreSQL EventStore (psycopg2).

    - ACID appends serialized by a FOR UPDATE lock on journal_head
    - Lock / statement timeouts so a stuck writer cannot hang the service
    - Transaction state lives in AppendContext, never on the store,
      so one store instance can be shared across threads

    Usage:
        store = PostgresEventStore(lambda: psycopg2.connect(dsn))
        store.ensure_schema()
    """

    LOCK_TIMEOUT_MS = 2000
    STATEMENT_TIMEOUT_MS = 10000

    PGCODE_LOCK_NOT_AVAILABLE = "55P03"
    PGCODE_QUERY_CANCELED = "57014"

    _SELECT_COLUMNS = """
        event_id, sequence_number, previous_event_hash, event_hash,
        event_type, entity_type, entity_id, created_by, signature,
        created_at, payload_json
    """

    def __init__(
        self,
        connection_factory: Callable[[], Any],
        lock_timeout_ms: int = LOCK_TIMEOUT_MS,
        statement_timeout_ms: int = STATEMENT_TIMEOUT_MS,
    ):
        self._connection_factory = connection_factory
        self._lock_timeout_ms = lock_timeout_ms
        self._statement_timeout_ms = statement_timeout_ms

    def ensure_schema(self) -> None:
        """Create tables if they do not exist."""
        conn = self._connection_factory()
        try:
            with conn.cursor() as cursor:
                cursor.execute(SCHEMA_SQL)
            conn.commit()
        finally:
            conn.close()

    @contextmanager
    def begin_append(self) -> Generator[AppendContext, None, None]:
        conn = self._connection_factory()
        conn.autocommit = False
        cursor = conn.cursor()
        ctx = None

        try:
            cursor.execute(f"SET LOCAL lock_timeout = '{self._lock_timeout_ms}ms'")
            cursor.execute(f"SET LOCAL statement_timeout = '{self._statement_timeout_ms}ms'")
            cursor.execute("SET LOCAL idle_in_transaction_session_timeout = '30s'")

            row = self._lock_head(cursor)
            if row is None:
                cursor.execute("""
                    INSERT INTO journal_head (id, last_sequence, last_event_hash)
                    VALUES (TRUE, -1, NULL)
                    ON CONFLICT (id) DO NOTHING
                """)
                row = self._lock_head(cursor)

            head = ChainHead(last_sequence=row[0], last_event_hash=row[1])
            ctx = AppendContext(head=head, _store=self, _conn=conn, _cursor=cursor)
            yield ctx

        finally:
            if ctx is not None and not ctx._committed:
                ctx.rollback()
            elif ctx is None:
                conn.rollback()
            try:
                cursor.close()
            finally:
                conn.close()

    def _lock_head(self, cursor) -> Optional[tuple]:
        try:
            cursor.execute("""
                SELECT last_sequence, last_event_hash
                FROM journal_head
                WHERE id = TRUE
                FOR UPDATE
            """)
        except Exception as e:
            kind = self._timeout_kind(e)
            if kind == "lock":
                raise LockTimeoutError("Journal busy - could not acquire lock. Try again.") from e
            if kind == "statement":
                raise EventStoreError("Query timed out - statement took too long.") from e
            raise
        return cursor.fetchone()

    def _timeout_kind(self, e: Exception) -> Optional[str]:
        """
        Classify a PostgreSQL error as "lock", "statement", "timeout" or None.

        57014 (query_canceled) covers both lock_timeout and statement_timeout,
        so the message decides. 55P03 (lock_not_available) counts as "lock".
        """
        pgcode = getattr(e, "pgcode", None)
        err_msg = (getattr(e, "pgerror", None) or str(e)).lower()

        if pgcode == self.PGCODE_LOCK_NOT_AVAILABLE:
            return "lock"

        if pgcode == self.PGCODE_QUERY_CANCELED:
            if "lock timeout" in err_msg or "lock_timeout" in err_msg:
                return "lock"
            if "statement timeout" in err_msg or "statement_timeout" in err_msg:
                return "statement"
            return "timeout"

        if "lock" in err_msg and "timeout" in err_msg:
            return "lock"
        if "statement" in err_msg and "timeout" in err_msg:
            return "statement"
        return None

    def _do_commit(
        self,
        ctx: AppendContext,
        event: JournalEvent,
        payload_canon: str,
        canon_version: int,
    ) -> JournalEvent:
        if ctx._cursor is None or ctx._conn is None:
            raise EventStoreError("_do_commit called outside begin_append context")

        cursor = ctx._cursor
        cursor.execute("SELECT last_sequence, last_event_hash FROM journal_head WHERE id = TRUE")
        row = cursor.fetchone()

        self._check_linkage(
            event,
            expected_sequence=row[0] + 1,
            expected_prev_hash=row[1],
            mismatch_error=ConcurrencyError,
        )

        cursor.execute("""
            INSERT INTO journal_events (
                event_id, sequence_number, previous_event_hash, event_hash,
                event_type, entity_type, entity_id, created_by, signature,
                created_at, payload_json, payload_canon, canon_version
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """, (
            str(event.event_id),
            event.sequence_number,
            event.previous_event_hash,
            event.event_hash,
            event.event_type.value,
            event.entity_type,
            event.entity_id,
            str(event.created_by),
            event.signature,
            event.created_at,
            json.dumps(event.payload, default=_json_serial),
            payload_canon,
            canon_version,
        ))

        cursor.execute("""
            UPDATE journal_head
            SET last_sequence = %s, last_event_hash = %s
            WHERE id = TRUE
        """, (event.sequence_number, event.event_hash))

        ctx._conn.commit()
        return event

    def _do_rollback(self, ctx: AppendContext) -> None:
        if ctx._conn is not None:
            ctx._conn.rollback()

    def _fetch(self, sql: str, params: tuple = ()) -> list[tuple]:
        conn = self._connection_factory()
        cursor = conn.cursor()
        try:
            cursor.execute(sql, params)
            return cursor.fetchall()
        finally:
            cursor.close()
            conn.close()

    def list_all(self) -> list[JournalEvent]:
        rows = self._fetch(
            f"SELECT {self._SELECT_COLUMNS} FROM journal_events ORDER BY sequence_number"
        )
        return [self._row_to_event(row) for row in rows]

    def list_for_entity(self, entity_type: str, entity_id: str) -> list[JournalEvent]:
        rows = self._fetch(
            f"""
            SELECT {self._SELECT_COLUMNS} FROM journal_events
            WHERE entity_type = %s AND entity_id = %s
            ORDER BY sequence_number
            """,
            (entity_type, entity_id),
        )
        return [self._row_to_event(row) for row in rows]

    def get_head(self) -> ChainHead:
        rows = self._fetch("SELECT last_sequence, last_event_hash FROM journal_head WHERE id = TRUE")
        if not rows:
            return ChainHead(last_sequence=-1, last_event_hash=None)
        return ChainHead(last_sequence=rows[0][0], last_event_hash=rows[0][1])

    def get_event_count(self) -> int:
        return self._fetch("SELECT COUNT(*) FROM journal_events")[0][0]

    def _row_to_event(self, row: tuple) -> JournalEvent:
        payload = row[10]
        if isinstance(payload, str):
            payload = json.loads(payload)

        return JournalEvent(
            event_id=UUID(str(row[0])),
            sequence_number=row[1],
            previous_event_hash=row[2],
            event_hash=row[3],
            event_type=EventType(row[4]),
            entity_type=row[5],
            entity_id=row[6],
            created_by=UUID(str(row[7])),
            signature=row[8],
            created_at=row[9],
            payload=payload,
        )
