"""
Database Layer for the ClaimGate journal

Provides:
- PostgreSQL schema
- EventStore abstraction (InMemory for dev, Postgres for prod)
- Connection configuration and driver selection
"""

from .store import (
    AppendContext,
    ChainHead,
    ChainIntegrityError,
    ConcurrencyError,
    EventStore,
    EventStoreError,
    InMemoryEventStore,
    LockTimeoutError,
    PostgresEventStore,
)
from .config import (
    DatabaseConfig,
    EventStoreDriver,
    create_event_store,
    get_database_url,
    get_eventstore_driver,
)

__all__ = [
    "AppendContext",
    "ChainHead",
    "ChainIntegrityError",
    "ConcurrencyError",
    "EventStore",
    "EventStoreError",
    "InMemoryEventStore",
    "LockTimeoutError",
    "PostgresEventStore",
    "DatabaseConfig",
    "EventStoreDriver",
    "create_event_store",
    "get_database_url",
    "get_eventstore_driver",
]
