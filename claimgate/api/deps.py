"""
Shared Service Instance

Holds the one ClaimGateService the HTTP layer talks to.

Store selection follows the database configuration:
- EVENTSTORE_DRIVER: explicit driver (memory, psycopg2)
- DATABASE_URL or DATABASE_HOST: PostgreSQL (auto-selects psycopg2)
- Neither set: in-memory (development)

With a persistent store the service is rebuilt from the journal on startup
and the whole chain is verified.

GENESIS:
If the journal is empty and CLAIMGATE_ADMIN_PRIVATE_KEY is set, the
genesis admin is registered from it (CLAIMGATE_ADMIN_PUBLIC_KEY, if set,
must match). CLAIMGATE_ADMIN_NAME names them (default "admin").
"""

import os
from threading import Lock
from typing import Optional

from ..core import ClaimGateService, ServiceConfig, Signer
from ..db.config import create_event_store
from ..observability import get_logger
from ..schemas import Role

logger = get_logger(__name__)

_service: Optional[ClaimGateService] = None
_service_lock = Lock()


def build_service_from_env() -> ClaimGateService:
    """Create the store, rebuild the service from it and seed the genesis admin."""
    store = create_event_store()
    service = ClaimGateService.load_from_store(store, config=ServiceConfig.from_env())

    logger.info(
        "Service ready",
        store_type=type(store).__name__,
        event_count=service.journal.event_count,
        oracle_gating=service.oracle_gating,
        paused=service.is_paused,
    )

    if not service.has_genesis_admin:
        _seed_genesis_admin(service)

    return service


def _seed_genesis_admin(service: ClaimGateService) -> None:
    private_key = os.getenv("CLAIMGATE_ADMIN_PRIVATE_KEY")
    if not private_key:
        logger.warning("No genesis admin configured; set CLAIMGATE_ADMIN_PRIVATE_KEY")
        return

    public_key = Signer.public_key_for(private_key)
    expected = os.getenv("CLAIMGATE_ADMIN_PUBLIC_KEY")
    if expected and expected != public_key:
        raise ValueError(
            "CLAIMGATE_ADMIN_PUBLIC_KEY does not match CLAIMGATE_ADMIN_PRIVATE_KEY"
        )

    admin = service.register_actor(
        actor_id=None,
        private_key=private_key,
        name=os.getenv("CLAIMGATE_ADMIN_NAME", "admin"),
        role=Role.ADMIN,
        public_key=public_key,
    )
    logger.info("Genesis admin registered", target_id=str(admin.actor_id))


def get_service() -> ClaimGateService:
    """FastAPI dependency: the shared service, created on first use."""
    global _service
    if _service is None:
        with _service_lock:
            if _service is None:
                _service = build_service_from_env()
    return _service


def set_service(service: Optional[ClaimGateService]) -> None:
    """Replace the shared service (startup wiring and tests)."""
    global _service
    with _service_lock:
        _service = service
