"""
ClaimGate - oracle consensus gating claim settlement

Main application entry point.

Run with (needs the "server" extra):
    uvicorn claimgate.main:app
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from claimgate.api.deps import get_service
from claimgate.api.routes import router
from claimgate.observability import (
    RequestContextMiddleware,
    check_health,
    get_logger,
    get_metrics,
    setup_logging,
)

# Setup logging at import time
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    service = get_service()
    app.state.service = service
    app.state.event_store = service.journal.event_store

    if service.journal.event_count > 0:
        if service.journal.verify_chain_integrity():
            logger.info("Chain integrity verified OK", event_count=service.journal.event_count)
        else:
            logger.error("Chain integrity check FAILED!")

    logger.info(
        "Application startup complete",
        event_count=service.journal.event_count,
        store_type=type(app.state.event_store).__name__,
    )

    yield

    logger.info("Application shutdown complete")


app = FastAPI(
    title="ClaimGate",
    description="""
## Oracle consensus gating claim settlement

Independent oracles report integer values for a fact. Once enough fresh,
agreeing reports exist, the fact is resolved to a single value, written
once. Claims against insurance policies can only be approved against a
resolved fact (while oracle gating is on) and are paid out at most once.

### Claim Lifecycle

```
Submitted → UnderReview → Approved → Settled
                        ↘ Rejected
```

### API Design

- Every write is a signed, hash-chained journal event
- No PATCH, no PUT, no DELETE
- Every command carries the acting actor's id and private key

### Storage Backends

- **InMemoryEventStore**: Development/testing (default)
- **PostgresEventStore**: Production with full durability

Set `DATABASE_URL` or `DATABASE_HOST` environment variables to use PostgreSQL.
    """,
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(RequestContextMiddleware)
app.include_router(router)


@app.get("/health", tags=["System"])
async def health():
    """Returns 200 if the process is up. For detailed health, use /health/detailed."""
    return {"status": "healthy", "service": "claimgate"}


@app.get("/health/detailed", tags=["System"])
async def health_detailed(request: Request):
    """
    Detailed health check.

    Checks:
    - Service liveness
    - Event store connectivity
    - Chain integrity (if events exist)

    Returns 200 if healthy, 503 if unhealthy.
    """
    service = request.app.state.service
    health_status = check_health(service=service, event_store=service.journal.event_store)

    return JSONResponse(
        status_code=200 if health_status.healthy else 503,
        content={
            "status": "healthy" if health_status.healthy else "unhealthy",
            "checks": health_status.checks,
            "duration_ms": health_status.duration_ms,
        },
    )


@app.get("/metrics", tags=["System"])
async def metrics():
    """Counters and latency percentiles."""
    return get_metrics().get_summary()
