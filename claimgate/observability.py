"""
Observability: structured logging, request context, metrics and health.

Environment:
- CLAIMGATE_LOG_LEVEL: standard level name (default INFO)
- CLAIMGATE_LOG_FORMAT: json or text (json by default when CLAIMGATE_PRODUCTION is set)

Log calls take structured fields as keyword arguments:

    logger = get_logger(__name__)
    logger.info("Claim approved", claim_id=7, fact_id="flight-LH123")
"""

import json
import logging
import os
import sys
import time
import uuid
from collections import Counter
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

request_id_var: ContextVar[str] = ContextVar("request_id", default="")
actor_id_var: ContextVar[str] = ContextVar("actor_id", default="")

# Attributes every LogRecord has; anything else came in as a structured field.
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message", "asctime",
}


def _fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: v for k, v in vars(record).items() if k not in _STANDARD_ATTRS}


class ClaimGateFormatter(logging.Formatter):
    """
    One formatter, two renderings. JSON lines carry request and actor ids
    plus every structured field; text lines carry a short request id only.
    """

    def __init__(self, as_json: bool):
        super().__init__()
        self.as_json = as_json

    def format(self, record: logging.LogRecord) -> str:
        if self.as_json:
            return self._json(record)
        request_id = request_id_var.get()
        line = "{} {:8} {}{}: {}".format(
            datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S"),
            record.levelname,
            f"[{request_id}] " if request_id else "",
            record.name,
            record.getMessage(),
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line

    def _json(self, record: logging.LogRecord) -> str:
        data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": request_id_var.get() or None,
            "actor_id": actor_id_var.get() or None,
        }
        data.update(_fields(record))
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        return json.dumps({k: v for k, v in data.items() if v is not None}, default=str)


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that moves keyword arguments into ``extra``."""

    _PASSTHROUGH = ("exc_info", "stack_info", "stacklevel", "extra")

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = kwargs.setdefault("extra", {})
        for key in [k for k in kwargs if k not in self._PASSTHROUGH]:
            extra[key] = kwargs.pop(key)
        return msg, kwargs


def get_logger(name: str) -> ContextLogger:
    return ContextLogger(logging.getLogger(name), {})


def setup_logging() -> None:
    """Install a single stdout handler on the root logger. Idempotent."""
    level = logging.getLevelName(os.environ.get("CLAIMGATE_LOG_LEVEL", "INFO").upper())
    if not isinstance(level, int):
        level = logging.INFO

    log_format = os.environ.get("CLAIMGATE_LOG_FORMAT", "").lower()
    if log_format in ("json", "text"):
        as_json = log_format == "json"
    else:
        as_json = os.environ.get("CLAIMGATE_PRODUCTION", "").lower() in ("1", "true", "yes")

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ClaimGateFormatter(as_json))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def bind_actor(actor_id: Any) -> None:
    """Attach the acting actor to log lines for the rest of the request."""
    actor_id_var.set(str(actor_id))


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Binds a request id (X-Request-ID, or a fresh one) for the duration of
    the request, logs one line per response and feeds request metrics.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        request_id_var.set(request_id)
        logger = get_logger("claimgate.request")
        route = f"{request.method} {request.url.path}"
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Request-ID"] = request_id
            return response
        except Exception:
            logger.exception(f"{route} failed")
            raise
        finally:
            duration_ms = (time.perf_counter() - started) * 1000
            logger.log(
                logging.INFO if status_code < 400 else logging.WARNING,
                f"{route} -> {status_code}",
                status_code=status_code,
                duration_ms=round(duration_ms, 2),
            )
            get_metrics().record_request(duration_ms, success=status_code < 500)
            request_id_var.set("")
            actor_id_var.set("")


@dataclass
class MetricsCollector:
    """Process-local counters and latency samples, served at /metrics."""

    events_appended: int = 0
    requests_total: int = 0
    requests_failed: int = 0
    submissions_recorded: int = 0
    settlements: int = 0
    payout_failures: int = 0
    rejected_mutations: int = 0

    # Labelled counters
    resolutions: Counter = field(default_factory=Counter)
    claim_transitions: Counter = field(default_factory=Counter)

    # Histograms (simplified as lists)
    append_latencies_ms: list = field(default_factory=list)
    request_latencies_ms: list = field(default_factory=list)

    def record_append(self, latency_ms: float) -> None:
        self.events_appended += 1
        self.append_latencies_ms.append(latency_ms)
        # Keep only last 1000 samples
        if len(self.append_latencies_ms) > 1000:
            self.append_latencies_ms = self.append_latencies_ms[-1000:]

    def record_request(self, latency_ms: float, success: bool) -> None:
        self.requests_total += 1
        if not success:
            self.requests_failed += 1
        self.request_latencies_ms.append(latency_ms)
        if len(self.request_latencies_ms) > 1000:
            self.request_latencies_ms = self.request_latencies_ms[-1000:]

    def record_submission(self) -> None:
        self.submissions_recorded += 1

    def record_resolution(self, outcome: str) -> None:
        """outcome is "resolved", "pending" or "rejected"."""
        self.resolutions[outcome] += 1

    def record_claim_transition(self, action: str) -> None:
        self.claim_transitions[action] += 1

    def record_settlement(self, success: bool) -> None:
        if success:
            self.settlements += 1
        else:
            self.payout_failures += 1

    def record_rejection(self) -> None:
        self.rejected_mutations += 1

    def reset(self) -> None:
        """Zero every metric (tests only)."""
        fresh = MetricsCollector()
        self.__dict__.update(fresh.__dict__)

    def get_summary(self) -> Dict[str, Any]:
        def percentile(data: list, p: float) -> Optional[float]:
            if not data:
                return None
            sorted_data = sorted(data)
            idx = int(len(sorted_data) * p)
            return sorted_data[min(idx, len(sorted_data) - 1)]

        return {
            "events_appended": self.events_appended,
            "requests_total": self.requests_total,
            "requests_failed": self.requests_failed,
            "submissions_recorded": self.submissions_recorded,
            "resolutions": dict(self.resolutions),
            "claim_transitions": dict(self.claim_transitions),
            "settlements": self.settlements,
            "payout_failures": self.payout_failures,
            "rejected_mutations": self.rejected_mutations,
            "append_latency_p50_ms": percentile(self.append_latencies_ms, 0.5),
            "append_latency_p95_ms": percentile(self.append_latencies_ms, 0.95),
            "append_latency_p99_ms": percentile(self.append_latencies_ms, 0.99),
            "request_latency_p50_ms": percentile(self.request_latencies_ms, 0.5),
            "request_latency_p95_ms": percentile(self.request_latencies_ms, 0.95),
        }


# Global metrics instance
_metrics = MetricsCollector()


def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return _metrics


@dataclass
class HealthStatus:
    healthy: bool
    checks: Dict[str, Dict[str, Any]]
    duration_ms: float


def _store_check(event_store) -> Dict[str, Any]:
    head = event_store.get_head()
    return {
        "status": "healthy",
        "event_count": head.next_sequence,
        "last_hash": head.last_event_hash[:16] if head.last_event_hash else None,
    }


def _chain_check(service) -> Dict[str, Any]:
    valid = service.journal.verify_chain_integrity()
    return {
        "status": "healthy" if valid else "unhealthy",
        "valid": valid,
        "event_count": service.journal.event_count,
    }


def check_health(service=None, event_store=None) -> HealthStatus:
    """Store reachability, journal chain integrity and service flags."""
    started = time.perf_counter()
    checks: Dict[str, Dict[str, Any]] = {"liveness": {"status": "healthy"}}

    probes = []
    if event_store is not None:
        probes.append(("event_store", lambda: _store_check(event_store)))
    if service is not None and service.journal.event_count > 0:
        probes.append(("chain_integrity", lambda: _chain_check(service)))

    for name, run in probes:
        try:
            checks[name] = run()
        except Exception as e:
            checks[name] = {"status": "unhealthy", "error": str(e)}

    if service is not None:
        checks["service"] = {
            "status": "healthy",
            "paused": service.is_paused,
            "oracle_gating": service.oracle_gating,
            "unrecorded_payouts": len(service.unrecorded_payouts()),
        }

    return HealthStatus(
        healthy=all(check["status"] == "healthy" for check in checks.values()),
        checks=checks,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )
