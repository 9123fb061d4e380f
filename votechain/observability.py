"""
Observability for the ledger service: structured logs tagged with the
current request id, in-process append and request metrics, and the
health report behind /health/detailed.

Environment:
- VOTECHAIN_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
- VOTECHAIN_LOG_FORMAT: json or text (default: json when VOTECHAIN_PRODUCTION is set)
- VOTECHAIN_PRODUCTION: production mode
"""

import json
import logging
import os
import sys
import time
import uuid
from collections import deque
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

REQUEST_ID_HEADER = "X-Request-ID"
LATENCY_SAMPLES = 1000

# Attributes every LogRecord carries; anything else came in as a field
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "taskName"}

_LOGGING_KWARGS = frozenset(("exc_info", "stack_info", "stacklevel", "extra"))


# ============================================================
# LOGGING
# ============================================================

def _log_level() -> int:
    level = logging.getLevelName(os.environ.get("VOTECHAIN_LOG_LEVEL", "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def _json_logs() -> bool:
    fmt = os.environ.get("VOTECHAIN_LOG_FORMAT", "").lower()
    if fmt in ("json", "text"):
        return fmt == "json"
    return os.environ.get("VOTECHAIN_PRODUCTION", "").lower() in ("1", "true", "yes")


def _fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Structured fields attached to a record through ContextLogger."""
    return {
        key: value for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class StructuredFormatter(logging.Formatter):
    """One JSON object per line: time, level, logger, message, request_id, fields."""

    def format(self, record: logging.LogRecord) -> str:
        line = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if request_id_var.get():
            line["request_id"] = request_id_var.get()
        line.update(_fields(record))
        if record.exc_info:
            line["exception"] = self.formatException(record.exc_info)
        return json.dumps(line, default=str)


class TextFormatter(logging.Formatter):
    """Single-line development output with fields appended as key=value."""

    def format(self, record: logging.LogRecord) -> str:
        when = datetime.fromtimestamp(record.created, timezone.utc).strftime("%H:%M:%S")
        request_id = request_id_var.get()
        parts = [when, f"{record.levelname:<7}", f"[{request_id}]" if request_id else "-", record.name, record.getMessage()]
        parts.extend(f"{key}={value}" for key, value in _fields(record).items())
        text = " ".join(parts)
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text


class ContextLogger(logging.LoggerAdapter):
    """Logger whose keyword arguments become structured fields."""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        fields = {key: kwargs.pop(key) for key in list(kwargs) if key not in _LOGGING_KWARGS}
        kwargs["extra"] = {**kwargs.get("extra", {}), **fields}
        return msg, kwargs


def get_logger(name: str) -> ContextLogger:
    return ContextLogger(logging.getLogger(name), {})


def setup_logging() -> None:
    """Install a single stdout handler on the root logger. Call once at startup."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter() if _json_logs() else TextFormatter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(_log_level())

    for noisy in ("uvicorn.access", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


# ============================================================
# REQUEST CONTEXT MIDDLEWARE
# ============================================================

class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Tags every log line of a request with its request id, echoes the id
    back in X-Request-ID, and records request count and latency.
    """

    logger = get_logger("votechain.request")

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:8]
        token = request_id_var.set(request_id)
        started = time.perf_counter()
        route = f"{request.method} {request.url.path}"
        try:
            response = await call_next(request)
        except Exception:
            elapsed = (time.perf_counter() - started) * 1000
            self.logger.exception(f"{route} -> unhandled error", duration_ms=round(elapsed, 2))
            get_metrics().record_request(elapsed, success=False)
            raise
        else:
            elapsed = (time.perf_counter() - started) * 1000
            self.logger.log(
                logging.INFO if response.status_code < 400 else logging.WARNING,
                f"{route} -> {response.status_code}",
                status_code=response.status_code,
                duration_ms=round(elapsed, 2),
            )
            get_metrics().record_request(elapsed, success=response.status_code < 500)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            request_id_var.reset(token)


# ============================================================
# METRICS
# ============================================================

@dataclass
class MetricsCollector:
    """Process-local counters and recent latency samples for /metrics."""

    # Counters
    entries_appended: int = 0
    append_conflicts: int = 0
    appends_exhausted: int = 0
    appends_rejected: int = 0
    requests_total: int = 0
    requests_failed: int = 0

    # Most recent latency samples
    append_latencies_ms: deque = field(default_factory=lambda: deque(maxlen=LATENCY_SAMPLES))
    request_latencies_ms: deque = field(default_factory=lambda: deque(maxlen=LATENCY_SAMPLES))

    def record_append(self, latency_ms: float) -> None:
        """Record a committed entry."""
        self.entries_appended += 1
        self.append_latencies_ms.append(latency_ms)

    def record_conflict(self) -> None:
        """Record a lost race for the chain tail."""
        self.append_conflicts += 1

    def record_exhausted(self) -> None:
        """Record an append that ran out of attempts."""
        self.appends_exhausted += 1

    def record_rejection(self) -> None:
        """Record an append refused by a commit-time rule."""
        self.appends_rejected += 1

    def record_request(self, latency_ms: float, success: bool) -> None:
        """Record a request."""
        self.requests_total += 1
        if not success:
            self.requests_failed += 1
        self.request_latencies_ms.append(latency_ms)

    def get_summary(self) -> Dict[str, Any]:
        return {
            "entries_appended": self.entries_appended,
            "append_conflicts": self.append_conflicts,
            "appends_exhausted": self.appends_exhausted,
            "appends_rejected": self.appends_rejected,
            "requests_total": self.requests_total,
            "requests_failed": self.requests_failed,
            "append_latency_p50_ms": _percentile(self.append_latencies_ms, 0.5),
            "append_latency_p95_ms": _percentile(self.append_latencies_ms, 0.95),
            "append_latency_p99_ms": _percentile(self.append_latencies_ms, 0.99),
            "request_latency_p50_ms": _percentile(self.request_latencies_ms, 0.5),
            "request_latency_p95_ms": _percentile(self.request_latencies_ms, 0.95),
        }


def _percentile(samples, p: float) -> Optional[float]:
    if not samples:
        return None
    ordered = sorted(samples)
    return ordered[min(int(len(ordered) * p), len(ordered) - 1)]


# Global metrics instance
_metrics = MetricsCollector()


def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return _metrics


# ============================================================
# HEALTH CHECKS
# ============================================================

@dataclass
class HealthStatus:
    """Health check result."""
    healthy: bool
    checks: Dict[str, Dict[str, Any]]
    duration_ms: float


def check_health(ledger=None, entry_store=None) -> HealthStatus:
    """
    Run all health checks.

    Args:
        ledger: LedgerService instance
        entry_store: EntryStore instance
    """
    start = time.perf_counter()
    checks = {}
    all_healthy = True

    checks["liveness"] = {"status": "healthy"}

    if entry_store is not None:
        try:
            tail = entry_store.get_tail()
            checks["entry_store"] = {
                "status": "healthy",
                "entry_count": tail.next_sequence,
                "tail_hash": tail.last_entry_hash[:16] + "..." if tail.last_entry_hash else None,
            }
        except Exception as e:
            checks["entry_store"] = {
                "status": "unhealthy",
                "error": str(e),
            }
            all_healthy = False

    if ledger is not None:
        try:
            result = ledger.validate_chain()
            checks["chain_integrity"] = {
                "status": "healthy" if result.valid else "unhealthy",
                **result.to_dict(),
            }
            if not result.valid:
                all_healthy = False
        except Exception as e:
            checks["chain_integrity"] = {
                "status": "unhealthy",
                "error": str(e),
            }
            all_healthy = False

    duration_ms = (time.perf_counter() - start) * 1000

    return HealthStatus(
        healthy=all_healthy,
        checks=checks,
        duration_ms=round(duration_ms, 2),
    )
