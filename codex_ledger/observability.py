"""
Observability Module - Logging, Metrics, and Health

Provides:
- Structured JSON logging with request IDs
- Request/response logging middleware
- Metrics collection (append latency, conflicts, duplicates, etc.)
- Health check utilities

Configuration:
- CODEX_LEDGER_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
- CODEX_LEDGER_LOG_FORMAT: json, text (default: json in production)
- CODEX_LEDGER_PRODUCTION: Enable production mode

Usage:
    from codex_ledger.observability import get_logger

    logger = get_logger(__name__)
    logger.info("Entry appended", subject_id=subject_id, sequence=entry.sequence)

Never pass the chain secret or witness private keys as log fields.
"""

import json
import logging
import os
import sys
import threading
import time
import uuid
from collections import deque
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Iterable, Optional, TYPE_CHECKING

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

if TYPE_CHECKING:
    from .core.ledger import AuthorshipLedger

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

_RECORD_FIELDS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message"}


# ============================================================
# CONFIGURATION
# ============================================================

def is_production() -> bool:
    return os.environ.get("CODEX_LEDGER_PRODUCTION", "").lower() in ("1", "true", "yes")


_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _get_log_level() -> int:
    name = os.environ.get("CODEX_LEDGER_LOG_LEVEL", "INFO").upper()
    return getattr(logging, name) if name in _LOG_LEVELS else logging.INFO


def _use_json_logging() -> bool:
    format_str = os.environ.get("CODEX_LEDGER_LOG_FORMAT", "").lower()
    if format_str == "json":
        return True
    if format_str == "text":
        return False
    return is_production()


# ============================================================
# STRUCTURED LOGGING
# ============================================================

class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Output format:
    {
        "timestamp": "2024-01-15T10:30:00.000000+00:00",
        "level": "INFO",
        "logger": "codex_ledger.core.ledger",
        "message": "Entry appended",
        "request_id": "abc-123",
        "subject_id": "P1",
        ...extra fields...
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RECORD_FIELDS or key.startswith("_"):
                continue
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = str(value)

        return json.dumps(log_data)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def format(self, record: logging.LogRecord) -> str:
        prefix = ""
        request_id = request_id_var.get()
        if request_id:
            prefix = f"[{request_id[:8]}] "

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        msg = f"{timestamp} {record.levelname:8} {prefix}{record.name}: {record.getMessage()}"

        context = {
            k: v for k, v in record.__dict__.items()
            if k not in _RECORD_FIELDS and not k.startswith("_")
        }
        if context:
            msg += " " + " ".join(f"{k}={v}" for k, v in sorted(context.items()))

        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)

        return msg


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that takes context as keyword arguments.

    Usage:
        logger = get_logger(__name__)
        logger.warning("Append conflict", subject_id="P1", attempt=2)
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = dict(kwargs.get("extra") or {})
        for key in list(kwargs.keys()):
            if key not in ("exc_info", "stack_info", "stacklevel", "extra"):
                extra[key] = kwargs.pop(key)
        kwargs["extra"] = extra
        return msg, kwargs


def get_logger(name: str) -> ContextLogger:
    """
    Get a structured logger for the given name.

    Args:
        name: Logger name (typically __name__)
    """
    return ContextLogger(logging.getLogger(name), {})


def setup_logging() -> None:
    """
    Configure logging for the process.

    Call this once at startup (the API lifespan and tools/manage.py do).
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(_get_log_level())

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(_get_log_level())
    if _use_json_logging():
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(TextFormatter())
    root_logger.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ============================================================
# REQUEST CONTEXT MIDDLEWARE
# ============================================================

class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Sets up request context for logging.

    - Reuses X-Request-ID when the caller sends one, else generates it
    - Logs each request with timing and feeds request metrics
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        token = request_id_var.set(request_id)

        logger = get_logger("codex_ledger.request")
        start_time = time.perf_counter()

        try:
            response = await call_next(request)

            duration_ms = (time.perf_counter() - start_time) * 1000
            log_level = logging.INFO if response.status_code < 400 else logging.WARNING
            logger.log(
                log_level,
                f"{request.method} {request.url.path} -> {response.status_code}",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )
            get_metrics().record_request(duration_ms, success=response.status_code < 500)

            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.exception(
                f"{request.method} {request.url.path} -> 500",
                method=request.method,
                path=request.url.path,
                status_code=500,
                duration_ms=round(duration_ms, 2),
                error=str(e),
            )
            get_metrics().record_request(duration_ms, success=False)
            raise

        finally:
            request_id_var.reset(token)


# ============================================================
# METRICS
# ============================================================

LATENCY_SAMPLES = 1000


def _percentile(samples: Iterable[float], p: float) -> Optional[float]:
    ordered = sorted(samples)
    if not ordered:
        return None
    return ordered[min(int(len(ordered) * p), len(ordered) - 1)]


@dataclass
class MetricsCollector:
    """
    In-memory metrics for one process.

    Latency windows keep the most recent LATENCY_SAMPLES values.
    """

    # Counters
    entries_appended: int = 0
    append_conflicts: int = 0
    duplicates_rejected: int = 0
    verification_failures: int = 0
    journal_failures: int = 0
    requests_total: int = 0
    requests_failed: int = 0

    append_latencies_ms: Deque[float] = field(default_factory=lambda: deque(maxlen=LATENCY_SAMPLES))
    request_latencies_ms: Deque[float] = field(default_factory=lambda: deque(maxlen=LATENCY_SAMPLES))

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_append(self, latency_ms: float) -> None:
        with self._lock:
            self.entries_appended += 1
            self.append_latencies_ms.append(latency_ms)

    def record_conflict(self) -> None:
        with self._lock:
            self.append_conflicts += 1

    def record_duplicate(self) -> None:
        with self._lock:
            self.duplicates_rejected += 1

    def record_verification_failure(self) -> None:
        with self._lock:
            self.verification_failures += 1

    def record_journal_failure(self) -> None:
        with self._lock:
            self.journal_failures += 1

    def record_request(self, latency_ms: float, success: bool) -> None:
        with self._lock:
            self.requests_total += 1
            if not success:
                self.requests_failed += 1
            self.request_latencies_ms.append(latency_ms)

    def get_summary(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "entries_appended": self.entries_appended,
                "append_conflicts": self.append_conflicts,
                "duplicates_rejected": self.duplicates_rejected,
                "verification_failures": self.verification_failures,
                "journal_failures": self.journal_failures,
                "requests_total": self.requests_total,
                "requests_failed": self.requests_failed,
                "append_latency_p50_ms": _percentile(self.append_latencies_ms, 0.5),
                "append_latency_p95_ms": _percentile(self.append_latencies_ms, 0.95),
                "append_latency_p99_ms": _percentile(self.append_latencies_ms, 0.99),
                "request_latency_p50_ms": _percentile(self.request_latencies_ms, 0.5),
                "request_latency_p95_ms": _percentile(self.request_latencies_ms, 0.95),
            }


_metrics = MetricsCollector()


def get_metrics() -> MetricsCollector:
    """Get the process-wide metrics collector."""
    return _metrics


def reset_metrics() -> MetricsCollector:
    """Replace the process-wide collector (tests)."""
    global _metrics
    _metrics = MetricsCollector()
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


def check_health(ledger: Optional["AuthorshipLedger"] = None) -> HealthStatus:
    """
    Run all health checks.

    Chain verification is not run here: it is per
    subject and unbounded in cost. Use /verify or tools/manage.py.
    """
    from .errors import Unavailable

    start = time.perf_counter()
    checks: Dict[str, Dict[str, Any]] = {"liveness": {"status": "healthy"}}
    all_healthy = True

    if ledger is not None:
        try:
            checks["store"] = {
                "status": "healthy",
                "backend": ledger.store.backend_name,
                "entry_count": ledger.store.count(),
            }
        except Unavailable as e:
            checks["store"] = {"status": "unhealthy", "error": str(e)}
            all_healthy = False

        checks["journal"] = {
            "status": "healthy",
            "configured": ledger.journal is not None,
        }

    duration_ms = (time.perf_counter() - start) * 1000
    return HealthStatus(healthy=all_healthy, checks=checks, duration_ms=round(duration_ms, 2))
