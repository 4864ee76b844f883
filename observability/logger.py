"""
Observability Layer — Structured Logging & timings.

Responsibility:
- Log pipeline events as single-line JSON records
- Time stages and external calls (model, data provider)
- Carry request_id / trace_id through one query's lifetime

Module loggers (logging.getLogger(__name__)) remain the place for
free-text diagnostics; this layer is for machine-readable events.
"""

import json
import logging
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

logger = logging.getLogger("observability")


class Observability:
    """Structured logger bound to one request."""

    def __init__(self, request_id: str | None = None):
        self.request_id = request_id or uuid.uuid4().hex[:12]
        self.trace_id = str(uuid.uuid4())

    def log_event(self, event_type: str, payload: dict[str, Any], level: str = "INFO") -> None:
        """Log a structured event."""
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "request_id": self.request_id,
            "trace_id": self.trace_id,
            "event": event_type,
            "level": level,
            **payload,
        }
        log_method = getattr(logger, level.lower(), logger.info)
        log_method(json.dumps(entry, default=str))

    @contextmanager
    def measure(self, operation: str, metadata: dict[str, Any] | None = None) -> Iterator[dict[str, Any]]:
        """Time an operation and emit an ``execution_metric`` event.

        Yields a mutable dict; keys added inside the block are included in the event.
        """
        start_time = time.perf_counter()
        extra: dict[str, Any] = dict(metadata or {})
        success = True
        error = None
        try:
            yield extra
        except Exception as e:
            success = False
            error = str(e)
            raise
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self.log_event(
                "execution_metric",
                {
                    "operation": operation,
                    "duration_ms": round(duration_ms, 2),
                    "success": success,
                    "error": error,
                    **extra,
                },
            )
