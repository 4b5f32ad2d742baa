"""
Request-scoped tracing for AQI lookups.

Provides a thread-local TraceContext that records:
  - Per-outbound-call timing (service, endpoint, elapsed_ms, status, provider status)
  - Cache hits served by the retrieval pipeline (recorded as provider_status="cache_hit")
  - End-of-request summary (total_elapsed, total_api_calls, cache_hits, outcome)

Usage:
    from aqi_trace import TraceContext, get_trace, set_trace, clear_trace

    # In the request handler (app.py / cli.py):
    ctx = TraceContext(trace_id=request_id)
    set_trace(ctx)
    ...
    ctx.log_summary()
    clear_trace()

    # In the transport and pipeline:
    trace = get_trace()
    if trace:
        trace.record_api_call(...)
"""

import time
import threading
import logging
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Any

logger = logging.getLogger(__name__)


@dataclass
class APICallRecord:
    """One outbound HTTP call, or one cache hit standing in for it."""
    service: str          # "waqi"
    endpoint: str         # "feed" | "search"
    elapsed_ms: int
    status_code: int
    provider_status: str = ""   # WAQI "ok" / "error", or "cache_hit", "timeout", ...
    place: str = ""


@dataclass
class TraceContext:
    """Accumulates call records for a single report request."""
    trace_id: str
    request_start: float = field(default_factory=time.time)
    api_calls: List[APICallRecord] = field(default_factory=list)

    def record_api_call(
        self,
        service: str,
        endpoint: str,
        elapsed_ms: int,
        status_code: int,
        provider_status: str = "",
        place: str = "",
    ):
        rec = APICallRecord(
            service=service,
            endpoint=endpoint,
            elapsed_ms=elapsed_ms,
            status_code=status_code,
            provider_status=provider_status,
            place=place,
        )
        self.api_calls.append(rec)
        logger.info(
            "  [api] trace=%s place=%s svc=%s ep=%s ms=%d http=%d provider=%s",
            self.trace_id,
            place or "-",
            service,
            endpoint,
            elapsed_ms,
            status_code,
            provider_status,
        )

    @property
    def cache_hits(self) -> int:
        return sum(1 for c in self.api_calls if c.provider_status == "cache_hit")

    @property
    def network_calls(self) -> int:
        return len(self.api_calls) - self.cache_hits

    def summary_dict(self) -> Dict[str, Any]:
        """Return a summary dict suitable for logging and JSON responses."""
        total_elapsed = int((time.time() - self.request_start) * 1000)
        failed = [
            c for c in self.api_calls
            if c.status_code == 0 and c.provider_status != "cache_hit"
        ]

        if not self.api_calls:
            outcome = "empty"
        elif failed and len(failed) == len(self.api_calls):
            outcome = "error"
        elif failed:
            outcome = "partial"
        else:
            outcome = "success"

        return {
            "trace_id": self.trace_id,
            "total_elapsed_ms": total_elapsed,
            "total_api_calls": self.network_calls,
            "cache_hits": self.cache_hits,
            "final_outcome": outcome,
        }

    def log_summary(self):
        """Emit a single structured summary log line."""
        s = self.summary_dict()
        logger.info(
            "[trace-summary] trace=%s total_ms=%d api_calls=%d cache_hits=%d outcome=%s",
            s["trace_id"],
            s["total_elapsed_ms"],
            s["total_api_calls"],
            s["cache_hits"],
            s["final_outcome"],
        )


# =============================================================================
# Thread-local storage
# =============================================================================

_trace_local = threading.local()


def get_trace() -> Optional[TraceContext]:
    """Get the current request's trace context, or None."""
    return getattr(_trace_local, "ctx", None)


def set_trace(ctx: Optional[TraceContext]):
    """Set the trace context for the current thread."""
    _trace_local.ctx = ctx


def clear_trace():
    """Clear the current trace context."""
    _trace_local.ctx = None
