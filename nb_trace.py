"""
Request-scoped tracing for NearBite outbound calls.

Provides a thread-local TraceContext that records one entry per external
call made on behalf of a page action (geocode lookup, device position fix)
and emits a single summary line at the end.

Usage:
    from nb_trace import TraceContext, get_trace, set_trace, clear_trace

    ctx = TraceContext(trace_id="sync-map-42")
    set_trace(ctx)
    ...
    ctx.log_summary()
    clear_trace()

    # In adapters:
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
    """One outbound call (geocoder, location provider)."""
    service: str          # "nominatim" | "location"
    endpoint: str         # "search", "current_position"
    elapsed_ms: int
    status_code: int      # HTTP status; 0 when not HTTP or no response
    provider_status: str = ""   # e.g. "OK", "ZERO_RESULTS", "TIMEOUT"


@dataclass
class TraceContext:
    """Accumulates outbound call timings for a single page action."""
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
    ):
        rec = APICallRecord(
            service=service,
            endpoint=endpoint,
            elapsed_ms=int(elapsed_ms),
            status_code=status_code,
            provider_status=provider_status,
        )
        self.api_calls.append(rec)
        logger.info(
            "  [api] trace=%s svc=%s ep=%s ms=%d http=%d provider=%s",
            self.trace_id,
            service,
            endpoint,
            rec.elapsed_ms,
            status_code,
            provider_status,
        )

    def summary_dict(self) -> Dict[str, Any]:
        """Return a summary dict suitable for logging and debug output."""
        failed = [c for c in self.api_calls if c.provider_status not in ("OK", "")]
        if not self.api_calls:
            outcome = "empty"
        elif len(failed) == len(self.api_calls):
            outcome = "error"
        elif failed:
            outcome = "partial"
        else:
            outcome = "success"
        return {
            "trace_id": self.trace_id,
            "total_elapsed_ms": int((time.time() - self.request_start) * 1000),
            "total_api_calls": len(self.api_calls),
            "failed_api_calls": len(failed),
            "final_outcome": outcome,
            "calls": [
                {
                    "service": c.service,
                    "endpoint": c.endpoint,
                    "elapsed_ms": c.elapsed_ms,
                    "status_code": c.status_code,
                    "provider_status": c.provider_status,
                }
                for c in self.api_calls
            ],
        }

    def log_summary(self):
        """Emit a single structured summary log line."""
        s = self.summary_dict()
        logger.info(
            "[trace-summary] trace=%s total_ms=%d api_calls=%d failed=%d outcome=%s",
            s["trace_id"],
            s["total_elapsed_ms"],
            s["total_api_calls"],
            s["failed_api_calls"],
            s["final_outcome"],
        )


# =============================================================================
# Thread-local storage
# =============================================================================

_trace_local = threading.local()


def get_trace() -> Optional[TraceContext]:
    """Get the current trace context, or None."""
    return getattr(_trace_local, "ctx", None)


def set_trace(ctx: Optional[TraceContext]):
    """Set the trace context for the current thread."""
    _trace_local.ctx = ctx


def clear_trace():
    """Clear the current trace context."""
    _trace_local.ctx = None
