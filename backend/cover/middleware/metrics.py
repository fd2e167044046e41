"""
Prometheus metrics middleware.

Collects HTTP request metrics (counter + histogram) and exposes
application-level counters for authorization decisions and lifecycle
transitions.
"""

import time
import uuid

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

# ── HTTP metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# ── Authorization metrics ────────────────────────────────────────────────────

authz_decisions_total = Counter(
    "authz_decisions_total",
    "Authorization decisions by resource, permission and outcome",
    ["resource", "permission", "outcome"],
)

# ── Lifecycle metrics ────────────────────────────────────────────────────────

lifecycle_transitions_total = Counter(
    "lifecycle_transitions_total",
    "Status transitions applied",
    ["entity", "from_status", "to_status"],
)


def record_transition(entity: str, old, new) -> None:
    lifecycle_transitions_total.labels(
        entity=entity,
        from_status=getattr(old, "value", old) or "",
        to_status=getattr(new, "value", new),
    ).inc()


def _is_uuid(part: str) -> bool:
    try:
        uuid.UUID(part)
    except ValueError:
        return False
    return True


def _normalize_path(path: str) -> str:
    """Collapse resource IDs to reduce cardinality.

    e.g. /items/6f1c.../submit → /items/{id}/submit
    """
    parts = path.strip("/").split("/")
    normalized = ["{id}" if _is_uuid(part) else part for part in parts]
    return "/" + "/".join(normalized)


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        # Skip metrics endpoint itself to avoid recursion
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        path = _normalize_path(request.url.path)

        start = time.time()
        response = await call_next(request)
        duration = time.time() - start

        http_requests_total.labels(
            method=method,
            path=path,
            status_code=response.status_code,
        ).inc()

        http_request_duration_seconds.labels(
            method=method,
            path=path,
        ).observe(duration)

        return response
