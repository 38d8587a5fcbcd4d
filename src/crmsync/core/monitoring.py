"""Prometheus metrics for HTTP requests, CRM calls and reconciliation actions.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- track_crm_call(): Context manager for CRM call metrics
- record_action(): Counter helper for executed reconciliation actions
- get_metrics_response(): Body and content type for the /metrics endpoint
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "crmsync_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "crmsync_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── CRM Metrics ──────────────────────────────────────────────────────────────

crm_calls_total = Counter(
    "crmsync_crm_calls_total",
    "Total CRM API calls",
    ["operation", "entity", "status"],
)

crm_call_duration_seconds = Histogram(
    "crmsync_crm_call_duration_seconds",
    "CRM API call duration in seconds",
    ["operation", "entity"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# ── Reconciliation Metrics ───────────────────────────────────────────────────

reconcile_actions_total = Counter(
    "crmsync_reconcile_actions_total",
    "Reconciliation actions by kind, action and outcome",
    ["entity_kind", "action", "outcome"],
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    Skips the /metrics endpoint itself to avoid self-referential counting.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        endpoint = request.url.path

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
        ).inc()

        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


# ── CRM Call Helper ──────────────────────────────────────────────────────────


@asynccontextmanager
async def track_crm_call(operation: str, entity: str) -> AsyncGenerator[None, None]:
    """Context manager that tracks one CRM call attempt.

    Usage:
        async with track_crm_call("create", "Phone"):
            record = await api.create("Phone", payload)

    Records duration and a success/error count.
    """
    start_time = time.perf_counter()
    status = "success"

    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        duration = time.perf_counter() - start_time

        crm_calls_total.labels(
            operation=operation,
            entity=entity,
            status=status,
        ).inc()

        crm_call_duration_seconds.labels(
            operation=operation,
            entity=entity,
        ).observe(duration)


def record_action(entity_kind: str, action: str, outcome: str) -> None:
    """Count one executed (or failed/skipped) reconciliation action."""
    reconcile_actions_total.labels(
        entity_kind=entity_kind,
        action=action,
        outcome=outcome,
    ).inc()


def get_metrics_response() -> tuple[bytes, str]:
    """Return the Prometheus exposition body and its content type."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
