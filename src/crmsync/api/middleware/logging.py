"""Structured request logging middleware.

Each webhook from the CRM or the Content System gets a request_id. A sender
that already carries one in ``X-Request-ID`` keeps it, so a write can be
followed from the system that made it through every reconciliation it
triggers. The id is:

- stored on ``request.state``, where get_sync_context() picks it up
- bound into structlog's contextvars together with the event source, so
  every log line emitted while the request runs carries both
- returned to the sender in the ``X-Request-ID`` response header

Uses structlog for structured JSON logging in production and
human-readable console output in development.
"""

from __future__ import annotations

import logging
import re
import time
import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.crmsync.config import Environment, get_settings

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Ids longer than this, or with other characters, are replaced.
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")

_EVENTS_PREFIX = "/api/v1/events/"


def configure_structlog() -> None:
    """Configure structlog processors based on environment."""
    settings = get_settings()

    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.ENVIRONMENT == Environment.production:
        shared_processors.append(structlog.processors.JSONRenderer())
    else:
        shared_processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=shared_processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def request_id_for(request: Request) -> str:
    """The sender's request id if usable, else a fresh UUID."""
    supplied = request.headers.get(REQUEST_ID_HEADER, "")
    if _REQUEST_ID_PATTERN.match(supplied):
        return supplied
    return str(uuid.uuid4())


def event_source(path: str) -> str | None:
    """``crm`` or ``content`` for webhook paths, None for everything else."""
    if path.startswith(_EVENTS_PREFIX):
        return path[len(_EVENTS_PREFIX):].strip("/") or None
    return None


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs every webhook and health request with its source and timing."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request_id_for(request)
        request.state.request_id = request_id
        source = event_source(request.url.path)
        start_time = time.monotonic()

        with structlog.contextvars.bound_contextvars(request_id=request_id, source=source):
            try:
                response = await call_next(request)
            except Exception:
                logger.error(
                    "http.request_failed",
                    method=request.method,
                    path=request.url.path,
                    status_code=500,
                    duration_ms=round((time.monotonic() - start_time) * 1000, 2),
                )
                raise

            response.headers[REQUEST_ID_HEADER] = request_id

            # A rejected webhook payload (422) logs as a warning.
            log_method = logger.info if response.status_code < 400 else logger.warning
            if response.status_code >= 500:
                log_method = logger.error

            log_method(
                "http.request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round((time.monotonic() - start_time) * 1000, 2),
            )

        return response
