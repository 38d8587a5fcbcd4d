"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, the sync
engine (in-memory collaborators unless one is passed in) and the v1 API
router.
"""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.requests import Request
from fastapi.responses import Response

from src.crmsync.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.crmsync.api.v1.router import router as v1_router
from src.crmsync.core.monitoring import MetricsMiddleware, get_metrics_response
from src.crmsync.records.engine import SyncEngine


def create_app(engine: SyncEngine | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        engine: Sync engine to serve. Defaults to one over in-memory
            collaborators.
    """
    configure_structlog()

    app = FastAPI(
        title="CRM Sync API",
        version="0.1.0",
        description="Bidirectional Content <-> CRM child-record synchronization",
    )

    engine = engine or SyncEngine.in_memory()
    engine.register_all()
    app.state.sync_engine = engine

    # Middleware is added in reverse order (last added = outermost)

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router, prefix="/api/v1")

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        body, content_type = get_metrics_response()
        return Response(content=body, media_type=content_type)

    return app


# Module-level app for uvicorn
app = create_app()
