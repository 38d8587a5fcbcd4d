"""FastAPI dependency injection for the sync engine and request context."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from src.crmsync.core.context import SyncContext
from src.crmsync.records.engine import SyncEngine


async def get_sync_engine(request: Request) -> SyncEngine:
    """The engine attached to the app by create_app()."""
    engine = getattr(request.app.state, "sync_engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync engine not initialized",
        )
    return engine


async def get_sync_context(request: Request) -> SyncContext:
    """A fresh SyncContext per request, sharing the logged request ID."""
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return SyncContext(request_id=request_id)
    return SyncContext()
