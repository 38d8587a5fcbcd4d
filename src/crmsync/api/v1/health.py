"""Health check endpoint.

Liveness only, plus whether the CRM connection reports itself usable.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from src.crmsync.api.deps import get_sync_engine
from src.crmsync.config import get_settings
from src.crmsync.records.engine import SyncEngine

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(engine: SyncEngine = Depends(get_sync_engine)):
    """Basic liveness check."""
    settings = get_settings()
    return {
        "status": "ok",
        "environment": settings.ENVIRONMENT.value,
        "crm": "ok" if engine.caller.is_initialised() else "unavailable",
        "kinds": sorted(kind.value for kind in engine.syncs),
    }
