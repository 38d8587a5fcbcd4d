"""Webhook endpoints receiving notifications from both systems.

- POST /events/crm: a CRM create/edit/delete notification
- POST /events/content: a Content record save

Each request is handled within its own SyncContext. Row-level failures do
not fail the request; they come back as warnings.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from src.crmsync.api.deps import get_sync_context, get_sync_engine
from src.crmsync.core.context import SyncContext
from src.crmsync.records.engine import SyncEngine
from src.crmsync.records.schemas import Operation, ReconcileResult

router = APIRouter(prefix="/events", tags=["events"])


# ── Request Schemas ──────────────────────────────────────────────────────────


class CRMNotification(BaseModel):
    """A raw CRM write notification."""

    op: Operation
    object_name: str
    object_id: int
    object_ref: dict[str, Any] | None = None


class ContentSave(BaseModel):
    """Saved field values of one Content record, keyed by field selector."""

    record_id: int
    fields: dict[str, Any] = Field(default_factory=dict)


# ── Response Schemas ─────────────────────────────────────────────────────────


class ReconcileSummary(BaseModel):
    entity_kind: str
    parent_id: int
    field_selector: str
    actions: dict[str, int]
    errors: list[str] = Field(default_factory=list)


class SyncResponse(BaseModel):
    """What one notification caused."""

    request_id: str
    results: list[ReconcileSummary] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


def _summarize(ctx: SyncContext) -> SyncResponse:
    results = [
        ReconcileSummary(
            entity_kind=r.entity_kind.value,
            parent_id=r.parent_id,
            field_selector=r.field_selector,
            actions=r.counts(),
            errors=r.errors,
        )
        for r in ctx.results
        if isinstance(r, ReconcileResult)
    ]
    return SyncResponse(request_id=ctx.request_id, results=results, warnings=ctx.warnings)


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post("/crm", response_model=SyncResponse)
async def receive_crm_notification(
    body: CRMNotification,
    engine: SyncEngine = Depends(get_sync_engine),
    ctx: SyncContext = Depends(get_sync_context),
) -> SyncResponse:
    """Propagate a CRM-side write into the mapped Content record."""
    raw = {"source": "crm", **body.model_dump(mode="json")}
    await engine.handle(raw, ctx)
    return _summarize(ctx)


@router.post("/content", response_model=SyncResponse)
async def receive_content_save(
    body: ContentSave,
    engine: SyncEngine = Depends(get_sync_engine),
    ctx: SyncContext = Depends(get_sync_context),
) -> SyncResponse:
    """Store a Content save and reconcile its bound fields with the CRM."""
    if not body.fields:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="No fields in save",
        )
    await engine.save_content(body.record_id, body.fields, ctx)
    return _summarize(ctx)
