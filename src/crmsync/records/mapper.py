"""Event mapper: raw notifications from either system onto bus topics.

CRM notifications arrive as ``{"source": "crm", "op", "object_name",
"object_id", "object_ref"}``. The mapper sets the request origin, completes
deletes from the record stashed at ``delete/pre`` time (the post-delete
notification usually no longer carries the record) and publishes one SyncEvent per kind
stored in the notified CRM entity.

Content saves arrive as ``{"source": "content", "record_id", "fields"}``.
The mapper sets the origin, looks up each saved field's binding and parent
Entity and publishes one FieldSaveEvent per bound field. A Content save made
while a CRM-originated write is in flight is the echo of that write and is
not published.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.crmsync.content.storage import ContentStore, EntityResolver
from src.crmsync.core.context import SourceSystem, SyncContext
from src.crmsync.core.exceptions import CRMError
from src.crmsync.crm.calls import CRMCaller
from src.crmsync.events.bus import EventBus
from src.crmsync.events.schemas import FieldSaveEvent, content_topic, mapper_topic
from src.crmsync.records.guard import ReverseEditGuard
from src.crmsync.records.registry import KindRegistry
from src.crmsync.records.schemas import Operation, SyncEvent

logger = structlog.get_logger(__name__)

PRE_DELETE_CACHE = "pre_delete"
PARENT_CACHE = "content_parent"


class EventMapper:
    """Normalizes and dispatches raw notifications."""

    def __init__(
        self,
        registry: KindRegistry,
        bus: EventBus,
        guard: ReverseEditGuard,
        caller: CRMCaller,
        content: ContentStore,
        resolver: EntityResolver,
    ) -> None:
        self.registry = registry
        self.bus = bus
        self.guard = guard
        self.caller = caller
        self.content = content
        self.resolver = resolver

    async def dispatch(self, ctx: SyncContext, raw: dict[str, Any]) -> int:
        """Route one raw notification.

        Returns:
            Number of events published.

        Raises:
            ValueError: If the notification is malformed.
        """
        source = SourceSystem(raw.get("source", SourceSystem.CRM.value))
        if source == SourceSystem.CRM:
            return await self._dispatch_crm(ctx, raw)
        return await self._dispatch_content(ctx, raw)

    # ── CRM ──────────────────────────────────────────────────────────────

    async def _dispatch_crm(self, ctx: SyncContext, raw: dict[str, Any]) -> int:
        operation = Operation(raw["op"])
        object_name = str(raw["object_name"])
        object_id = int(raw["object_id"])

        specs = self.registry.for_remote_entity(object_name)
        if not specs:
            logger.debug("mapper.entity_not_synced", object_name=object_name)
            return 0

        if operation == Operation.PRE_DELETE:
            await self._stash(ctx, object_name, object_id)
            return 0

        if operation == Operation.DELETE:
            record = ctx.cache.pop(PRE_DELETE_CACHE, (object_name, object_id)) or raw.get("object_ref")
            if record is None:
                logger.info(
                    "mapper.delete_without_stash",
                    request_id=ctx.request_id,
                    object_name=object_name,
                    object_id=object_id,
                )
                return 0
        else:
            record = raw.get("object_ref") or await self._fetch(ctx, object_name, object_id)
            if record is None:
                return 0

        published = 0
        with ctx.originate(SourceSystem.CRM, object_name, object_id):
            for spec in specs:
                if not spec.owns(record):
                    continue
                event = SyncEvent(
                    operation=operation,
                    entity_kind=spec.kind,
                    entity_id=object_id,
                    payload=record,
                    source=SourceSystem.CRM,
                )
                await self.bus.publish(mapper_topic(spec.kind.value, operation.value), event, ctx)
                published += 1
        return published

    async def _fetch(self, ctx: SyncContext, object_name: str, object_id: int) -> dict[str, Any] | None:
        try:
            return await self.caller.get_by_id(object_name, object_id)
        except CRMError as exc:
            logger.warning(
                "mapper.fetch_failed",
                request_id=ctx.request_id,
                object_name=object_name,
                object_id=object_id,
                error=str(exc),
            )
            ctx.warn(f"could not load {object_name} {object_id}: {exc}")
            return None

    async def _stash(self, ctx: SyncContext, object_name: str, object_id: int) -> None:
        record = await self._fetch(ctx, object_name, object_id)
        if record is not None:
            ctx.cache.set(PRE_DELETE_CACHE, (object_name, object_id), record)

    # ── Content ─────────────────────────────────────────────────────────

    async def _dispatch_content(self, ctx: SyncContext, raw: dict[str, Any]) -> int:
        record_id = int(raw["record_id"])
        fields: dict[str, Any] = raw.get("fields") or {}

        if self.guard.is_echo_save(ctx):
            logger.debug(
                "mapper.echo_save_skipped",
                request_id=ctx.request_id,
                record_id=record_id,
            )
            return 0

        published = 0
        with ctx.originate(SourceSystem.CONTENT, "content", record_id):
            for selector, value in fields.items():
                binding = await self.content.binding_for(record_id, selector)
                if binding is None:
                    continue
                spec = self.registry.get(binding.kind)
                parent_id = await ctx.cache.get_or_load(
                    PARENT_CACHE,
                    (record_id, spec.parent_type.value),
                    lambda: self.resolver.parent_for_content(record_id, spec.parent_type),
                )
                if parent_id is None:
                    logger.debug(
                        "mapper.record_not_mapped",
                        record_id=record_id,
                        parent_type=spec.parent_type.value,
                    )
                    continue
                event = FieldSaveEvent(
                    record_id=record_id,
                    field_selector=selector,
                    entity_kind=spec.kind.value,
                    settings=binding.settings,
                    value=value,
                    parent_id=parent_id,
                )
                await self.bus.publish(content_topic(spec.kind.value), event, ctx)
                published += 1
        return published
