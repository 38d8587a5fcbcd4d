"""SyncEngine: wires the collaborators, the kinds and the mapper together.

One engine serves the whole process. Per-request state lives on the
SyncContext handed to handle(); the engine itself holds only wiring.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.crmsync.config import Settings, get_settings
from src.crmsync.content.memory import (
    InMemoryContentStore,
    InMemoryEntityResolver,
    InMemoryFileStore,
    InMemoryMetadataStore,
)
from src.crmsync.content.storage import ContentStore, EntityResolver, LocalFileStore, MetadataStore
from src.crmsync.core.context import SyncContext, bind_context, get_current_context
from src.crmsync.crm.calls import CRMCaller
from src.crmsync.crm.memory import InMemoryRecordAPI
from src.crmsync.events.bus import EventBus
from src.crmsync.records.guard import ReverseEditGuard
from src.crmsync.records.kinds import build_registry, build_syncs
from src.crmsync.records.mapper import EventMapper
from src.crmsync.records.schemas import EntityKind, ParentType
from src.crmsync.records.sync import KindSync, RecordSetSync, SyncServices

logger = structlog.get_logger(__name__)


class SyncEngine:
    """Entry point for notifications from both systems.

    Args:
        caller: Wrapped CRM access.
        content: Content field storage.
        resolver: Parent Entity <-> Content record mapping.
        files: Local file lookup for attachments.
        metadata: Attachment cross-reference store.
        settings: Settings; defaults to get_settings().
        bus: Event bus; a fresh one by default.
        guard: Reverse-edit guard; a fresh one by default.
    """

    def __init__(
        self,
        caller: CRMCaller,
        content: ContentStore,
        resolver: EntityResolver,
        files: LocalFileStore,
        metadata: MetadataStore,
        settings: Settings | None = None,
        bus: EventBus | None = None,
        guard: ReverseEditGuard | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.bus = bus or EventBus()
        self.guard = guard or ReverseEditGuard()
        self.caller = caller
        self.content = content
        self.resolver = resolver
        self.registry = build_registry(self.settings)
        self.services = SyncServices(
            caller=caller,
            bus=self.bus,
            guard=self.guard,
            content=content,
            resolver=resolver,
            files=files,
            metadata=metadata,
        )
        self.syncs: dict[EntityKind, KindSync] = build_syncs(self.registry, self.services)
        self.mapper = EventMapper(self.registry, self.bus, self.guard, caller, content, resolver)

    @classmethod
    def in_memory(cls, settings: Settings | None = None) -> SyncEngine:
        """Engine over in-memory collaborators, with CRM notifications looped back in."""
        settings = settings or get_settings()
        api = InMemoryRecordAPI()
        engine = cls(
            caller=CRMCaller.from_settings(api, settings),
            content=InMemoryContentStore(),
            resolver=InMemoryEntityResolver(),
            files=InMemoryFileStore(),
            metadata=InMemoryMetadataStore(),
            settings=settings,
        )
        api.notifier = engine.handle_crm_notification
        return engine

    # ── Registration ─────────────────────────────────────────────────────

    def register_all(self) -> int:
        """Register every kind's listeners. Returns how many were newly registered."""
        registered = sum(1 for sync in self.syncs.values() if sync.register())
        logger.info("engine.registered", kinds=registered)
        return registered

    def unregister_all(self) -> int:
        return sum(1 for sync in self.syncs.values() if sync.unregister())

    # ── Entry points ────────────────────────────────────────────────────

    async def handle(self, raw: dict[str, Any], ctx: SyncContext | None = None) -> SyncContext:
        """Dispatch one raw notification within a request context.

        A notification raised while another is being handled (a CRM write
        reporting back) joins the running request's context.
        """
        ctx = ctx or get_current_context() or SyncContext()
        with bind_context(ctx):
            published = await self.mapper.dispatch(ctx, raw)
        logger.debug(
            "engine.handled",
            request_id=ctx.request_id,
            source=raw.get("source"),
            published=published,
        )
        return ctx

    async def handle_crm_notification(self, raw: dict[str, Any]) -> None:
        """Notifier hook for CRM backends."""
        await self.handle(raw)

    async def save_content(
        self,
        record_id: int,
        fields: dict[str, Any],
        ctx: SyncContext | None = None,
    ) -> SyncContext:
        """Store saved Content field values, then propagate them to the CRM."""
        for selector, value in fields.items():
            await self.content.set_field_value(record_id, selector, value)
        return await self.handle(
            {"source": "content", "record_id": record_id, "fields": fields},
            ctx,
        )

    async def sync_parent_to_content(
        self,
        parent_type: ParentType,
        parent_id: int,
        content_record_id: int,
        ctx: SyncContext | None = None,
    ) -> SyncContext:
        """Fill every record-set field on a newly linked Content record from the CRM."""
        ctx = ctx or SyncContext()
        with bind_context(ctx):
            for sync in self.syncs.values():
                if isinstance(sync, RecordSetSync) and sync.spec.parent_type == parent_type:
                    await sync.sync_parent_to_content(ctx, parent_id, content_record_id)
        return ctx
