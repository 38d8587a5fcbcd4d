"""Per-kind sync wiring: bus listeners for both directions.

A KindSync owns every listener one kind needs and subscribes them through
an explicit register()/unregister() pair. A boolean flag makes both
idempotent, because kind initialisation can be re-triggered while a
reconciliation pass is running.

RecordSetSync handles the record-set kinds:

- CRM -> Content: apply one CRM change to every bound field on the mapped
  Content record, writing each field once
- Content -> CRM: reconcile a saved field against the parent's records
- remote-ID backfill: after a CRM write, patch the saved row at its
  original position with the new record ID
- sync_parent_to_content(): replace the bound fields with all the parent's
  current CRM records
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import structlog

from src.crmsync.content.storage import (
    ContentStore,
    EntityResolver,
    FieldBinding,
    LocalFileStore,
    MetadataStore,
)
from src.crmsync.core.context import SyncContext
from src.crmsync.core.exceptions import CRMError
from src.crmsync.crm.calls import CRMCaller
from src.crmsync.events.bus import EventBus, Listener
from src.crmsync.events.schemas import (
    ChildRecordEvent,
    ChildRecordTopic,
    FieldSaveEvent,
    content_topic,
    mapper_topic,
)
from src.crmsync.records.codecs import flag_value
from src.crmsync.records.diff import apply_remote_change
from src.crmsync.records.guard import ReverseEditGuard
from src.crmsync.records.reconciler import RecordSetReconciler
from src.crmsync.records.registry import KindSpec
from src.crmsync.records.schemas import Operation, SyncEvent

logger = structlog.get_logger(__name__)

# Backfill runs before external consumers see the event.
BACKFILL_PRIORITY = 5


@dataclass
class SyncServices:
    """Collaborators shared by every kind."""

    caller: CRMCaller
    bus: EventBus
    guard: ReverseEditGuard
    content: ContentStore
    resolver: EntityResolver
    files: LocalFileStore
    metadata: MetadataStore


class KindSync(ABC):
    """Base class owning one kind's listener registration."""

    def __init__(self, spec: KindSpec, services: SyncServices) -> None:
        self.spec = spec
        self.services = services
        self._registered = False

    @property
    def kind(self) -> str:
        return self.spec.kind.value

    @property
    def registered(self) -> bool:
        return self._registered

    def subscriptions(self) -> list[tuple[str, Listener, int]]:
        """(topic, listener, priority) triples this kind listens on."""
        listeners: list[tuple[str, Listener, int]] = [
            (mapper_topic(self.kind, op.value), self.on_crm_event, 10)
            for op in (Operation.CREATE, Operation.EDIT, Operation.DELETE)
        ]
        listeners.append((content_topic(self.kind), self.on_content_saved, 10))
        return listeners

    def register(self) -> bool:
        """Subscribe this kind's listeners. Returns False if already registered."""
        if self._registered:
            return False
        for topic, listener, priority in self.subscriptions():
            self.services.bus.subscribe(topic, listener, priority)
        self._registered = True
        logger.debug("kind_sync.registered", entity_kind=self.kind)
        return True

    def unregister(self) -> bool:
        if not self._registered:
            return False
        for topic, listener, _ in self.subscriptions():
            self.services.bus.unsubscribe(topic, listener)
        self._registered = False
        logger.debug("kind_sync.unregistered", entity_kind=self.kind)
        return True

    async def resolve_content_record(
        self,
        ctx: SyncContext,
        parent_id: int,
        operation: Operation,
    ) -> int | None:
        """Content record mirroring a parent, memoised for the request."""
        parent_type = self.spec.parent_type
        return await ctx.cache.get_or_load(
            "content_record",
            (parent_type.value, parent_id, operation.value),
            lambda: self.services.resolver.content_record_for(parent_type, parent_id, operation),
        )

    async def target_record(self, ctx: SyncContext, event: SyncEvent) -> int | None:
        """Content record a CRM event should be written into, or None to skip."""
        parent_id = self.spec.parent_of(event.payload)
        if parent_id is None:
            logger.debug("kind_sync.no_parent", entity_kind=self.kind, remote_id=event.entity_id)
            return None
        content_record_id = await self.resolve_content_record(ctx, parent_id, event.operation)
        if content_record_id is None:
            logger.debug(
                "kind_sync.parent_not_mapped",
                entity_kind=self.kind,
                parent_id=parent_id,
            )
            return None
        if self.services.guard.should_skip(ctx, content_record_id, event):
            return None
        return content_record_id

    @abstractmethod
    async def on_crm_event(self, event: SyncEvent, ctx: SyncContext) -> None:
        """Apply one normalized CRM change to the mapped Content record."""
        ...

    @abstractmethod
    async def on_content_saved(self, event: FieldSaveEvent, ctx: SyncContext) -> None:
        """Propagate one saved Content field to the CRM."""
        ...


class RecordSetSync(KindSync):
    """Wiring for address, phone, multiset and attachment sets."""

    def __init__(self, spec: KindSpec, services: SyncServices) -> None:
        super().__init__(spec, services)
        self.reconciler = self.build_reconciler()

    def build_reconciler(self) -> RecordSetReconciler:
        return RecordSetReconciler(self.spec, self.services.caller, self.services.bus)

    def subscriptions(self) -> list[tuple[str, Listener, int]]:
        listeners = super().subscriptions()
        listeners.append((ChildRecordTopic.CREATED.value, self.on_record_written, BACKFILL_PRIORITY))
        listeners.append((ChildRecordTopic.UPDATED.value, self.on_record_written, BACKFILL_PRIORITY))
        return listeners

    async def content_row(self, record: dict[str, Any]) -> dict[str, Any]:
        return self.spec.codec.to_content(record)

    # ── CRM -> Content ───────────────────────────────────────────────────

    async def on_crm_event(self, event: SyncEvent, ctx: SyncContext) -> None:
        content_record_id = await self.target_record(ctx, event)
        if content_record_id is None:
            return

        content = self.services.content
        row = None if event.operation == Operation.DELETE else await self.content_row(event.payload)
        for binding in await content.fields_for_record(content_record_id, self.spec.kind):
            existing = await content.get_field_value(content_record_id, binding.selector) or []
            updated = apply_remote_change(
                existing,
                event.operation,
                event.entity_id,
                row,
                self.spec.primary_bearing,
            )
            if updated == existing:
                continue
            await content.set_field_value(content_record_id, binding.selector, updated)
            logger.info(
                "kind_sync.content_updated",
                request_id=ctx.request_id,
                entity_kind=self.kind,
                operation=event.operation.value,
                remote_id=event.entity_id,
                content_record_id=content_record_id,
                field_selector=binding.selector,
            )

    # ── Content -> CRM ───────────────────────────────────────────────────

    async def on_content_saved(self, event: FieldSaveEvent, ctx: SyncContext) -> None:
        rows = event.value if isinstance(event.value, list) else []
        await self.reconciler.reconcile(
            ctx,
            event.parent_id,
            rows,
            event.field_selector,
            content_record_id=event.record_id,
        )

    async def on_record_written(self, event: ChildRecordEvent, ctx: SyncContext) -> None:
        """Patch the saved row at ``event.key`` with the CRM record's ID."""
        if event.entity_kind != self.kind or event.content_record_id is None or event.key is None:
            return
        if event.remote_id is None:
            return

        content = self.services.content
        rows = await content.get_field_value(event.content_record_id, event.field_selector)
        if (
            not isinstance(rows, list)
            or event.key >= len(rows)
            or not isinstance(rows[event.key], dict)
        ):
            logger.debug(
                "kind_sync.backfill_row_missing",
                entity_kind=self.kind,
                content_record_id=event.content_record_id,
                key=event.key,
            )
            return

        patched = self.backfill_row(dict(rows[event.key]), event)
        updated = [patched if i == event.key else r for i, r in enumerate(rows)]
        if self.spec.primary_bearing and flag_value((event.remote_record or {}).get("is_primary")):
            # The CRM demoted the other records when this one became Primary.
            updated = [
                {**r, "is_primary": i == event.key} if isinstance(r, dict) else r
                for i, r in enumerate(updated)
            ]
        if updated == rows:
            return
        await content.set_field_value(event.content_record_id, event.field_selector, updated)
        logger.debug(
            "kind_sync.remote_id_backfilled",
            entity_kind=self.kind,
            content_record_id=event.content_record_id,
            key=event.key,
            remote_id=event.remote_id,
        )

    def backfill_row(self, row: dict[str, Any], event: ChildRecordEvent) -> dict[str, Any]:
        return {**row, "remote_id": event.remote_id}

    # ── Full sync ────────────────────────────────────────────────────────

    async def sync_parent_to_content(
        self,
        ctx: SyncContext,
        parent_id: int,
        content_record_id: int,
    ) -> list[FieldBinding]:
        """Overwrite every bound field with the parent's current CRM records.

        Returns:
            The bindings written. Empty if the CRM could not be read.
        """
        try:
            records = await self.reconciler.current_records(parent_id)
        except CRMError as exc:
            logger.warning(
                "kind_sync.full_sync_failed",
                request_id=ctx.request_id,
                entity_kind=self.kind,
                parent_id=parent_id,
                error=str(exc),
            )
            ctx.warn(f"{self.kind} full sync failed for parent {parent_id}: {exc}")
            return []

        rows = [await self.content_row(record) for record in records]
        content = self.services.content
        bindings = await content.fields_for_record(content_record_id, self.spec.kind)
        for binding in bindings:
            await content.set_field_value(content_record_id, binding.selector, rows)
        logger.info(
            "kind_sync.full_sync",
            request_id=ctx.request_id,
            entity_kind=self.kind,
            parent_id=parent_id,
            content_record_id=content_record_id,
            records=len(rows),
            fields=len(bindings),
        )
        return bindings


class AddressSync(RecordSetSync):
    """Addresses also take back the geocodes the CRM computed on write."""

    GEO_FIELDS = ("geo_code_1", "geo_code_2")

    def backfill_row(self, row: dict[str, Any], event: ChildRecordEvent) -> dict[str, Any]:
        patched = super().backfill_row(row, event)
        remote = self.spec.codec.to_content(event.remote_record or {})
        for name in self.GEO_FIELDS:
            if remote.get(name) != "":
                patched[name] = remote[name]
        return patched

