"""Single-value kinds: one email address or phone number per Content field.

A single-value field is bound either to the parent's Primary record or to
the record at a given location (and, for phones, phone type). Its value is
one string.

Content -> CRM, per saved field:
- no bound record and a value: create one
- bound record and no value: delete it
- bound record with the same value: nothing
- bound record with another value: update it

CRM -> Content: a changed record is written into every field on the mapped
Content record whose binding it matches; a deleted record empties them.
"""

from __future__ import annotations

from functools import partial
from typing import Any

import structlog

from src.crmsync.content.storage import FieldBinding
from src.crmsync.core.context import SyncContext
from src.crmsync.core.exceptions import CRMError, CRMNotInitialisedError
from src.crmsync.core.monitoring import record_action
from src.crmsync.events.schemas import ChildRecordEvent, ChildRecordTopic, FieldSaveEvent
from src.crmsync.records.codecs import coerce_remote_id, flag_value, int_value, text_value
from src.crmsync.records.reconciler import BaseReconciler
from src.crmsync.records.schemas import (
    CreateAction,
    DeleteAction,
    Operation,
    ReconcileResult,
    SyncEvent,
    UpdateAction,
)
from src.crmsync.records.registry import KindSpec
from src.crmsync.records.sync import KindSync, SyncServices

logger = structlog.get_logger(__name__)

PRIMARY_BINDING = "primary"


def binding_mode(binding: FieldBinding) -> str:
    return binding.settings.get("binding", PRIMARY_BINDING)


class SingleValueReconciler(BaseReconciler):
    """Create/update/delete of the one CRM record a field is bound to."""

    def binding_filters(self, binding: FieldBinding) -> dict[str, Any]:
        """Columns selecting (and, on create, populating) the bound record."""
        if binding_mode(binding) == PRIMARY_BINDING:
            return {"is_primary": "1"}
        return {
            column: int_value(binding.settings.get(column))
            for column in self.spec.discriminators
            if binding.settings.get(column) not in (None, "")
        }

    async def reconcile(
        self,
        ctx: SyncContext,
        parent_id: int,
        value: Any,
        binding: FieldBinding,
        content_record_id: int | None = None,
    ) -> ReconcileResult:
        result = ReconcileResult(
            entity_kind=self.spec.kind,
            parent_id=parent_id,
            field_selector=binding.selector,
        )
        try:
            await self._run(ctx, result, parent_id, text_value(value), binding, content_record_id)
        finally:
            self._finish(ctx, result)
        return result

    async def _run(
        self,
        ctx: SyncContext,
        result: ReconcileResult,
        parent_id: int,
        value: str,
        binding: FieldBinding,
        content_record_id: int | None,
    ) -> None:
        if not self.caller.is_initialised():
            self._abort(ctx, result, "CRM not initialised")
            return

        filters = {**self.spec.parent_filter(parent_id), **self.binding_filters(binding)}
        try:
            matches = await self.caller.get(self.spec.remote_entity, filters)
        except CRMError as exc:
            self._abort(ctx, result, f"could not load bound record: {exc}")
            return
        current = matches[0] if matches else None

        if current is None:
            if not value:
                return
            action = CreateAction(key=0, row={"value": value})
            step = partial(self._create, ctx, result, action, parent_id, filters, content_record_id)
        elif not value:
            action = DeleteAction(remote_id=coerce_remote_id(current.get("id")))
            step = partial(self._delete, ctx, result, action, parent_id, current, content_record_id)
        elif self.spec.codec.to_content(current) == value:
            record_action(self.kind, "update", "unchanged")
            return
        else:
            action = UpdateAction(
                key=0, remote_id=coerce_remote_id(current.get("id")), row={"value": value}
            )
            step = partial(self._update, ctx, result, action, parent_id, content_record_id)

        try:
            await self._attempt(ctx, result, action, parent_id, step)
        except CRMNotInitialisedError as exc:
            self._abort(ctx, result, f"CRM became unavailable: {exc}")

    async def _create(self, ctx, result, action, parent_id, filters, content_record_id) -> None:
        payload = {**self.spec.codec.to_remote(action.row["value"]), **filters}
        record = await self.caller.create(self.spec.remote_entity, payload)
        result.records.append(record)
        result.actions.append(action)
        record_action(self.kind, "create", "succeeded")
        await self._publish(
            ctx,
            ChildRecordTopic.CREATED,
            ChildRecordEvent(
                entity_kind=self.kind,
                key=0,
                value=action.row,
                remote_record=record,
                remote_id=coerce_remote_id(record.get("id")),
                parent_id=parent_id,
                field_selector=result.field_selector,
                content_record_id=content_record_id,
            ),
        )

    async def _update(self, ctx, result, action, parent_id, content_record_id) -> None:
        payload = self.spec.codec.to_remote(action.row["value"], action.remote_id)
        record = await self.caller.update(self.spec.remote_entity, payload)
        result.records.append(record)
        result.actions.append(action)
        record_action(self.kind, "update", "succeeded")
        await self._publish(
            ctx,
            ChildRecordTopic.UPDATED,
            ChildRecordEvent(
                entity_kind=self.kind,
                key=0,
                value=action.row,
                remote_record=record,
                remote_id=action.remote_id,
                parent_id=parent_id,
                field_selector=result.field_selector,
                content_record_id=content_record_id,
            ),
        )

    async def _delete(self, ctx, result, action, parent_id, current, content_record_id) -> None:
        await self.caller.delete(self.spec.remote_entity, action.remote_id)
        result.actions.append(action)
        record_action(self.kind, "delete", "succeeded")
        await self._publish(
            ctx,
            ChildRecordTopic.DELETED,
            ChildRecordEvent(
                entity_kind=self.kind,
                remote_record=current,
                remote_id=action.remote_id,
                parent_id=parent_id,
                field_selector=result.field_selector,
                content_record_id=content_record_id,
            ),
        )


class SingleValueSync(KindSync):
    """Wiring for the email and phone_single kinds."""

    def __init__(self, spec: KindSpec, services: SyncServices) -> None:
        super().__init__(spec, services)
        self.reconciler = SingleValueReconciler(spec, services.caller, services.bus)

    def matches(self, binding: FieldBinding, record: dict[str, Any]) -> bool:
        """Whether a CRM record is the one a field is bound to."""
        if binding_mode(binding) == PRIMARY_BINDING:
            return flag_value(record.get("is_primary"))
        wanted = self.reconciler.binding_filters(binding)
        return all(int_value(record.get(column)) == v for column, v in wanted.items())

    async def on_crm_event(self, event: SyncEvent, ctx: SyncContext) -> None:
        content_record_id = await self.target_record(ctx, event)
        if content_record_id is None:
            return

        content = self.services.content
        value = "" if event.operation == Operation.DELETE else self.spec.codec.to_content(event.payload)
        for binding in await content.fields_for_record(content_record_id, self.spec.kind):
            if not self.matches(binding, event.payload):
                continue
            existing = text_value(await content.get_field_value(content_record_id, binding.selector))
            if existing == value:
                continue
            await content.set_field_value(content_record_id, binding.selector, value)
            logger.info(
                "kind_sync.content_updated",
                request_id=ctx.request_id,
                entity_kind=self.kind,
                operation=event.operation.value,
                remote_id=event.entity_id,
                content_record_id=content_record_id,
                field_selector=binding.selector,
            )

    async def on_content_saved(self, event: FieldSaveEvent, ctx: SyncContext) -> None:
        binding = FieldBinding(
            selector=event.field_selector,
            kind=self.spec.kind,
            settings=event.settings,
        )
        await self.reconciler.reconcile(
            ctx,
            event.parent_id,
            event.value,
            binding,
            content_record_id=event.record_id,
        )
