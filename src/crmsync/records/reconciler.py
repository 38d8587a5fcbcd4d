"""Record-set reconciliation, Content -> CRM.

RecordSetReconciler takes one Content field's rows and brings one parent's
CRM record set in line with them:

1. load the parent's current records (an error or an unavailable CRM aborts
   the pass before any write)
2. bucket rows with plan_actions()
3. run creates, then updates, then deletes, publishing a child_record event
   after each successful write

A failed CRM call abandons only its own row. The failure is logged with
enough context to replay it and returned as a warning on the result;
processing carries on with the next row and the next bucket. If the CRM
connection drops mid-pass, the remaining rows are not attempted.

Subclasses customise individual writes (see AttachmentReconciler) by
overriding create_record(), update_record() and delete_record().
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from typing import Any

import structlog

from src.crmsync.core.context import SyncContext
from src.crmsync.core.exceptions import (
    CRMAPIError,
    CRMError,
    CRMNotInitialisedError,
    CRMPayloadError,
)
from src.crmsync.core.monitoring import record_action
from src.crmsync.crm.calls import CRMCaller
from src.crmsync.events.bus import EventBus
from src.crmsync.events.schemas import ChildRecordEvent, ChildRecordTopic
from src.crmsync.records.codecs import coerce_remote_id
from src.crmsync.records.diff import plan_actions
from src.crmsync.records.registry import KindSpec
from src.crmsync.records.schemas import (
    CreateAction,
    DeleteAction,
    ReconcileResult,
    UpdateAction,
)

logger = structlog.get_logger(__name__)


@contextmanager
def encoding_row(row: Any) -> Iterator[None]:
    """Report a row the codec cannot encode as a row failure."""
    try:
        yield
    except (TypeError, ValueError, OverflowError) as exc:
        raise CRMPayloadError(f"row {row!r} could not be encoded: {exc}") from exc


class BaseReconciler:
    """CRM-call plumbing shared by the record-set and single-value reconcilers.

    Args:
        spec: The kind reconciled.
        caller: Timeout/retry-wrapped CRM access.
        bus: Bus receiving child_record events.
    """

    def __init__(self, spec: KindSpec, caller: CRMCaller, bus: EventBus) -> None:
        self.spec = spec
        self.caller = caller
        self.bus = bus

    @property
    def kind(self) -> str:
        return self.spec.kind.value

    async def _attempt(
        self,
        ctx: SyncContext,
        result: ReconcileResult,
        action: CreateAction | UpdateAction | DeleteAction,
        parent_id: int,
        step: Callable[[], Awaitable[None]],
    ) -> None:
        try:
            await step()
        except CRMNotInitialisedError:
            raise
        except CRMError as exc:
            record_action(self.kind, action.action, "failed")
            raw = exc.result if isinstance(exc, CRMAPIError) else None
            logger.error(
                "reconcile.row_failed",
                request_id=ctx.request_id,
                entity_kind=self.kind,
                operation=action.action,
                parent_id=parent_id,
                payload=action.model_dump(),
                result=raw,
                error=str(exc),
            )
            target = getattr(action, "key", None)
            if target is None:
                target = getattr(action, "remote_id", None)
            result.errors.append(f"{self.kind} {action.action} failed for {target}: {exc}")

    def _abort(self, ctx: SyncContext, result: ReconcileResult, reason: str) -> None:
        logger.warning(
            "reconcile.aborted",
            request_id=ctx.request_id,
            entity_kind=self.kind,
            parent_id=result.parent_id,
            field_selector=result.field_selector,
            reason=reason,
        )
        result.errors.append(f"{self.kind} reconciliation aborted: {reason}")

    async def _publish(self, ctx: SyncContext, topic: ChildRecordTopic, event: ChildRecordEvent) -> None:
        await self.bus.publish(topic.value, event, ctx)

    def _finish(self, ctx: SyncContext, result: ReconcileResult) -> None:
        ctx.results.append(result)
        ctx.warnings.extend(result.errors)
        logger.info(
            "reconcile.completed",
            request_id=ctx.request_id,
            entity_kind=self.kind,
            parent_id=result.parent_id,
            field_selector=result.field_selector,
            errors=len(result.errors),
            **result.counts(),
        )


class RecordSetReconciler(BaseReconciler):
    """Diff-and-apply for one record-set kind."""

    async def current_records(self, parent_id: int) -> list[dict[str, Any]]:
        return await self.caller.get(self.spec.remote_entity, self.spec.parent_filter(parent_id))

    def build_payload(
        self,
        row: dict[str, Any],
        parent_id: int,
        remote_id: int | None = None,
    ) -> dict[str, Any]:
        """CRM payload for a row, tied to its parent."""
        with encoding_row(row):
            payload = self.spec.codec.to_remote(row, remote_id)
        return {**payload, **self.spec.parent_filter(parent_id)}

    # ── Pass ─────────────────────────────────────────────────────────────

    async def reconcile(
        self,
        ctx: SyncContext,
        parent_id: int,
        incoming_rows: list[Any],
        field_selector: str,
        content_record_id: int | None = None,
    ) -> ReconcileResult:
        """Bring the parent's CRM records in line with ``incoming_rows``.

        Args:
            ctx: Request context; the result and its warnings are appended.
            parent_id: CRM parent Entity ID.
            incoming_rows: The Content field value, in field order.
            field_selector: Content field the rows came from.
            content_record_id: Content record saved, for event correlation.

        Returns:
            ReconcileResult listing the records and actions that succeeded.
        """
        result = ReconcileResult(
            entity_kind=self.spec.kind,
            parent_id=parent_id,
            field_selector=field_selector,
        )
        try:
            await self._run_pass(ctx, result, parent_id, incoming_rows, content_record_id)
        finally:
            self._finish(ctx, result)
        return result

    async def _run_pass(
        self,
        ctx: SyncContext,
        result: ReconcileResult,
        parent_id: int,
        incoming_rows: list[Any],
        content_record_id: int | None,
    ) -> None:
        if not self.caller.is_initialised():
            self._abort(ctx, result, "CRM not initialised")
            return

        try:
            current = await self.current_records(parent_id)
        except CRMError as exc:
            self._abort(ctx, result, f"could not load current records: {exc}")
            return

        plan = plan_actions(current, incoming_rows)
        by_id = {coerce_remote_id(r.get("id")): r for r in current}

        for key in plan.duplicate_keys:
            remote_id = coerce_remote_id(incoming_rows[key].get("remote_id"))
            result.errors.append(
                f"{self.kind} row {key} skipped: remote_id {remote_id} already claimed by an earlier row"
            )
            record_action(self.kind, "update", "skipped")
            logger.warning(
                "reconcile.duplicate_remote_id",
                entity_kind=self.kind,
                parent_id=parent_id,
                key=key,
                remote_id=remote_id,
            )

        try:
            for create in plan.creates:
                await self._attempt(
                    ctx, result, create, parent_id,
                    lambda a=create: self._do_create(ctx, result, a, parent_id, content_record_id),
                )
            for update in plan.updates:
                await self._attempt(
                    ctx, result, update, parent_id,
                    lambda a=update: self._do_update(
                        ctx, result, a, parent_id, by_id[a.remote_id], content_record_id
                    ),
                )
            for delete in plan.deletes:
                await self._attempt(
                    ctx, result, delete, parent_id,
                    lambda a=delete: self._do_delete(
                        ctx, result, a, parent_id, by_id[a.remote_id], content_record_id
                    ),
                )
        except CRMNotInitialisedError as exc:
            self._abort(ctx, result, f"CRM became unavailable mid-pass: {exc}")

    # ── Steps ───────────────────────────────────────────────────────────

    def _written_event(
        self,
        result: ReconcileResult,
        action: CreateAction | UpdateAction,
        record: dict[str, Any],
        parent_id: int,
        content_record_id: int | None,
    ) -> ChildRecordEvent:
        return ChildRecordEvent(
            entity_kind=self.kind,
            key=action.key,
            value=action.row,
            remote_record=record,
            remote_id=coerce_remote_id(record.get("id")),
            parent_id=parent_id,
            field_selector=result.field_selector,
            content_record_id=content_record_id,
        )

    async def _do_create(
        self,
        ctx: SyncContext,
        result: ReconcileResult,
        action: CreateAction,
        parent_id: int,
        content_record_id: int | None,
    ) -> None:
        record = await self.create_record(ctx, parent_id, action.row)
        result.records.append(record)
        result.actions.append(action)
        record_action(self.kind, "create", "succeeded")
        await self._publish(
            ctx,
            ChildRecordTopic.CREATED,
            self._written_event(result, action, record, parent_id, content_record_id),
        )

    async def _do_update(
        self,
        ctx: SyncContext,
        result: ReconcileResult,
        action: UpdateAction,
        parent_id: int,
        current: dict[str, Any],
        content_record_id: int | None,
    ) -> None:
        record = await self.update_record(ctx, parent_id, action, current)
        if record is None:
            record_action(self.kind, "update", "unchanged")
            return
        result.records.append(record)
        result.actions.append(action)
        record_action(self.kind, "update", "succeeded")
        await self._publish(
            ctx,
            ChildRecordTopic.UPDATED,
            self._written_event(result, action, record, parent_id, content_record_id),
        )

    async def _do_delete(
        self,
        ctx: SyncContext,
        result: ReconcileResult,
        action: DeleteAction,
        parent_id: int,
        current: dict[str, Any],
        content_record_id: int | None,
    ) -> None:
        await self.delete_record(ctx, parent_id, action.remote_id, current)
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

    # ── Writes (overridable) ─────────────────────────────────────────────

    async def create_record(
        self,
        ctx: SyncContext,
        parent_id: int,
        row: dict[str, Any],
    ) -> dict[str, Any]:
        return await self.caller.create(self.spec.remote_entity, self.build_payload(row, parent_id))

    async def update_record(
        self,
        ctx: SyncContext,
        parent_id: int,
        action: UpdateAction,
        current: dict[str, Any],
    ) -> dict[str, Any] | None:
        """Write an update, or return None when the record already matches."""
        with encoding_row(action.row):
            unchanged = self.spec.codec.same_payload(action.row, current)
        if unchanged:
            return None
        return await self.caller.update(
            self.spec.remote_entity,
            self.build_payload(action.row, parent_id, action.remote_id),
        )

    async def delete_record(
        self,
        ctx: SyncContext,
        parent_id: int,
        remote_id: int,
        current: dict[str, Any],
    ) -> None:
        await self.caller.delete(self.spec.remote_entity, remote_id)
