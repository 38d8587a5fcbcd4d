"""Activity attachments: file uploads mirrored as CRM Attachment records.

Attachments differ from the other record-set kinds in two ways:

- creating a record moves the local file into the CRM, so the payload is
  built from the file (name, mime type, path) rather than from the row
- the CRM cannot swap the file under an existing record, so a changed file
  is handled as delete-then-create. Deleting first keeps the Activity under
  the CRM's per-entity attachment limit.

Whether the file changed is answered by the metadata bridge: the local path
recorded at upload time is compared with the file's current path. A rename
without a content change therefore also counts as a change.
"""

from __future__ import annotations

import posixpath
from typing import Any

import structlog

from src.crmsync.content.storage import AttachmentMetadata, LocalFileStore, MetadataStore
from src.crmsync.core.context import SyncContext
from src.crmsync.core.exceptions import CRMPayloadError
from src.crmsync.core.monitoring import record_action
from src.crmsync.crm.calls import CRMCaller
from src.crmsync.events.bus import EventBus
from src.crmsync.events.schemas import ChildRecordTopic
from src.crmsync.records.codecs import coerce_remote_id, text_value
from src.crmsync.records.reconciler import RecordSetReconciler
from src.crmsync.records.registry import KindSpec
from src.crmsync.records.schemas import (
    CreateAction,
    DeleteAction,
    ReconcileResult,
    UpdateAction,
)
from src.crmsync.records.sync import RecordSetSync

logger = structlog.get_logger(__name__)


class AttachmentReconciler(RecordSetReconciler):
    """RecordSetReconciler for attachment rows ``{file, description, remote_id}``."""

    def __init__(
        self,
        spec: KindSpec,
        caller: CRMCaller,
        bus: EventBus,
        files: LocalFileStore,
        metadata: MetadataStore,
    ) -> None:
        super().__init__(spec, caller, bus)
        self.files = files
        self.metadata = metadata

    async def _local_file(self, row: dict[str, Any]) -> tuple[int, str]:
        file_id = coerce_remote_id(row.get("file"))
        if file_id is None:
            raise CRMPayloadError(f"attachment row has no file: {row!r}")
        path = await self.files.path_for(file_id)
        if not path:
            raise CRMPayloadError(f"local file {file_id} not found")
        return file_id, path

    async def create_record(
        self,
        ctx: SyncContext,
        parent_id: int,
        row: dict[str, Any],
    ) -> dict[str, Any]:
        file_id, path = await self._local_file(row)
        payload = {
            **self.spec.parent_filter(parent_id),
            "name": posixpath.basename(path),
            "description": text_value(row.get("description")),
            "mime_type": await self.files.mime_type(file_id),
            "options": {"move-file": path},
        }
        record = await self.caller.create(self.spec.remote_entity, payload)
        await self.metadata.set(
            file_id,
            AttachmentMetadata(local_path=path, remote_path=text_value(record.get("path"))),
        )
        return record

    async def _file_changed(self, row: dict[str, Any], current: dict[str, Any]) -> bool:
        """True if the row's file is not the one the CRM record holds."""
        file_id, path = await self._local_file(row)
        stored = await self.metadata.get(file_id)
        return (
            stored is None
            or stored.local_path != path
            or stored.remote_path != text_value(current.get("path"))
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
        if not await self._file_changed(action.row, current):
            await super()._do_update(ctx, result, action, parent_id, current, content_record_id)
            return

        logger.info(
            "attachment.file_changed",
            request_id=ctx.request_id,
            parent_id=parent_id,
            remote_id=action.remote_id,
            file=action.row.get("file"),
        )
        # A failed delete raises here, so the replacement is never created.
        await self.delete_record(ctx, parent_id, action.remote_id, current)
        result.actions.append(DeleteAction(remote_id=action.remote_id))
        record_action(self.kind, "delete", "succeeded")

        replacement = CreateAction(key=action.key, row=action.row)
        record = await self.create_record(ctx, parent_id, action.row)
        result.records.append(record)
        result.actions.append(replacement)
        record_action(self.kind, "create", "succeeded")
        # Events keep bucket order: the replaced row is reported as updated.
        await self._publish(
            ctx,
            ChildRecordTopic.UPDATED,
            self._written_event(result, replacement, record, parent_id, content_record_id),
        )

    async def update_record(
        self,
        ctx: SyncContext,
        parent_id: int,
        action: UpdateAction,
        current: dict[str, Any],
    ) -> dict[str, Any] | None:
        """Update the description of a record whose file is unchanged."""
        description = text_value(action.row.get("description"))
        if description == text_value(current.get("description")):
            return None
        return await self.caller.update(
            self.spec.remote_entity,
            {"id": action.remote_id, "description": description},
        )

    async def delete_record(
        self,
        ctx: SyncContext,
        parent_id: int,
        remote_id: int,
        current: dict[str, Any],
    ) -> None:
        await self.caller.delete(self.spec.remote_entity, remote_id)
        remote_path = text_value(current.get("path"))
        if not remote_path:
            return
        file_id = await self.metadata.find_by_remote_path(remote_path)
        if file_id is not None:
            await self.metadata.delete(file_id)


class AttachmentSync(RecordSetSync):
    """Wiring for attachment sets, with file lookups through the metadata bridge."""

    def build_reconciler(self) -> RecordSetReconciler:
        return AttachmentReconciler(
            self.spec,
            self.services.caller,
            self.services.bus,
            self.services.files,
            self.services.metadata,
        )

    async def content_row(self, record: dict[str, Any]) -> dict[str, Any]:
        row = self.spec.codec.to_content(record)
        remote_path = text_value(record.get("path"))
        if remote_path:
            file_id = await self.services.metadata.find_by_remote_path(remote_path)
            if file_id is not None:
                row["file"] = file_id
        return row
