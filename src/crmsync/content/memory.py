"""In-memory Content System collaborators.

Back the default app and the test-suite. Values are deep-copied on the way
in and out so callers can never mutate stored state by accident.
"""

from __future__ import annotations

import copy
from typing import Any

from src.crmsync.content.storage import (
    AttachmentMetadata,
    ContentStore,
    EntityResolver,
    FieldBinding,
    LocalFileStore,
    MetadataStore,
)
from src.crmsync.records.schemas import EntityKind, Operation, ParentType


class InMemoryContentStore(ContentStore):
    """Content records as dicts of field values plus their bindings."""

    def __init__(self) -> None:
        self._values: dict[int, dict[str, Any]] = {}
        self._bindings: dict[int, list[FieldBinding]] = {}
        self.writes: list[tuple[int, str, Any]] = []

    def add_field(
        self,
        record_id: int,
        selector: str,
        kind: EntityKind,
        settings: dict[str, Any] | None = None,
        value: Any = None,
    ) -> FieldBinding:
        """Declare a bound field on a record, optionally with a stored value."""
        binding = FieldBinding(selector=selector, kind=kind, settings=settings or {})
        self._bindings.setdefault(record_id, []).append(binding)
        values = self._values.setdefault(record_id, {})
        if value is not None:
            values[selector] = copy.deepcopy(value)
        return binding

    def value(self, record_id: int, selector: str) -> Any:
        """Synchronous peek for assertions."""
        return copy.deepcopy(self._values.get(record_id, {}).get(selector))

    async def get_field_value(self, record_id: int, field_selector: str) -> Any:
        return self.value(record_id, field_selector)

    async def set_field_value(self, record_id: int, field_selector: str, value: Any) -> bool:
        if record_id not in self._values:
            return False
        self._values[record_id][field_selector] = copy.deepcopy(value)
        self.writes.append((record_id, field_selector, copy.deepcopy(value)))
        return True

    async def fields_for_record(
        self,
        record_id: int,
        kind: EntityKind | None = None,
    ) -> list[FieldBinding]:
        return [
            b.model_copy(deep=True)
            for b in self._bindings.get(record_id, [])
            if kind is None or b.kind == kind
        ]


class InMemoryEntityResolver(EntityResolver):
    """Explicit parent <-> record links."""

    def __init__(self) -> None:
        self._links: dict[tuple[ParentType, int], int] = {}

    def link(self, parent_type: ParentType, parent_id: int, record_id: int) -> None:
        self._links[(parent_type, int(parent_id))] = int(record_id)

    def unlink(self, parent_type: ParentType, parent_id: int) -> None:
        self._links.pop((parent_type, int(parent_id)), None)

    async def content_record_for(
        self,
        parent_type: ParentType,
        parent_id: int,
        operation: Operation,
    ) -> int | None:
        return self._links.get((parent_type, int(parent_id)))

    async def parent_for_content(self, record_id: int, parent_type: ParentType) -> int | None:
        for (linked_type, parent_id), linked_record in self._links.items():
            if linked_type == parent_type and linked_record == int(record_id):
                return parent_id
        return None


class InMemoryFileStore(LocalFileStore):
    """Local files as ID -> (path, mime type)."""

    def __init__(self) -> None:
        self._files: dict[int, tuple[str, str]] = {}

    def add(self, file_id: int, path: str, mime_type: str = "application/octet-stream") -> None:
        self._files[int(file_id)] = (path, mime_type)

    def move(self, file_id: int, new_path: str) -> None:
        _, mime = self._files[int(file_id)]
        self._files[int(file_id)] = (new_path, mime)

    async def path_for(self, file_id: int) -> str | None:
        entry = self._files.get(int(file_id))
        return entry[0] if entry else None

    async def mime_type(self, file_id: int) -> str:
        entry = self._files.get(int(file_id))
        return entry[1] if entry else "application/octet-stream"


class InMemoryMetadataStore(MetadataStore):
    def __init__(self) -> None:
        self._entries: dict[int, AttachmentMetadata] = {}

    async def get(self, file_id: int) -> AttachmentMetadata | None:
        entry = self._entries.get(int(file_id))
        return entry.model_copy() if entry else None

    async def set(self, file_id: int, metadata: AttachmentMetadata) -> None:
        self._entries[int(file_id)] = metadata.model_copy()

    async def delete(self, file_id: int) -> None:
        self._entries.pop(int(file_id), None)

    async def find_by_remote_path(self, remote_path: str) -> int | None:
        for file_id, entry in self._entries.items():
            if entry.remote_path == remote_path:
                return file_id
        return None
