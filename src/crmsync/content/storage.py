"""Content System collaborator interfaces.

The reconciliation core consumes four Content-side services:

- ContentStore: field values on Content records, and which fields of which
  kind each record carries
- EntityResolver: the mapping between CRM parent Entities and Content
  records (a parent maps to zero or one record)
- LocalFileStore: resolution of local file IDs to paths and mime types
- MetadataStore: the attachment cross-reference (local path, CRM path)
  kept per local file, used to detect whether a file changed
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from src.crmsync.records.schemas import EntityKind, Operation, ParentType


class FieldBinding(BaseModel):
    """A Content field bound to one child-record kind.

    Attributes:
        selector: Field name/key on the Content record.
        kind: Child-record kind the field mirrors.
        settings: Kind-specific binding options. Single-value fields use
            ``{"binding": "primary"}`` or ``{"binding": "location",
            "location_type_id": 1, "phone_type_id": 2}``.
    """

    selector: str
    kind: EntityKind
    settings: dict[str, Any] = Field(default_factory=dict)


class AttachmentMetadata(BaseModel):
    """Where a local file lived when the CRM last received it."""

    local_path: str
    remote_path: str


class ContentStore(ABC):
    """Field value storage for Content records."""

    @abstractmethod
    async def get_field_value(self, record_id: int, field_selector: str) -> Any:
        """Stored value, or None when the field has never been written."""
        ...

    @abstractmethod
    async def set_field_value(self, record_id: int, field_selector: str, value: Any) -> bool:
        """Replace a field's value. Returns False if the record is unknown."""
        ...

    @abstractmethod
    async def fields_for_record(
        self,
        record_id: int,
        kind: EntityKind | None = None,
    ) -> list[FieldBinding]:
        """Bound fields on a record, optionally only those of one kind."""
        ...

    async def binding_for(self, record_id: int, field_selector: str) -> FieldBinding | None:
        for binding in await self.fields_for_record(record_id):
            if binding.selector == field_selector:
                return binding
        return None


class EntityResolver(ABC):
    """Maps CRM parent Entities to Content records and back."""

    @abstractmethod
    async def content_record_for(
        self,
        parent_type: ParentType,
        parent_id: int,
        operation: Operation,
    ) -> int | None:
        """Content record mirroring a parent, or None when not mapped."""
        ...

    @abstractmethod
    async def parent_for_content(self, record_id: int, parent_type: ParentType) -> int | None:
        """Parent Entity a Content record mirrors, or None when not mapped."""
        ...


class LocalFileStore(ABC):
    """Local file lookup for attachment uploads."""

    @abstractmethod
    async def path_for(self, file_id: int) -> str | None:
        """Current resolved path of a local file, or None if it is gone."""
        ...

    @abstractmethod
    async def mime_type(self, file_id: int) -> str:
        ...


class MetadataStore(ABC):
    """Per-file attachment cross-reference."""

    @abstractmethod
    async def get(self, file_id: int) -> AttachmentMetadata | None:
        ...

    @abstractmethod
    async def set(self, file_id: int, metadata: AttachmentMetadata) -> None:
        ...

    @abstractmethod
    async def delete(self, file_id: int) -> None:
        ...

    @abstractmethod
    async def find_by_remote_path(self, remote_path: str) -> int | None:
        """Local file ID whose metadata points at a CRM path, if any."""
        ...
