"""Content System side: field storage, entity resolution and file metadata."""

from __future__ import annotations

from src.crmsync.content.memory import (
    InMemoryContentStore,
    InMemoryEntityResolver,
    InMemoryFileStore,
    InMemoryMetadataStore,
)
from src.crmsync.content.storage import (
    AttachmentMetadata,
    ContentStore,
    EntityResolver,
    FieldBinding,
    LocalFileStore,
    MetadataStore,
)

__all__ = [
    "AttachmentMetadata",
    "ContentStore",
    "EntityResolver",
    "FieldBinding",
    "InMemoryContentStore",
    "InMemoryEntityResolver",
    "InMemoryFileStore",
    "InMemoryMetadataStore",
    "LocalFileStore",
    "MetadataStore",
]
