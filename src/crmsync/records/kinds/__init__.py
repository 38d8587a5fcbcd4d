"""Per-kind strategies and the catalog wiring them to EntityKind."""

from src.crmsync.records.kinds.attachments import AttachmentReconciler, AttachmentSync
from src.crmsync.records.kinds.catalog import SYNC_CLASSES, build_registry, build_syncs

__all__ = [
    "AttachmentReconciler",
    "AttachmentSync",
    "SYNC_CLASSES",
    "build_registry",
    "build_syncs",
]
