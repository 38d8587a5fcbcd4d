"""Record-set reconciliation core: codecs, diffing, reconcilers and per-kind wiring.

Exports the shared vocabulary only. SyncEngine lives in
``src.crmsync.records.engine``; it depends on the Content collaborators,
which themselves import these schemas.
"""

from __future__ import annotations

from src.crmsync.records.registry import KindRegistry, KindSpec
from src.crmsync.records.schemas import (
    CreateAction,
    DeleteAction,
    EntityKind,
    Operation,
    ParentType,
    ReconcileResult,
    ReconciliationPlan,
    SyncEvent,
    UpdateAction,
)

__all__ = [
    "CreateAction",
    "DeleteAction",
    "EntityKind",
    "KindRegistry",
    "KindSpec",
    "Operation",
    "ParentType",
    "ReconcileResult",
    "ReconciliationPlan",
    "SyncEvent",
    "UpdateAction",
]
