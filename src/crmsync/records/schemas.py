"""Pydantic schemas for record-set reconciliation.

Defines the structured types shared by codecs, reconcilers and the mapper:
- Enums: EntityKind, ParentType, Operation
- Normalized notifications: SyncEvent
- Reconciliation actions: CreateAction, UpdateAction, DeleteAction (tagged
  by ``action``), grouped into a ReconciliationPlan
- Results: ReconcileResult
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field

from src.crmsync.core.context import SourceSystem


# ── Enums ───────────────────────────────────────────────────────────────────


class EntityKind(str, Enum):
    """Kinds of CRM child records mirrored into Content fields."""

    ADDRESS = "address"
    PHONE = "phone"
    PHONE_SINGLE = "phone_single"
    EMAIL = "email"
    MULTISET = "multiset"
    ATTACHMENT = "attachment"


class ParentType(str, Enum):
    """CRM Entity types that own child record sets."""

    CONTACT = "contact"
    ACTIVITY = "activity"


class Operation(str, Enum):
    """Normalized write operations reported by either system."""

    CREATE = "create"
    EDIT = "edit"
    PRE_DELETE = "delete/pre"
    DELETE = "delete"


# ── Normalized Notifications ────────────────────────────────────────────────


class SyncEvent(BaseModel):
    """A create/edit/delete notification normalized by the EventMapper.

    For CRM notifications ``entity_kind`` names the child-record kind and
    ``payload`` is the remote record. For Content saves ``entity_kind`` is
    None, ``entity_id`` is the Content record and ``payload`` holds the
    saved field values keyed by selector.
    """

    operation: Operation
    entity_kind: EntityKind | None = None
    entity_id: int
    payload: dict[str, Any] = Field(default_factory=dict)
    source: SourceSystem


# ── Reconciliation Actions ──────────────────────────────────────────────────


class CreateAction(BaseModel):
    """Create a CRM record from the Content row at position ``key``."""

    action: Literal["create"] = "create"
    key: int
    row: dict[str, Any]


class UpdateAction(BaseModel):
    """Update CRM record ``remote_id`` from the Content row at ``key``."""

    action: Literal["update"] = "update"
    key: int
    remote_id: int
    row: dict[str, Any]


class DeleteAction(BaseModel):
    """Delete CRM record ``remote_id``, absent from the incoming rows."""

    action: Literal["delete"] = "delete"
    remote_id: int


ReconciliationAction = Annotated[
    Union[CreateAction, UpdateAction, DeleteAction],
    Field(discriminator="action"),
]


class ReconciliationPlan(BaseModel):
    """Incoming rows bucketed against the current CRM record set.

    Attributes:
        creates: Rows without a usable remote ID (or one the CRM no longer has).
        updates: Rows whose remote ID matches a current CRM record.
        deletes: Current CRM records no incoming row refers to.
        duplicate_keys: Positions of rows re-claiming a remote ID already
            claimed by an earlier row; these rows are not acted on.
    """

    creates: list[CreateAction] = Field(default_factory=list)
    updates: list[UpdateAction] = Field(default_factory=list)
    deletes: list[DeleteAction] = Field(default_factory=list)
    duplicate_keys: list[int] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.creates or self.updates or self.deletes)


# ── Results ─────────────────────────────────────────────────────────────────


class ReconcileResult(BaseModel):
    """Outcome of reconciling one Content field against one parent's records.

    Attributes:
        entity_kind: Kind reconciled.
        parent_id: CRM parent Entity ID.
        field_selector: Content field reconciled.
        records: CRM records returned by successful creates/updates.
        actions: Actions that reached the CRM successfully, in execution order.
            An attachment replaced for a changed file appears as a delete
            followed by a create.
        errors: Non-fatal warnings, one per abandoned row or aborted pass.
    """

    entity_kind: EntityKind
    parent_id: int
    field_selector: str
    records: list[dict[str, Any]] = Field(default_factory=list)
    actions: list[ReconciliationAction] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @property
    def touched(self) -> bool:
        """True if at least one CRM write succeeded."""
        return bool(self.actions)

    def counts(self) -> dict[str, int]:
        tally = {"create": 0, "update": 0, "delete": 0}
        for action in self.actions:
            tally[action.action] += 1
        return tally
