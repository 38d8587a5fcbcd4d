"""Event topics and payload schemas for the in-process sync bus.

Two families of topics flow over the bus:

- mapper topics: normalized notifications from either system, routed to the
  per-kind sync handlers (``mapper.<kind>.<operation>`` and
  ``content.<kind>.saved``)
- child record topics: broadcast by reconcilers after each CRM write, for
  external consumers (UI refresh, audit) and for the remote-ID backfill

Within one reconciliation pass, child record events fire in bucket order:
creates, then updates, then deletes.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ChildRecordTopic(str, Enum):
    """Topics broadcast after each child record write in the CRM."""

    CREATED = "child_record.created"
    UPDATED = "child_record.updated"
    DELETED = "child_record.deleted"


def mapper_topic(entity_kind: str, operation: str) -> str:
    """Topic for a normalized CRM-side notification of one kind."""
    return f"mapper.{entity_kind}.{operation}"


def content_topic(entity_kind: str) -> str:
    """Topic for a Content-side save touching a field of one kind."""
    return f"content.{entity_kind}.saved"


class ChildRecordEvent(BaseModel):
    """Payload for ``child_record.*`` topics.

    Attributes:
        entity_kind: Kind of child record written.
        key: Original position of the Content row in the saved field value.
            Correlates a created record back to its row. None for deletes.
        value: The Content row as it was saved. None for deletes.
        remote_record: The CRM record returned by the write (or the deleted
            record's last known state).
        remote_id: ID of the CRM record written or deleted.
        parent_id: ID of the parent Entity owning the record set.
        field_selector: Content field the row belongs to.
        content_record_id: Content record whose save triggered the write.
    """

    entity_kind: str
    key: int | None = None
    value: dict[str, Any] | None = None
    remote_record: dict[str, Any] | None = None
    remote_id: int | None = None
    parent_id: int
    field_selector: str
    content_record_id: int | None = None


class FieldSaveEvent(BaseModel):
    """Payload for ``content.<kind>.saved`` topics.

    One event per bound field in a Content save, already resolved to the
    CRM parent it mirrors.
    """

    record_id: int
    field_selector: str
    entity_kind: str
    settings: dict[str, Any] = Field(default_factory=dict)
    value: Any = None
    parent_id: int
