"""Diffing of Content rows against CRM record sets.

Two pure functions cover both sync directions:

- plan_actions(): Content -> CRM. Buckets incoming rows against the current
  CRM records into creates, updates and deletes. Deletion is a set
  difference on remote IDs, so row order never matters.
- apply_remote_change(): CRM -> Content. Applies one CRM create/edit/delete
  to an existing field value and returns the complete new value, so the
  caller writes the field exactly once.
"""

from __future__ import annotations

from typing import Any

from src.crmsync.records.codecs import coerce_remote_id
from src.crmsync.records.primary import enforce_primary
from src.crmsync.records.schemas import (
    CreateAction,
    DeleteAction,
    Operation,
    ReconciliationPlan,
    UpdateAction,
)


# ── Content -> CRM ─────────────────────────────────────────────────────────


def plan_actions(
    current: list[dict[str, Any]],
    incoming: list[Any],
) -> ReconciliationPlan:
    """Classify incoming rows against the current CRM records.

    - empty ``remote_id``: create
    - ``remote_id`` not among current records: create (the stale ID is dropped)
    - ``remote_id`` among current records: update; a later row claiming an ID
      already claimed is recorded in ``duplicate_keys`` and not acted on
    - current record whose ID no incoming row carries: delete, in current order
    - entries that are not rows (e.g. None left by the Content editor) are
      ignored; keys stay positions in ``incoming``

    Args:
        current: CRM records for one parent, as returned by the CRM.
        incoming: The Content field value, in field order.

    Returns:
        ReconciliationPlan with every row accounted for exactly once.
    """
    plan = ReconciliationPlan()
    current_ids = [
        rid for rid in (coerce_remote_id(r.get("id")) for r in current) if rid is not None
    ]
    known = set(current_ids)
    claimed: set[int] = set()

    rows = [(key, row) for key, row in enumerate(incoming) if isinstance(row, dict)]
    for key, row in rows:
        remote_id = coerce_remote_id(row.get("remote_id"))
        if remote_id is None or remote_id not in known:
            plan.creates.append(CreateAction(key=key, row=row))
        elif remote_id in claimed:
            plan.duplicate_keys.append(key)
        else:
            claimed.add(remote_id)
            plan.updates.append(UpdateAction(key=key, remote_id=remote_id, row=row))

    incoming_ids = {coerce_remote_id(row.get("remote_id")) for _, row in rows}
    plan.deletes = [
        DeleteAction(remote_id=rid) for rid in current_ids if rid not in incoming_ids
    ]
    return plan


# ── CRM -> Content ─────────────────────────────────────────────────────────


def row_index(rows: list[dict[str, Any]], remote_id: int) -> int | None:
    """Position of the row linked to ``remote_id``, or None."""
    for index, row in enumerate(rows):
        if coerce_remote_id(row.get("remote_id")) == remote_id:
            return index
    return None


def classify_remote_op(
    rows: list[dict[str, Any]],
    operation: Operation,
    remote_id: int,
) -> Operation:
    """Disambiguate a CRM operation by whether the field already holds the ID.

    An edit of a record the field does not hold is a create (the record was
    inserted out of band). A create of a record it already holds is an edit.
    """
    present = row_index(rows, remote_id) is not None
    if operation == Operation.EDIT and not present:
        return Operation.CREATE
    if operation == Operation.CREATE and present:
        return Operation.EDIT
    return operation


def apply_remote_change(
    existing: list[dict[str, Any]] | None,
    operation: Operation,
    remote_id: int,
    row: dict[str, Any] | None,
    primary_bearing: bool,
) -> list[dict[str, Any]]:
    """New field value after one CRM-side change.

    Args:
        existing: Current field value (None is treated as empty).
        operation: CRM operation as notified.
        remote_id: ID of the CRM record that changed.
        row: The record converted to a Content row (ignored for deletes).
        primary_bearing: Whether to enforce the single-Primary invariant.

    Returns:
        A new list; ``existing`` is never mutated.
    """
    rows = [dict(r) for r in existing or [] if isinstance(r, dict)]
    operation = classify_remote_op(rows, operation, remote_id)

    if operation == Operation.DELETE:
        return [r for r in rows if coerce_remote_id(r.get("remote_id")) != remote_id]

    if row is None:
        return rows

    incoming = {**row, "remote_id": remote_id}
    if primary_bearing:
        rows = enforce_primary(rows, incoming)

    if operation == Operation.CREATE:
        rows.append(incoming)
    else:
        rows[row_index(rows, remote_id)] = incoming
    return rows
