"""In-memory CRM record API.

Behaves like the CRM's own record API closely enough to back the default
app and the test-suite:

- IDs are integers unique within each entity table
- writing a record with ``is_primary`` set demotes every other record of the
  same parent in that table (the CRM enforces primary uniqueness itself)
- attachment creates honour ``options['move-file']`` by recording a CRM-side
  path for the file
- an optional notifier receives the raw pre/post notifications the CRM would
  fire for each write, in the shape the EventMapper consumes
"""

from __future__ import annotations

import copy
import itertools
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from src.crmsync.core.exceptions import CRMAPIError
from src.crmsync.crm.adapter import RecordAPI

logger = structlog.get_logger(__name__)

Notifier = Callable[[dict[str, Any]], Awaitable[None]]

_PARENT_KEYS = ("contact_id", "entity_id")


def _loose(value: Any) -> Any:
    """Normalize scalars so 1, "1" and True compare equal in filters."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return value


class InMemoryRecordAPI(RecordAPI):
    """RecordAPI backed by per-entity dicts.

    Args:
        initialised: Whether the connection reports itself usable.
        notifier: Async callable receiving raw CRM notifications.
        file_root: Directory prefix for files moved into the CRM.
    """

    def __init__(
        self,
        initialised: bool = True,
        notifier: Notifier | None = None,
        file_root: str = "/crm/custom",
    ) -> None:
        self.initialised = initialised
        self.notifier = notifier
        self._file_root = file_root.rstrip("/")
        self._tables: dict[str, dict[int, dict[str, Any]]] = {}
        self._ids = itertools.count(1)
        self.calls: list[tuple[str, str, Any]] = []

    # ── Test/seed helpers ────────────────────────────────────────────────

    def seed(self, entity: str, record: dict[str, Any]) -> dict[str, Any]:
        """Insert a record directly, without notifications or call logging."""
        stored = copy.deepcopy(record)
        if "id" in stored:
            stored["id"] = int(stored["id"])
        else:
            stored["id"] = self._next_id(entity)
        self._table(entity)[stored["id"]] = stored
        return copy.deepcopy(stored)

    def records(self, entity: str) -> list[dict[str, Any]]:
        """All records of an entity, in ID order."""
        table = self._table(entity)
        return [copy.deepcopy(table[k]) for k in sorted(table)]

    def writes(self) -> list[tuple[str, str, Any]]:
        """Logged calls excluding reads."""
        return [c for c in self.calls if c[0] != "get"]

    # ── RecordAPI ───────────────────────────────────────────────────────

    def is_initialised(self) -> bool:
        return self.initialised

    async def get(self, entity: str, filters: dict[str, Any]) -> list[dict[str, Any]]:
        self.calls.append(("get", entity, dict(filters)))
        return [
            copy.deepcopy(record)
            for _, record in sorted(self._table(entity).items())
            if all(_loose(record.get(k)) == _loose(v) for k, v in filters.items())
        ]

    async def create(self, entity: str, payload: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("create", entity, copy.deepcopy(payload)))
        if payload.get("id"):
            raise CRMAPIError(f"create on {entity} must not carry an id", result=payload)

        record = {k: copy.deepcopy(v) for k, v in payload.items() if k != "options"}
        record["id"] = self._next_id(entity)
        options = payload.get("options") or {}
        if options.get("move-file"):
            record["path"] = f"{self._file_root}/{record['id']}-{record.get('name', 'file')}"
        self._demote_others(entity, record)
        self._table(entity)[record["id"]] = record
        await self._notify("create", entity, record["id"], record)
        return copy.deepcopy(record)

    async def update(self, entity: str, payload: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("update", entity, copy.deepcopy(payload)))
        record_id = _loose(payload.get("id"))
        table = self._table(entity)
        if not isinstance(record_id, int) or record_id not in table:
            raise CRMAPIError(f"{entity} {payload.get('id')!r} not found", result=payload)

        record = table[record_id]
        record.update({k: copy.deepcopy(v) for k, v in payload.items() if k not in ("id", "options")})
        self._demote_others(entity, record)
        await self._notify("edit", entity, record_id, record)
        return copy.deepcopy(record)

    async def delete(self, entity: str, record_id: int) -> bool:
        self.calls.append(("delete", entity, int(record_id)))
        table = self._table(entity)
        if int(record_id) not in table:
            raise CRMAPIError(f"{entity} {record_id} not found", result={"id": record_id})

        await self._notify("delete", entity, int(record_id), None, pre=True)
        table.pop(int(record_id))
        await self._notify("delete", entity, int(record_id), None)
        return True

    # ── Internals ───────────────────────────────────────────────────────

    def _table(self, entity: str) -> dict[int, dict[str, Any]]:
        return self._tables.setdefault(entity, {})

    def _next_id(self, entity: str) -> int:
        # Skip IDs taken by seeded records.
        table = self._table(entity)
        record_id = next(self._ids)
        while record_id in table:
            record_id = next(self._ids)
        return record_id

    def _demote_others(self, entity: str, record: dict[str, Any]) -> None:
        if _loose(record.get("is_primary")) != 1:
            return
        parent_key = next((k for k in _PARENT_KEYS if k in record), None)
        if parent_key is None:
            return
        for other in self._table(entity).values():
            if other["id"] == record["id"]:
                continue
            if _loose(other.get(parent_key)) == _loose(record.get(parent_key)):
                other["is_primary"] = "0"

    async def _notify(
        self,
        op: str,
        entity: str,
        record_id: int,
        record: dict[str, Any] | None,
        pre: bool = False,
    ) -> None:
        if self.notifier is None:
            return
        raw = {
            "source": "crm",
            "op": f"{op}/pre" if pre else op,
            "object_name": entity,
            "object_id": record_id,
            "object_ref": copy.deepcopy(record) if record is not None else None,
        }
        await self.notifier(raw)
