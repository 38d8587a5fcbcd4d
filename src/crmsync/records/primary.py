"""Primary-flag invariant: at most one row per set is Primary.

Applied in the CRM -> Content direction only. Content -> CRM writes rely on
the CRM enforcing primary uniqueness itself.
"""

from __future__ import annotations

from typing import Any

from src.crmsync.records.codecs import flag_value


def enforce_primary(
    existing_rows: list[dict[str, Any]],
    incoming_row: dict[str, Any],
) -> list[dict[str, Any]]:
    """Rows to store alongside ``incoming_row``.

    When the incoming row is Primary every existing row is demoted. The
    input list and its rows are not mutated.
    """
    if not flag_value(incoming_row.get("is_primary")):
        return [dict(row) for row in existing_rows]
    return [{**row, "is_primary": False} for row in existing_rows]


def primary_count(rows: list[dict[str, Any]]) -> int:
    return sum(1 for row in rows if flag_value(row.get("is_primary")))
