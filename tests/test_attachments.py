"""Tests for Activity attachment sync.

Covers file moves on create, description-only updates, delete-then-create
on a changed file, metadata bookkeeping and CRM -> Content file lookups.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.crmsync.core.exceptions import CRMAPIError
from src.crmsync.records.schemas import EntityKind, ReconcileResult

ACTIVITY_ID = 40
ACTIVITY_RECORD = 200
FILE_ID = 9


@pytest.fixture
def attachments(content, files, linked):
    content.add_field(ACTIVITY_RECORD, "files", EntityKind.ATTACHMENT, value=[])
    files.add(FILE_ID, "/local/report.pdf", "application/pdf")


@pytest.fixture
async def uploaded(engine, attachments):
    """The local file attached once, as record 1."""
    await engine.save_content(ACTIVITY_RECORD, {"files": [{"file": FILE_ID, "description": "Q3"}]})


def _result(ctx) -> ReconcileResult:
    [result] = [r for r in ctx.results if isinstance(r, ReconcileResult)]
    return result


def _ops(api) -> list[str]:
    return [call[0] for call in api.writes()]


# ── Create ─────────────────────────────────────────────────────────────────


class TestAttachmentCreate:
    async def test_create_moves_file_into_crm(self, engine, api, attachments):
        await engine.save_content(ACTIVITY_RECORD, {"files": [{"file": FILE_ID, "description": "Q3"}]})

        [call] = api.writes()
        assert call[0] == "create"
        payload = call[2]
        assert payload["entity_id"] == ACTIVITY_ID
        assert payload["entity_table"] == "civicrm_activity"
        assert payload["name"] == "report.pdf"
        assert payload["mime_type"] == "application/pdf"
        assert payload["options"] == {"move-file": "/local/report.pdf"}

    async def test_create_records_metadata_and_backfills(self, engine, content, metadata, uploaded):
        stored = await metadata.get(FILE_ID)

        assert stored.local_path == "/local/report.pdf"
        assert stored.remote_path == "/crm/custom/1-report.pdf"
        assert content.value(ACTIVITY_RECORD, "files") == [
            {"file": FILE_ID, "description": "Q3", "remote_id": 1}
        ]

    async def test_missing_local_file_abandons_row(self, engine, api, attachments):
        ctx = await engine.save_content(ACTIVITY_RECORD, {"files": [{"file": 77, "description": "x"}]})

        assert api.writes() == []
        assert "attachment create failed for 0" in _result(ctx).errors[0]


# ── Update ─────────────────────────────────────────────────────────────────


class TestAttachmentUpdate:
    async def test_unchanged_row_makes_no_writes(self, engine, api, content, uploaded):
        writes_before = len(api.writes())

        await engine.save_content(ACTIVITY_RECORD, {"files": content.value(ACTIVITY_RECORD, "files")})

        assert len(api.writes()) == writes_before

    async def test_description_change_updates_in_place(self, engine, api, uploaded):
        await engine.save_content(
            ACTIVITY_RECORD, {"files": [{"file": FILE_ID, "description": "Q4", "remote_id": 1}]}
        )

        assert api.writes()[-1] == ("update", "Attachment", {"id": 1, "description": "Q4"})
        [record] = api.records("Attachment")
        assert record["id"] == 1
        assert record["description"] == "Q4"

    async def test_changed_file_replaced_by_delete_then_create(
        self, engine, api, files, content, metadata, uploaded
    ):
        files.move(FILE_ID, "/local/report-v2.pdf")
        writes_before = len(api.writes())

        ctx = await engine.save_content(
            ACTIVITY_RECORD, {"files": [{"file": FILE_ID, "description": "Q3", "remote_id": 1}]}
        )

        assert _ops(api)[writes_before:] == ["delete", "create"]
        [record] = api.records("Attachment")
        assert record["id"] == 2
        assert record["name"] == "report-v2.pdf"
        assert content.value(ACTIVITY_RECORD, "files")[0]["remote_id"] == 2
        stored = await metadata.get(FILE_ID)
        assert stored.remote_path == "/crm/custom/2-report-v2.pdf"
        assert [a.action for a in _result(ctx).actions] == ["delete", "create"]
        assert _result(ctx).counts() == {"create": 1, "update": 0, "delete": 1}

    async def test_failed_delete_skips_replacement(self, engine, api, files, uploaded):
        files.move(FILE_ID, "/local/report-v2.pdf")
        creates_before = _ops(api).count("create")
        api.delete = AsyncMock(side_effect=CRMAPIError("attachment locked", result={"is_error": 1}))

        ctx = await engine.save_content(
            ACTIVITY_RECORD, {"files": [{"file": FILE_ID, "description": "Q3", "remote_id": 1}]}
        )

        assert _ops(api).count("create") == creates_before
        assert "attachment update failed for 0" in _result(ctx).errors[0]

    async def test_failed_recreate_still_reports_the_delete(self, engine, api, files, uploaded):
        files.move(FILE_ID, "/local/report-v2.pdf")
        api.create = AsyncMock(side_effect=CRMAPIError("attachment quota exceeded"))

        ctx = await engine.save_content(
            ACTIVITY_RECORD, {"files": [{"file": FILE_ID, "description": "Q3", "remote_id": 1}]}
        )

        result = _result(ctx)
        assert result.counts() == {"create": 0, "update": 0, "delete": 1}
        assert "attachment update failed for 0" in result.errors[0]
        assert api.records("Attachment") == []


# ── Delete ─────────────────────────────────────────────────────────────────


class TestAttachmentDelete:
    async def test_removed_row_deletes_record_and_metadata(self, engine, api, metadata, uploaded):
        await engine.save_content(ACTIVITY_RECORD, {"files": []})

        assert api.records("Attachment") == []
        assert await metadata.get(FILE_ID) is None


# ── CRM -> Content ─────────────────────────────────────────────────────────


class TestAttachmentFromCRM:
    async def test_crm_edit_resolves_file_through_metadata(self, engine, api, content, uploaded):
        await api.update("Attachment", {"id": 1, "description": "Edited in CRM"})

        assert content.value(ACTIVITY_RECORD, "files") == [
            {"file": FILE_ID, "description": "Edited in CRM", "remote_id": 1}
        ]

    async def test_attachment_on_other_entity_ignored(self, engine, api, content, attachments):
        await api.create(
            "Attachment",
            {"entity_id": ACTIVITY_ID, "entity_table": "civicrm_contact", "name": "cv.pdf"},
        )

        assert content.value(ACTIVITY_RECORD, "files") == []
