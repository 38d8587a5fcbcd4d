"""Tests for the event mapper, reverse-edit guard and kind registry.

CRM-side writes are made directly on the in-memory CRM, whose notifier
loops them back into the engine the way CRM hooks would.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.crmsync.config import Settings
from src.crmsync.content.storage import AttachmentMetadata
from src.crmsync.core.context import SourceSystem, SyncContext, bind_context
from src.crmsync.core.exceptions import CRMAPIError
from src.crmsync.events.schemas import content_topic, mapper_topic
from src.crmsync.records.guard import ReverseEditGuard
from src.crmsync.records.kinds import build_registry
from src.crmsync.records.mapper import PRE_DELETE_CACHE
from src.crmsync.records.registry import KindRegistry, KindSpec
from src.crmsync.records.schemas import EntityKind, Operation, ParentType, SyncEvent
from src.crmsync.records.sync import KindSync

CONTACT_ID = 7
CONTACT_RECORD = 100
ACTIVITY_ID = 40
ACTIVITY_RECORD = 200
FILE_ID = 9


@pytest.fixture
def phones(content, linked):
    content.add_field(CONTACT_RECORD, "phones", EntityKind.PHONE, value=[])


def _phone(**overrides) -> dict:
    record = {
        "contact_id": CONTACT_ID,
        "phone": "555-0101",
        "location_type_id": 1,
        "phone_type_id": 1,
        "is_primary": "1",
    }
    record.update(overrides)
    return record


# ── CRM -> Content ─────────────────────────────────────────────────────────


class TestCRMNotifications:
    async def test_crm_create_appends_row(self, engine, api, content, phones):
        """A CRM-originated create lands in the mapped Content record."""
        record = await api.create("Phone", _phone())

        rows = content.value(CONTACT_RECORD, "phones")
        assert rows == [
            {
                "number": "555-0101",
                "extension": "",
                "location_type_id": 1,
                "phone_type_id": 1,
                "is_primary": True,
                "remote_id": record["id"],
            }
        ]

    async def test_edit_of_unknown_record_treated_as_create(self, engine, content, phones):
        await engine.handle(
            {
                "source": "crm",
                "op": "edit",
                "object_name": "Phone",
                "object_id": 5,
                "object_ref": {"id": 5, "contact_id": CONTACT_ID, "phone": "777"},
            }
        )

        rows = content.value(CONTACT_RECORD, "phones")
        assert [(r["remote_id"], r["number"]) for r in rows] == [(5, "777")]

    async def test_edit_without_record_fetches_it(self, engine, api, content, phones):
        api.seed("Phone", {"id": 5, **_phone(phone="888")})

        await engine.handle({"source": "crm", "op": "edit", "object_name": "Phone", "object_id": 5})

        assert content.value(CONTACT_RECORD, "phones")[0]["number"] == "888"

    async def test_crm_primary_edit_demotes_other_rows(self, engine, api, content, phones):
        first = await api.create("Phone", _phone())
        second = await api.create("Phone", _phone(phone="555-0202", is_primary="0"))

        await api.update("Phone", {"id": second["id"], "is_primary": "1"})

        rows = {r["remote_id"]: r["is_primary"] for r in content.value(CONTACT_RECORD, "phones")}
        assert rows == {first["id"]: False, second["id"]: True}

    async def test_delete_completed_from_pre_delete_stash(self, engine, api, content, phones):
        """delete/pre stashes the record so the post-delete event can resolve its parent."""
        record = await api.create("Phone", _phone())
        ctx = SyncContext()

        with bind_context(ctx):
            await engine.caller.delete("Phone", record["id"])

        assert content.value(CONTACT_RECORD, "phones") == []
        assert (PRE_DELETE_CACHE, ("Phone", record["id"])) not in ctx.cache

    async def test_delete_without_stash_or_record_is_dropped(self, engine, content, phones):
        content_rows = [{"number": "1", "remote_id": 9}]
        await content.set_field_value(CONTACT_RECORD, "phones", content_rows)

        await engine.handle(
            {"source": "crm", "op": "delete", "object_name": "Phone", "object_id": 9}
        )

        assert content.value(CONTACT_RECORD, "phones") == content_rows

    async def test_delete_carrying_record_is_applied(self, engine, content, phones):
        await content.set_field_value(CONTACT_RECORD, "phones", [{"number": "1", "remote_id": 9}])

        await engine.handle(
            {
                "source": "crm",
                "op": "delete",
                "object_name": "Phone",
                "object_id": 9,
                "object_ref": {"id": 9, "contact_id": CONTACT_ID},
            }
        )

        assert content.value(CONTACT_RECORD, "phones") == []

    async def test_unmapped_parent_writes_nothing(self, engine, api, content, phones):
        await api.create("Phone", _phone(contact_id=8))

        assert content.writes == []

    async def test_unsynced_entity_ignored(self, engine):
        ctx = SyncContext()

        published = await engine.mapper.dispatch(
            ctx, {"source": "crm", "op": "create", "object_name": "Note", "object_id": 1}
        )

        assert published == 0

    async def test_origin_cleared_after_dispatch(self, engine, api, phones):
        ctx = SyncContext()

        await engine.handle(
            {"source": "crm", "op": "create", "object_name": "Phone", "object_id": 1,
             "object_ref": {"id": 1, **_phone()}},
            ctx,
        )

        assert ctx.origin is None

    async def test_malformed_operation_rejected(self, engine):
        with pytest.raises(ValueError):
            await engine.handle({"source": "crm", "op": "merge", "object_name": "Phone", "object_id": 1})


# ── Content -> CRM ─────────────────────────────────────────────────────────


class TestContentSaves:
    async def test_unbound_field_not_published(self, engine, content, linked):
        content.add_field(CONTACT_RECORD, "phones", EntityKind.PHONE, value=[])
        ctx = SyncContext()

        published = await engine.mapper.dispatch(
            ctx, {"source": "content", "record_id": CONTACT_RECORD, "fields": {"title": "x"}}
        )

        assert published == 0

    async def test_echo_save_skipped(self, engine, api, phones):
        """A Content save during a CRM-originated write is not pushed back."""
        ctx = SyncContext()

        with ctx.originate(SourceSystem.CRM, "Phone", 1):
            published = await engine.mapper.dispatch(
                ctx,
                {
                    "source": "content",
                    "record_id": CONTACT_RECORD,
                    "fields": {"phones": [{"number": "1"}]},
                },
            )

        assert published == 0
        assert api.writes() == []

    async def test_parent_lookup_cached_per_request(self, engine, resolver, content, linked):
        content.add_field(CONTACT_RECORD, "phones", EntityKind.PHONE, value=[])
        content.add_field(CONTACT_RECORD, "messengers", EntityKind.MULTISET, value=[])
        ctx = SyncContext()
        calls = []
        original = resolver.parent_for_content

        async def counting(record_id, parent_type):
            calls.append((record_id, parent_type))
            return await original(record_id, parent_type)

        resolver.parent_for_content = counting

        await engine.save_content(
            CONTACT_RECORD, {"phones": [], "messengers": []}, ctx
        )

        assert calls == [(CONTACT_RECORD, ParentType.CONTACT)]


# ── Reverse-Edit Guard ───────────────────────────────────────────────────


class TestReverseEditGuard:
    async def test_save_produces_single_row(self, engine, content, phones):
        """The create's own notification is not written back into the saving record."""
        await engine.save_content(CONTACT_RECORD, {"phones": [{"number": "555", "is_primary": True}]})

        rows = content.value(CONTACT_RECORD, "phones")
        assert len(rows) == 1
        assert rows[0]["remote_id"] == 1

    async def test_override_forces_propagation(self, engine, content, phones):
        engine.guard.add_override(lambda ctx, record_id, event: True)

        await engine.save_content(CONTACT_RECORD, {"phones": [{"number": "555", "is_primary": True}]})

        assert len(content.value(CONTACT_RECORD, "phones")) == 2

    def test_reverse_edit_only_for_originating_record(self):
        guard = ReverseEditGuard()
        ctx = SyncContext()
        event = SyncEvent(operation=Operation.EDIT, entity_id=1, source=SourceSystem.CRM)

        with ctx.originate(SourceSystem.CONTENT, "content", 100):
            assert guard.should_skip(ctx, 100, event) is True
            assert guard.should_skip(ctx, 101, event) is False

        assert guard.should_skip(ctx, 100, event) is False

    def test_override_registration_idempotent(self):
        guard = ReverseEditGuard()

        def override(ctx, record_id, event):
            return True

        assert guard.add_override(override) is True
        assert guard.add_override(override) is False
        assert guard.remove_override(override) is True
        assert guard.remove_override(override) is False


# ── Full Sync ────────────────────────────────────────────────────────────


class TestFullSync:
    """sync_parent_to_content() fills a newly linked record from the CRM."""

    async def test_bound_fields_replaced_with_crm_records(self, engine, api, content, phones):
        content.add_field(CONTACT_RECORD, "work_phones", EntityKind.PHONE, value=[])
        await content.set_field_value(CONTACT_RECORD, "phones", [{"number": "stale", "remote_id": 99}])
        api.seed("Phone", {"id": 3, **_phone()})
        api.seed("Phone", {"id": 4, **_phone(phone="555-0102", is_primary="0")})

        ctx = await engine.sync_parent_to_content(ParentType.CONTACT, CONTACT_ID, CONTACT_RECORD)

        for selector in ("phones", "work_phones"):
            rows = content.value(CONTACT_RECORD, selector)
            assert [(r["number"], r["remote_id"], r["is_primary"]) for r in rows] == [
                ("555-0101", 3, True),
                ("555-0102", 4, False),
            ]
        assert ctx.warnings == []
        assert api.writes() == []

    async def test_attachment_file_resolved_through_metadata(self, engine, api, content, metadata, linked):
        content.add_field(ACTIVITY_RECORD, "files", EntityKind.ATTACHMENT, value=[])
        await metadata.set(
            FILE_ID,
            AttachmentMetadata(local_path="/local/report.pdf", remote_path="/crm/custom/5-report.pdf"),
        )
        api.seed(
            "Attachment",
            {
                "id": 5,
                "entity_id": ACTIVITY_ID,
                "entity_table": "civicrm_activity",
                "description": "Q3",
                "path": "/crm/custom/5-report.pdf",
            },
        )

        await engine.sync_parent_to_content(ParentType.ACTIVITY, ACTIVITY_ID, ACTIVITY_RECORD)

        assert content.value(ACTIVITY_RECORD, "files") == [
            {"file": FILE_ID, "description": "Q3", "remote_id": 5}
        ]

    async def test_crm_read_failure_warns_and_writes_nothing(self, engine, api, content, phones):
        await content.set_field_value(CONTACT_RECORD, "phones", [{"number": "kept", "remote_id": 99}])
        api.get = AsyncMock(side_effect=CRMAPIError("query failed"))

        ctx = await engine.sync_parent_to_content(ParentType.CONTACT, CONTACT_ID, CONTACT_RECORD)

        assert any("phone full sync failed for parent 7" in w for w in ctx.warnings)
        assert content.value(CONTACT_RECORD, "phones") == [{"number": "kept", "remote_id": 99}]


# ── Registration ─────────────────────────────────────────────────────────


class TestRegistration:
    def test_register_all_idempotent(self, engine):
        topic = mapper_topic("phone", "create")
        before = len(engine.bus.listeners(topic))

        assert engine.register_all() == 0
        assert len(engine.bus.listeners(topic)) == before == 1

    async def test_unregistered_kinds_receive_nothing(self, engine, api, content, phones):
        assert engine.unregister_all() == 6
        assert engine.bus.listeners(content_topic("phone")) == []

        await api.create("Phone", _phone())

        assert content.value(CONTACT_RECORD, "phones") == []

    def test_kind_sync_must_handle_both_directions(self, engine):
        with pytest.raises(TypeError):
            KindSync(engine.registry.get(EntityKind.PHONE), engine.services)


class TestKindRegistry:
    def test_six_kinds_declared(self, settings):
        registry = build_registry(settings)

        assert len(registry) == 6
        assert {spec.kind for spec in registry} == set(EntityKind)

    def test_phone_entity_feeds_two_kinds(self, settings):
        registry = build_registry(settings)

        kinds = {spec.kind for spec in registry.for_remote_entity("Phone")}

        assert kinds == {EntityKind.PHONE, EntityKind.PHONE_SINGLE}

    def test_duplicate_kind_rejected(self, settings):
        registry = build_registry(settings)

        with pytest.raises(ValueError, match="already registered"):
            registry.register(registry.get(EntityKind.EMAIL))

    def test_unknown_kind_raises(self):
        with pytest.raises(KeyError):
            KindRegistry().get(EntityKind.EMAIL)

    def test_attachment_owns_only_activity_records(self, settings):
        spec: KindSpec = build_registry(settings).get(EntityKind.ATTACHMENT)

        assert spec.owns({"entity_table": "civicrm_activity", "entity_id": 40}) is True
        assert spec.owns({"entity_table": "civicrm_contact", "entity_id": 40}) is False
        assert spec.parent_filter(40) == {"entity_id": 40, "entity_table": "civicrm_activity"}

    def test_multiset_configurable(self):
        settings = Settings(
            MULTISET_REMOTE_ENTITY="Website",
            MULTISET_SCHEMA={"url": {"remote_name": "url", "type": "text"}},
        )

        spec = build_registry(settings).get(EntityKind.MULTISET)

        assert spec.remote_entity == "Website"
        assert spec.primary_bearing is False
        assert spec.codec.to_content({"id": 2, "url": "https://x.org"}) == {
            "url": "https://x.org",
            "remote_id": 2,
        }
