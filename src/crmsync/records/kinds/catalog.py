"""The six child-record kinds and the sync strategy wired to each.

build_registry() declares every kind once. build_syncs() instantiates the
strategy class each kind uses; nothing else in the codebase chooses
behaviour by kind name.
"""

from __future__ import annotations

from src.crmsync.config import Settings
from src.crmsync.records.codecs import (
    ADDRESS_SCHEMA,
    IM_SCHEMA,
    PHONE_SCHEMA,
    AttachmentCodec,
    ScalarCodec,
    SchemaCodec,
)
from src.crmsync.records.kinds.attachments import AttachmentSync
from src.crmsync.records.registry import KindRegistry, KindSpec
from src.crmsync.records.schemas import EntityKind, ParentType
from src.crmsync.records.single import SingleValueSync
from src.crmsync.records.sync import AddressSync, KindSync, RecordSetSync, SyncServices

SYNC_CLASSES: dict[EntityKind, type[KindSync]] = {
    EntityKind.ADDRESS: AddressSync,
    EntityKind.PHONE: RecordSetSync,
    EntityKind.MULTISET: RecordSetSync,
    EntityKind.ATTACHMENT: AttachmentSync,
    EntityKind.EMAIL: SingleValueSync,
    EntityKind.PHONE_SINGLE: SingleValueSync,
}


def build_registry(settings: Settings) -> KindRegistry:
    registry = KindRegistry()
    registry.register(
        KindSpec(
            kind=EntityKind.ADDRESS,
            remote_entity="Address",
            parent_type=ParentType.CONTACT,
            parent_key="contact_id",
            codec=SchemaCodec(ADDRESS_SCHEMA),
        )
    )
    registry.register(
        KindSpec(
            kind=EntityKind.PHONE,
            remote_entity="Phone",
            parent_type=ParentType.CONTACT,
            parent_key="contact_id",
            codec=SchemaCodec(PHONE_SCHEMA),
        )
    )
    registry.register(
        KindSpec(
            kind=EntityKind.MULTISET,
            remote_entity=settings.MULTISET_REMOTE_ENTITY,
            parent_type=ParentType.CONTACT,
            parent_key="contact_id",
            codec=SchemaCodec(settings.MULTISET_SCHEMA or IM_SCHEMA),
        )
    )
    registry.register(
        KindSpec(
            kind=EntityKind.ATTACHMENT,
            remote_entity="Attachment",
            parent_type=ParentType.ACTIVITY,
            parent_key="entity_id",
            codec=AttachmentCodec(),
            parent_filters={"entity_table": settings.ATTACHMENT_ENTITY_TABLE},
        )
    )
    registry.register(
        KindSpec(
            kind=EntityKind.EMAIL,
            remote_entity="Email",
            parent_type=ParentType.CONTACT,
            parent_key="contact_id",
            codec=ScalarCodec("email"),
            single_value=True,
            discriminators=("location_type_id",),
        )
    )
    registry.register(
        KindSpec(
            kind=EntityKind.PHONE_SINGLE,
            remote_entity="Phone",
            parent_type=ParentType.CONTACT,
            parent_key="contact_id",
            codec=ScalarCodec("phone"),
            single_value=True,
            discriminators=("location_type_id", "phone_type_id"),
        )
    )
    return registry


def build_syncs(registry: KindRegistry, services: SyncServices) -> dict[EntityKind, KindSync]:
    """One strategy instance per registered kind."""
    return {spec.kind: SYNC_CLASSES[spec.kind](spec, services) for spec in registry}
