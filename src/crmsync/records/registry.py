"""Strategy registry keyed by EntityKind.

Each kind is described once by a KindSpec: which CRM entity holds its
records, how those records hang off their parent, which codec converts them
and whether the Content field holds a record set or a single value. The
mapper, reconcilers and sync handlers look kinds up here instead of
branching on kind names.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

import structlog

from src.crmsync.records.codecs import Codec, ScalarCodec
from src.crmsync.records.schemas import EntityKind, ParentType

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class KindSpec:
    """Static description of one child-record kind.

    Attributes:
        kind: The kind described.
        remote_entity: CRM entity (table) holding the records.
        parent_type: Entity type that owns the record set.
        parent_key: Column on the record holding the parent ID.
        codec: Converter between CRM records and Content values.
        single_value: True when the Content field holds one scalar.
        discriminators: Record columns a single-value field may bind to
            besides the Primary flag (e.g. location and phone type).
        parent_filters: Extra constant filters and payload columns tying a
            record to its parent type (e.g. the attachment entity table).
    """

    kind: EntityKind
    remote_entity: str
    parent_type: ParentType
    parent_key: str
    codec: Codec | ScalarCodec
    single_value: bool = False
    discriminators: tuple[str, ...] = ()
    parent_filters: dict[str, Any] = field(default_factory=dict)

    @property
    def primary_bearing(self) -> bool:
        return bool(getattr(self.codec, "primary_bearing", False))

    def parent_filter(self, parent_id: int) -> dict[str, Any]:
        """CRM filter selecting every record of one parent."""
        return {self.parent_key: int(parent_id), **self.parent_filters}

    def owns(self, record: dict[str, Any]) -> bool:
        """True if the record belongs to this kind's parent type."""
        return all(str(record.get(k)) == str(v) for k, v in self.parent_filters.items())

    def parent_of(self, record: dict[str, Any]) -> int | None:
        value = record.get(self.parent_key)
        try:
            return int(value) if value not in (None, "") else None
        except (TypeError, ValueError):
            return None


class KindRegistry:
    """Directory of KindSpecs, looked up by kind or by CRM entity."""

    def __init__(self) -> None:
        self._specs: dict[EntityKind, KindSpec] = {}

    def register(self, spec: KindSpec) -> None:
        """Add a kind.

        Raises:
            ValueError: If the kind is already registered.
        """
        if spec.kind in self._specs:
            raise ValueError(f"Kind already registered: {spec.kind.value}")
        self._specs[spec.kind] = spec
        logger.info(
            "kind_registered",
            entity_kind=spec.kind.value,
            remote_entity=spec.remote_entity,
            single_value=spec.single_value,
        )

    def get(self, kind: EntityKind) -> KindSpec:
        """Spec for a kind.

        Raises:
            KeyError: If the kind is not registered.
        """
        if kind not in self._specs:
            raise KeyError(f"Kind not registered: {kind}")
        return self._specs[kind]

    def for_remote_entity(self, remote_entity: str) -> list[KindSpec]:
        """Every kind stored in a CRM entity (e.g. Phone feeds two kinds)."""
        return [s for s in self._specs.values() if s.remote_entity == remote_entity]

    def __contains__(self, kind: object) -> bool:
        return kind in self._specs

    def __iter__(self) -> Iterator[KindSpec]:
        return iter(list(self._specs.values()))

    def __len__(self) -> int:
        return len(self._specs)
