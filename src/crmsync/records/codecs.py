"""Field value codecs: CRM child records <-> Content child rows.

Defines:
- Scalar coercion helpers shared by every codec (text trimming, integer and
  flag coercion, the CRM "null" sentinel)
- ADDRESS_SCHEMA, PHONE_SCHEMA, IM_SCHEMA: sub-field maps from Content
  sub-field name to CRM column name and scalar type
- SchemaCodec: schema-driven codec used by the record-set kinds
- AttachmentCodec: file/description rows for Activity attachments
- ScalarCodec: single-value fields (one email address, one phone number)

Codecs are pure: they never call the network and never raise on well-formed
input. Missing sub-fields default to the empty value for their type.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

# CRM writes this literal for columns it has explicitly cleared.
NULL_SENTINEL = "null"

TRUE_STRINGS = frozenset({"1", "true", "yes", "on"})


# ── Scalar Coercion ────────────────────────────────────────────────────────


def text_value(value: Any) -> str:
    """Trimmed string; None and the CRM null sentinel become ""."""
    if value is None:
        return ""
    text = str(value).strip()
    if text.lower() == NULL_SENTINEL:
        return ""
    return text


def int_value(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    try:
        return int(float(text_value(value)))
    except (ValueError, OverflowError):
        return default


def optional_int_value(value: Any) -> int | str:
    """Integer, or "" when the value is empty or not numeric."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    text = text_value(value)
    try:
        return int(float(text))
    except (ValueError, OverflowError):
        return ""


def float_value(value: Any) -> float | str:
    """Float, or "" when the value is empty or not numeric."""
    if isinstance(value, bool):
        return ""
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(text_value(value))
    except (ValueError, OverflowError):
        return ""


def flag_value(value: Any) -> bool:
    """Boolean from a flag that may arrive as bool, int or "0"/"1"."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return text_value(value).lower() in TRUE_STRINGS


def flag_out(value: Any) -> str:
    """CRM-bound flag encoding."""
    return "1" if flag_value(value) else "0"


def coerce_remote_id(value: Any) -> int | None:
    """Positive integer ID, or None for empty, zero or malformed values."""
    coerced = optional_int_value(value)
    if isinstance(coerced, int) and coerced > 0:
        return coerced
    return None


_TO_CONTENT = {
    "text": text_value,
    "int": int_value,
    "optional_int": optional_int_value,
    "float": float_value,
    "flag": flag_value,
}

_TO_REMOTE = {
    "text": text_value,
    "int": int_value,
    "optional_int": optional_int_value,
    "float": float_value,
    "flag": flag_out,
}


# ── Sub-field Schemas ──────────────────────────────────────────────────────
# Content sub-field name -> CRM column name and scalar type.

ADDRESS_SCHEMA: dict[str, dict[str, str]] = {
    "location_type_id": {"remote_name": "location_type_id", "type": "int"},
    "is_primary": {"remote_name": "is_primary", "type": "flag"},
    "is_billing": {"remote_name": "is_billing", "type": "flag"},
    "street_address": {"remote_name": "street_address", "type": "text"},
    "supplemental_address_1": {"remote_name": "supplemental_address_1", "type": "text"},
    "supplemental_address_2": {"remote_name": "supplemental_address_2", "type": "text"},
    "supplemental_address_3": {"remote_name": "supplemental_address_3", "type": "text"},
    "city": {"remote_name": "city", "type": "text"},
    "postal_code": {"remote_name": "postal_code", "type": "text"},
    "country_id": {"remote_name": "country_id", "type": "optional_int"},
    "state_province_id": {"remote_name": "state_province_id", "type": "optional_int"},
    "geo_code_1": {"remote_name": "geo_code_1", "type": "float"},
    "geo_code_2": {"remote_name": "geo_code_2", "type": "float"},
    "manual_geo_code": {"remote_name": "manual_geo_code", "type": "flag"},
}

PHONE_SCHEMA: dict[str, dict[str, str]] = {
    "number": {"remote_name": "phone", "type": "text"},
    "extension": {"remote_name": "phone_ext", "type": "text"},
    "location_type_id": {"remote_name": "location_type_id", "type": "int"},
    "phone_type_id": {"remote_name": "phone_type_id", "type": "int"},
    "is_primary": {"remote_name": "is_primary", "type": "flag"},
}

IM_SCHEMA: dict[str, dict[str, str]] = {
    "name": {"remote_name": "name", "type": "text"},
    "location_type_id": {"remote_name": "location_type_id", "type": "int"},
    "provider_id": {"remote_name": "provider_id", "type": "int"},
    "is_primary": {"remote_name": "is_primary", "type": "flag"},
}


# ── Codecs ─────────────────────────────────────────────────────────────────


class Codec(ABC):
    """Converts between one kind's CRM records and Content rows."""

    primary_bearing: bool = False

    @abstractmethod
    def to_content(self, remote: dict[str, Any]) -> dict[str, Any]:
        """Content row for a CRM record, carrying its ``remote_id``."""
        ...

    @abstractmethod
    def to_remote(
        self,
        row: dict[str, Any],
        existing_remote_id: int | None = None,
    ) -> dict[str, Any]:
        """CRM payload for a Content row; includes ``id`` only when given."""
        ...

    def same_payload(self, row: dict[str, Any], current: dict[str, Any]) -> bool:
        """True if writing ``row`` would not change the CRM record ``current``."""
        remote_id = coerce_remote_id(current.get("id"))
        return self.to_remote(row, remote_id) == self.to_remote(
            self.to_content(current), remote_id
        )


class SchemaCodec(Codec):
    """Codec driven by a sub-field schema.

    Args:
        schema: Content sub-field -> {"remote_name", "type"} map. Types are
            text, int, optional_int, float and flag.
    """

    def __init__(self, schema: dict[str, dict[str, str]]) -> None:
        unknown = {spec["type"] for spec in schema.values()} - set(_TO_CONTENT)
        if unknown:
            raise ValueError(f"Unknown sub-field types: {sorted(unknown)}")
        self.schema = schema
        self.primary_bearing = "is_primary" in schema

    def to_content(self, remote: dict[str, Any]) -> dict[str, Any]:
        row = {
            name: _TO_CONTENT[spec["type"]](remote.get(spec["remote_name"]))
            for name, spec in self.schema.items()
        }
        row["remote_id"] = coerce_remote_id(remote.get("id"))
        return row

    def to_remote(
        self,
        row: dict[str, Any],
        existing_remote_id: int | None = None,
    ) -> dict[str, Any]:
        payload = {
            spec["remote_name"]: _TO_REMOTE[spec["type"]](row.get(name))
            for name, spec in self.schema.items()
        }
        if existing_remote_id is not None:
            payload["id"] = int(existing_remote_id)
        return payload


class AttachmentCodec(Codec):
    """Rows of ``{file, description, remote_id}``.

    ``file`` is the local file ID. The CRM record only knows the file by the
    path it was moved to, so resolving ``file`` for CRM-originated records is
    left to the metadata bridge.
    """

    def to_content(self, remote: dict[str, Any]) -> dict[str, Any]:
        return {
            "file": optional_int_value(remote.get("file")),
            "description": text_value(remote.get("description")),
            "remote_id": coerce_remote_id(remote.get("id")),
        }

    def to_remote(
        self,
        row: dict[str, Any],
        existing_remote_id: int | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "file": optional_int_value(row.get("file")),
            "description": text_value(row.get("description")),
        }
        if existing_remote_id is not None:
            payload["id"] = int(existing_remote_id)
        return payload


class ScalarCodec:
    """One CRM column as a plain Content string."""

    def __init__(self, column: str) -> None:
        self.column = column

    def to_content(self, remote: dict[str, Any] | None) -> str:
        if not remote:
            return ""
        return text_value(remote.get(self.column))

    def to_remote(self, value: Any, existing_remote_id: int | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {self.column: text_value(value)}
        if existing_remote_id is not None:
            payload["id"] = int(existing_remote_id)
        return payload
