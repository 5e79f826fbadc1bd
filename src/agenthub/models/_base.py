"""Base model for agent documents and telemetry records.

Every agenthub model inherits from :class:`HubBaseModel` which provides:

* ``alias_generator=to_camel`` so the camelCase keys agents send map
  automatically to snake_case fields.
* A ``model_validator(mode="before")`` that drops ``None`` and NaN values so
  the field default is used instead.
* :meth:`HubBaseModel.to_document` producing the JSON-ready dict stored in
  the agent database.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, TypeAdapter, model_validator
from pydantic.alias_generators import to_camel

from agenthub._hashing import dedupe_key


def utcnow() -> datetime:
    return datetime.now(UTC)


_DATETIME_ADAPTER = TypeAdapter(datetime)


def json_timestamp(value: datetime) -> str:
    """Serialize *value* the same way model fields are stored."""
    return _DATETIME_ADAPTER.dump_python(value, mode="json")


class HubBaseModel(BaseModel):
    """Base for documents exchanged with agents and the store."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    #: Keys whose explicit ``null`` means zero rather than "not sent".
    _NULL_AS_ZERO: ClassVar[frozenset[str]] = frozenset()

    @model_validator(mode="before")
    @classmethod
    def _drop_empty_values(cls, values: Any) -> Any:
        """Strip ``None`` and NaN so defaults apply."""
        if not isinstance(values, dict):
            return values
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                if key in cls._NULL_AS_ZERO:
                    cleaned[key] = 0
                continue
            if isinstance(value, float) and math.isnan(value):
                continue
            cleaned[key] = value
        return cleaned

    def to_document(self) -> dict[str, Any]:
        """Dump to the camelCase, JSON-compatible form kept in the store."""
        return self.model_dump(mode="json", by_alias=True)


class TelemetryRecord(HubBaseModel):
    """Base for append-only log records.

    Unknown fields sent by the agent are retained and stored alongside the
    declared ones. Subclasses name their identity fields in
    ``_DEDUPE_FIELDS``; records without identity fields are never deduped.
    """

    model_config = ConfigDict(extra="allow")

    _DEDUPE_FIELDS: ClassVar[tuple[str, ...]] = ()

    def dedupe_key(self) -> str | None:
        """Stable hash over the record's identity fields."""
        fields = type(self)._DEDUPE_FIELDS
        if not fields:
            return None
        return dedupe_key(*(getattr(self, name) for name in fields))

    def to_document(self) -> dict[str, Any]:
        doc = super().to_document()
        key = self.dedupe_key()
        if key is not None:
            doc["hash"] = key
        return doc
