"""Normalization helpers.

Centralizes defensive parsing of raw telemetry payloads and their log
summaries.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from agenthub.exceptions import MalformedTelemetryError

TModel = TypeVar("TModel", bound=BaseModel)


def extract_list(data: Any, key: str) -> list[Any]:
    """Return ``data[key]`` when it is a list, else an empty list."""
    if not isinstance(data, Mapping):
        return []
    items = data.get(key)
    return list(items) if isinstance(items, list) else []


def extract_str(data: Any, key: str) -> str | None:
    if not isinstance(data, Mapping):
        return None
    value = data.get(key)
    if value is None:
        return None
    return str(value)


def parse_record(model: type[TModel], raw: Any, *, kind: str, **extra: Any) -> TModel:
    """Validate one raw record into *model*.

    ``extra`` values override whatever the agent sent for those fields.

    Raises
    ------
    MalformedTelemetryError
        *raw* is not an object or lacks required fields.
    """
    if not isinstance(raw, Mapping):
        raise MalformedTelemetryError(f"{kind} record is not an object: {type(raw).__name__}", kind=kind)
    try:
        return model.model_validate({**raw, **extra})
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) or "<root>" for err in exc.errors())
        raise MalformedTelemetryError(f"{kind} record invalid ({fields})", kind=kind) from exc


def iter_records(
    model: type[TModel], items: list[Any], *, kind: str
) -> Iterator[tuple[TModel | None, MalformedTelemetryError | None]]:
    """Yield ``(record, None)`` or ``(None, error)`` per raw item."""
    for raw in items:
        try:
            yield parse_record(model, raw, kind=kind), None
        except MalformedTelemetryError as exc:
            yield None, exc


# Keys whose values are file contents (base64 text in JSON frames).
_BINARY_KEYS = frozenset({"buffer"})


def _binary_size(value: Any) -> str:
    if isinstance(value, str):
        return f"<{len(value)} base64 chars>"
    if isinstance(value, (bytes, bytearray, memoryview, list)):
        return f"<{len(value)} bytes>"
    return f"<{type(value).__name__}>"


def summarize_for_log(value: Any, *, max_text: int = 200, max_items: int = 20) -> Any:
    """Shrink an agent payload for DEBUG logs.

    File contents are replaced by their size, long strings are cut to
    *max_text* characters and lists to their first *max_items* entries.
    """
    if isinstance(value, (bytes, bytearray, memoryview)):
        return _binary_size(value)
    if isinstance(value, str):
        if len(value) <= max_text:
            return value
        return f"{value[:max_text]}...<{len(value)} chars>"
    if isinstance(value, Mapping):
        return {
            str(key): _binary_size(item)
            if key in _BINARY_KEYS
            else summarize_for_log(item, max_text=max_text, max_items=max_items)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        summary = [summarize_for_log(item, max_text=max_text, max_items=max_items) for item in value[:max_items]]
        if len(value) > max_items:
            summary.append(f"<+{len(value) - max_items} more>")
        return summary
    return value
