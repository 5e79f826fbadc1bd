"""Custom exception hierarchy for agenthub."""

from __future__ import annotations

import enum


class CommandErrorCode(enum.StrEnum):
    """Machine-readable reason a command was not sent or queued."""

    UNKNOWN_KIND = "unknown_kind"
    MISSING_FIELD = "missing_field"
    INVALID_FIELD = "invalid_field"
    UNKNOWN_AGENT = "unknown_agent"
    DUPLICATE_PENDING = "duplicate_pending"
    TRANSPORT_FAILED = "transport_failed"
    STORAGE_IO = "storage_io"


class AgentHubError(Exception):
    """Base exception for all agenthub errors."""


class HubConfigError(AgentHubError):
    """Invalid or missing configuration."""


class StorageIOError(AgentHubError):
    """Read or write failure on the agent database."""

    def __init__(self, message: str, *, url: str | None = None) -> None:
        self.url = url
        super().__init__(message)


class TransportError(AgentHubError):
    """The agent transport failed to transmit a message."""


class MalformedTelemetryError(AgentHubError):
    """A telemetry record is missing required fields."""

    def __init__(self, message: str, *, kind: str = "") -> None:
        self.kind = kind
        super().__init__(message)


class InvalidPollIntervalError(AgentHubError, ValueError):
    """Poll interval is neither ``0`` nor at least the minimum."""

    def __init__(self, message: str, *, seconds: float) -> None:
        self.seconds = seconds
        super().__init__(message)


class CommandError(AgentHubError):
    """A command was rejected before transmission or queueing.

    ``AgentHub.send_command`` never lets these escape; they are converted
    into a failed :class:`agenthub.models.commands.CommandResult`.
    """

    code: CommandErrorCode = CommandErrorCode.UNKNOWN_KIND

    def __init__(
        self,
        message: str,
        *,
        agent_id: str = "",
        kind: str = "",
        field: str | None = None,
    ) -> None:
        self.agent_id = agent_id
        self.kind = kind
        self.field = field
        super().__init__(message)


class UnknownKindError(CommandError):
    """Command kind is not in the catalog."""

    code = CommandErrorCode.UNKNOWN_KIND


class MissingFieldError(CommandError):
    """A field required by the command kind is absent."""

    code = CommandErrorCode.MISSING_FIELD


class InvalidFieldError(CommandError):
    """A field is present but holds a value the command kind rejects."""

    code = CommandErrorCode.INVALID_FIELD


class UnknownAgentError(CommandError):
    """No agent record exists for the target id."""

    code = CommandErrorCode.UNKNOWN_AGENT


class DuplicatePendingError(CommandError):
    """A command of the same kind is already queued for the offline agent."""

    code = CommandErrorCode.DUPLICATE_PENDING
