"""agenthub - Async control plane for long-lived remote agent connections."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("agenthub")
except PackageNotFoundError:
    __version__ = "0+local"
from agenthub.config import HubConfig
from agenthub.exceptions import (
    AgentHubError,
    CommandError,
    CommandErrorCode,
    DuplicatePendingError,
    HubConfigError,
    InvalidFieldError,
    InvalidPollIntervalError,
    MalformedTelemetryError,
    MissingFieldError,
    StorageIOError,
    TransportError,
    UnknownAgentError,
    UnknownKindError,
)
from agenthub.hub import AgentHub
from agenthub.models import (
    Agent,
    AgentMetadata,
    AgentPage,
    CommandKind,
    CommandResult,
    DeliveryOutcome,
    HubStats,
    PollConfig,
)
from agenthub.transport import AgentTransport, CallbackTransport

__all__ = [
    "__version__",
    "Agent",
    "AgentHub",
    "AgentHubError",
    "AgentMetadata",
    "AgentPage",
    "AgentTransport",
    "CallbackTransport",
    "CommandError",
    "CommandErrorCode",
    "CommandKind",
    "CommandResult",
    "DeliveryOutcome",
    "DuplicatePendingError",
    "HubConfig",
    "HubConfigError",
    "HubStats",
    "InvalidFieldError",
    "InvalidPollIntervalError",
    "MalformedTelemetryError",
    "MissingFieldError",
    "PollConfig",
    "StorageIOError",
    "TransportError",
    "UnknownAgentError",
    "UnknownKindError",
]
