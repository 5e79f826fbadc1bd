"""Data models for agents, commands and telemetry."""

from agenthub.models._base import HubBaseModel, TelemetryRecord, utcnow
from agenthub.models.agent import Agent, AgentMetadata, AgentPage, DeviceInfo, HubStats, PollConfig
from agenthub.models.commands import CommandKind, CommandResult, DeliveryOutcome, QueuedCommand
from agenthub.models.telemetry import (
    BinaryPayload,
    CallRecord,
    ClipboardEntry,
    ContactRecord,
    DownloadEntry,
    GpsFix,
    NotificationRecord,
    SmsRecord,
    WifiNetwork,
)

__all__ = [
    "Agent",
    "AgentMetadata",
    "AgentPage",
    "BinaryPayload",
    "CallRecord",
    "ClipboardEntry",
    "CommandKind",
    "CommandResult",
    "ContactRecord",
    "DeliveryOutcome",
    "DeviceInfo",
    "DownloadEntry",
    "GpsFix",
    "HubBaseModel",
    "HubStats",
    "NotificationRecord",
    "PollConfig",
    "QueuedCommand",
    "SmsRecord",
    "TelemetryRecord",
    "WifiNetwork",
    "utcnow",
]
