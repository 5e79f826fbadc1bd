"""Hub configuration for agenthub."""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path
from typing import Any

from agenthub._constants import DATABASE_FILE, DEFAULT_PORT, DOWNLOADS_FOLDER
from agenthub.exceptions import HubConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(env_key: str, value: str, cast: type[int] | type[float]) -> int | float:
    try:
        return cast(value)
    except ValueError as exc:
        raise HubConfigError(f"{env_key} must be a number, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class HubConfig:
    """Hub configuration.

    Parameters
    ----------
    data_dir : Path or None
        Directory holding the SQLite database and saved downloads. ``None``
        keeps everything in memory (useful for tests and throwaway hubs).
    database_url : str or None
        SQLAlchemy URL of the store. Overrides the SQLite file derived from
        ``data_dir``.
    downloads_dir : Path or None
        Where binary payloads (downloaded files, voice recordings) are
        written. Defaults to ``<data_dir>/client_downloads``. When both are
        ``None`` binary payloads are dropped with a warning.
    downloads_url_prefix : str
        Prefix stored in download-log entries so the dashboard can serve
        saved files as static assets.
    host : str
        Interface the agent WebSocket server binds to.
    port : int
        Port the agent WebSocket server listens on.
    ws_heartbeat : float
        Seconds between WebSocket pings sent to agents.
    reconnect_grace : float
        Seconds after a superseding connect during which the first
        disconnect for that agent is ignored.
    debug_events : bool
        Log a summary of every inbound agent event at DEBUG level.
    mqtt_enabled : bool
        Run the MQTT bridge in addition to the WebSocket server.
    mqtt_host : str
        MQTT broker host.
    mqtt_port : int
        MQTT broker port.
    mqtt_topic_prefix : str
        Root topic under which agents publish and subscribe.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    """

    data_dir: Path | None = None
    database_url: str | None = None
    downloads_dir: Path | None = None
    downloads_url_prefix: str = f"/{DOWNLOADS_FOLDER}"
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    ws_heartbeat: float = 30.0
    reconnect_grace: float = 5.0
    debug_events: bool = False
    mqtt_enabled: bool = False
    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    mqtt_topic_prefix: str = "agenthub"
    mqtt_keepalive: int = 60

    @property
    def resolved_database_url(self) -> str:
        """SQLAlchemy URL the store connects to."""
        if self.database_url:
            return self.database_url
        if self.data_dir is not None:
            return f"sqlite:///{self.data_dir / DATABASE_FILE}"
        return "sqlite://"

    @property
    def resolved_downloads_dir(self) -> Path | None:
        """Directory binary payloads are written to, if any."""
        if self.downloads_dir is not None:
            return self.downloads_dir
        if self.data_dir is not None:
            return self.data_dir / DOWNLOADS_FOLDER
        return None

    @classmethod
    def from_env(cls, **overrides: Any) -> HubConfig:
        """Create configuration from environment variables.

        Reads optional ``HUB_*`` variables. Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        HubConfig
            Populated configuration.

        Raises
        ------
        HubConfigError
            A numeric variable could not be parsed.
        """
        env = os.environ

        _ENV_PATH_MAP = {
            "HUB_DATA_DIR": "data_dir",
            "HUB_DOWNLOADS_DIR": "downloads_dir",
        }
        _ENV_STR_MAP = {
            "HUB_DATABASE_URL": "database_url",
            "HUB_DOWNLOADS_URL_PREFIX": "downloads_url_prefix",
            "HUB_HOST": "host",
            "HUB_MQTT_HOST": "mqtt_host",
            "HUB_MQTT_TOPIC_PREFIX": "mqtt_topic_prefix",
        }
        _ENV_NUMBER_MAP: dict[str, tuple[str, type[int] | type[float]]] = {
            "HUB_PORT": ("port", int),
            "HUB_WS_HEARTBEAT": ("ws_heartbeat", float),
            "HUB_RECONNECT_GRACE": ("reconnect_grace", float),
            "HUB_MQTT_PORT": ("mqtt_port", int),
            "HUB_MQTT_KEEPALIVE": ("mqtt_keepalive", int),
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_PATH_MAP.items():
            val = env.get(env_key)
            if val:
                config_kwargs[field_name] = Path(val)
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val
        for env_key, (field_name, cast) in _ENV_NUMBER_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_number(env_key, val, cast)

        if "debug_events" not in overrides:
            config_kwargs["debug_events"] = _env_bool(env.get("HUB_DEBUG_EVENTS"), False)
        if "mqtt_enabled" not in overrides:
            config_kwargs["mqtt_enabled"] = _env_bool(env.get("HUB_MQTT_ENABLED"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
