from __future__ import annotations

from pathlib import Path

import pytest

from agenthub.config import HubConfig
from agenthub.exceptions import HubConfigError

_HUB_VARS = (
    "HUB_DATA_DIR",
    "HUB_DATABASE_URL",
    "HUB_DOWNLOADS_DIR",
    "HUB_HOST",
    "HUB_PORT",
    "HUB_RECONNECT_GRACE",
    "HUB_DEBUG_EVENTS",
    "HUB_MQTT_ENABLED",
    "HUB_MQTT_TOPIC_PREFIX",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _HUB_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    config = HubConfig.from_env()
    assert config.data_dir is None
    assert config.port == 22222
    assert config.reconnect_grace == 5.0
    assert config.debug_events is False
    assert config.mqtt_topic_prefix == "agenthub"
    assert config.resolved_downloads_dir is None


def test_reads_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("HUB_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("HUB_PORT", "9000")
    monkeypatch.setenv("HUB_RECONNECT_GRACE", "2.5")
    monkeypatch.setenv("HUB_DEBUG_EVENTS", "yes")
    monkeypatch.setenv("HUB_MQTT_ENABLED", "1")
    monkeypatch.setenv("HUB_MQTT_TOPIC_PREFIX", "fleet")

    config = HubConfig.from_env()

    assert config.data_dir == tmp_path
    assert config.port == 9000
    assert config.reconnect_grace == 2.5
    assert config.debug_events is True
    assert config.mqtt_enabled is True
    assert config.mqtt_topic_prefix == "fleet"
    assert config.resolved_downloads_dir == tmp_path / "client_downloads"


def test_overrides_win_over_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HUB_PORT", "9000")
    monkeypatch.setenv("HUB_DEBUG_EVENTS", "true")

    config = HubConfig.from_env(port=1234, debug_events=False)

    assert config.port == 1234
    assert config.debug_events is False


def test_invalid_number_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HUB_PORT", "not-a-port")
    with pytest.raises(HubConfigError, match="HUB_PORT"):
        HubConfig.from_env()


def test_explicit_downloads_dir_wins(tmp_path: Path) -> None:
    config = HubConfig(data_dir=tmp_path / "data", downloads_dir=tmp_path / "files")
    assert config.resolved_downloads_dir == tmp_path / "files"


def test_database_url_resolution(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    assert HubConfig().resolved_database_url == "sqlite://"
    assert HubConfig(data_dir=tmp_path).resolved_database_url == f"sqlite:///{tmp_path / 'agenthub.db'}"

    monkeypatch.setenv("HUB_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("HUB_DATABASE_URL", "postgresql://hub@db/agents")
    config = HubConfig.from_env()

    assert config.database_url == "postgresql://hub@db/agents"
    assert config.resolved_database_url == "postgresql://hub@db/agents"
