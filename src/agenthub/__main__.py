"""Run the agent hub server.

Usage:
    python -m agenthub --data-dir ./data --port 22222

Every option falls back to the matching ``HUB_*`` environment variable.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from pathlib import Path
from typing import Any

from agenthub._mqtt import MqttBridge
from agenthub.config import HubConfig
from agenthub.exceptions import AgentHubError
from agenthub.hub import AgentHub
from agenthub.server import AgentServer

_logger = logging.getLogger("agenthub")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="agenthub", description="Agent control plane server")
    parser.add_argument("--host", help="Interface to bind (HUB_HOST)")
    parser.add_argument("--port", type=int, help="Port to listen on (HUB_PORT)")
    parser.add_argument("--data-dir", type=Path, help="Directory for the SQLite database (HUB_DATA_DIR)")
    parser.add_argument("--database-url", help="SQLAlchemy database URL (HUB_DATABASE_URL)")
    parser.add_argument("--downloads-dir", type=Path, help="Directory for received files (HUB_DOWNLOADS_DIR)")
    parser.add_argument("--debug-events", action="store_true", default=None, help="Log every inbound event")
    parser.add_argument("--mqtt", dest="mqtt_enabled", action="store_true", default=None, help="Run the MQTT bridge")
    parser.add_argument("--mqtt-host", help="MQTT broker host (HUB_MQTT_HOST)")
    parser.add_argument("--mqtt-port", type=int, help="MQTT broker port (HUB_MQTT_PORT)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable DEBUG logging")
    return parser


def config_from_args(args: argparse.Namespace) -> HubConfig:
    """Merge command-line options over the environment."""
    fields = (
        "host",
        "port",
        "data_dir",
        "database_url",
        "downloads_dir",
        "debug_events",
        "mqtt_enabled",
        "mqtt_host",
        "mqtt_port",
    )
    overrides: dict[str, Any] = {}
    for name in fields:
        value = getattr(args, name)
        if value is not None:
            overrides[name] = value
    return HubConfig.from_env(**overrides)


async def serve(config: HubConfig) -> None:
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    async with AgentHub(config) as hub:
        server = AgentServer(hub, config)
        await server.start()
        bridge: MqttBridge | None = None
        if config.mqtt_enabled:
            bridge = MqttBridge.from_config(hub, config, loop=loop)
            bridge.start()
        try:
            await stop.wait()
        finally:
            _logger.info("Shutting down")
            if bridge is not None:
                bridge.stop()
            await server.stop()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    try:
        config = config_from_args(args)
        asyncio.run(serve(config))
    except AgentHubError as exc:
        _logger.error("%s", exc)
        return 1
    except OSError as exc:
        _logger.error("Could not start server: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
