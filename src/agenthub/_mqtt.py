"""Internal MQTT bridge: agents reachable through a broker.

Topic layout under ``<prefix>``:

* ``<prefix>/<id>/hello``: connect, payload is the agent metadata
* ``<prefix>/<id>/up/<kind>``: telemetry of one message kind
* ``<prefix>/<id>/status``: ``offline`` ends the session (suitable as LWT)
* ``<prefix>/<id>/down/<event>``: events published to the agent
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast

import paho.mqtt.client as mqtt

from agenthub._constants import WELCOME_EVENT
from agenthub.config import HubConfig
from agenthub.exceptions import TransportError
from agenthub.hub import AgentHub
from agenthub.transport import CallbackTransport

_logger = logging.getLogger(__name__)

CHANNEL_HELLO = "hello"
CHANNEL_UP = "up"
CHANNEL_STATUS = "status"
CHANNEL_DOWN = "down"
STATUS_OFFLINE = "offline"

Publish = Callable[[str, bytes], None]


@dataclass(frozen=True)
class MqttEvent:
    """One inbound broker message addressed to the hub."""

    agent_id: str
    channel: str
    kind: str | None
    topic: str
    payload: Any


def parse_topic(prefix: str, topic: str) -> tuple[str, str, str | None] | None:
    """Split *topic* into ``(agent_id, channel, kind)``; ``None`` if foreign."""
    parts = topic.split("/")
    head = prefix.strip("/").split("/")
    if parts[: len(head)] != head:
        return None
    rest = parts[len(head) :]
    if len(rest) == 2 and rest[1] in (CHANNEL_HELLO, CHANNEL_STATUS) and rest[0]:
        return rest[0], rest[1], None
    if len(rest) == 3 and rest[1] == CHANNEL_UP and rest[0] and rest[2]:
        return rest[0], CHANNEL_UP, rest[2]
    return None


def decode_payload(raw: bytes) -> Any:
    """JSON-decode *raw*; plain text that is not JSON is returned as a string."""
    text = raw.decode("utf-8")
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text.strip()


class MqttAgentTransport(CallbackTransport):
    """:class:`AgentTransport` publishing to an agent's ``down`` topics."""

    def __init__(self, agent_id: str, publish: Publish, *, topic_prefix: str) -> None:
        super().__init__(label=agent_id)
        self.agent_id = agent_id
        self._publish = publish
        self._topic_prefix = topic_prefix.strip("/")

    def topic_for(self, kind: str) -> str:
        return f"{self._topic_prefix}/{self.agent_id}/{CHANNEL_DOWN}/{kind}"

    async def send(self, kind: str, payload: dict[str, Any]) -> None:
        if self.is_closed:
            raise TransportError(f"MQTT session for {self.agent_id} is closed")
        try:
            body = json.dumps(payload, default=str).encode("utf-8")
            self._publish(self.topic_for(kind), body)
        except TransportError:
            raise
        except (TypeError, ValueError, OSError) as exc:
            raise TransportError(f"MQTT publish to {self.agent_id} failed: {exc}") from exc


class MqttBridge:
    """Threaded paho-mqtt runtime feeding broker traffic into an :class:`AgentHub`."""

    def __init__(
        self,
        hub: AgentHub,
        *,
        loop: asyncio.AbstractEventLoop,
        host: str,
        port: int,
        topic_prefix: str,
        keepalive: int = 60,
        client_factory: Callable[[], mqtt.Client] | None = None,
    ) -> None:
        self._hub = hub
        self._loop = loop
        self._host = host
        self._port = port
        self._prefix = topic_prefix.strip("/")
        self._keepalive = keepalive
        self._client_factory = client_factory or self._default_client
        self._client: mqtt.Client | None = None
        self._running = False
        self._transports: dict[str, MqttAgentTransport] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    @classmethod
    def from_config(cls, hub: AgentHub, config: HubConfig, *, loop: asyncio.AbstractEventLoop) -> MqttBridge:
        return cls(
            hub,
            loop=loop,
            host=config.mqtt_host,
            port=config.mqtt_port,
            topic_prefix=config.mqtt_topic_prefix,
            keepalive=config.mqtt_keepalive,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def subscriptions(self) -> list[str]:
        return [
            f"{self._prefix}/+/{CHANNEL_HELLO}",
            f"{self._prefix}/+/{CHANNEL_UP}/+",
            f"{self._prefix}/+/{CHANNEL_STATUS}",
        ]

    @staticmethod
    def _default_client() -> mqtt.Client:
        return mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            protocol=mqtt.MQTTv5,
        )

    def start(self) -> None:
        """Connect to the broker and subscribe to the agent topics."""
        self.stop()
        _logger.debug("MQTT bridge start requested host=%s port=%s prefix=%s", self._host, self._port, self._prefix)
        client = self._client_factory()
        client.enable_logger(_logger)

        def on_connect(c: mqtt.Client, _userdata: Any, _flags: Any, reason_code: Any, _properties: Any) -> None:
            if reason_code.value != 0:
                _logger.warning("MQTT connect failed: %s", reason_code)
                return
            for topic in self.subscriptions:
                c.subscribe(topic, qos=1)
            _logger.info("MQTT bridge connected to %s:%s", self._host, self._port)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            parsed = parse_topic(self._prefix, msg.topic)
            if parsed is None:
                return
            try:
                payload = decode_payload(msg.payload)
            except UnicodeDecodeError:
                _logger.warning("Dropping non UTF-8 payload on %s", msg.topic)
                return
            agent_id, channel, kind = parsed
            event = MqttEvent(agent_id=agent_id, channel=channel, kind=kind, topic=msg.topic, payload=payload)
            self._loop.call_soon_threadsafe(self._schedule, event)

        def on_disconnect(_c: mqtt.Client, _userdata: Any, _flags: Any, reason_code: Any, _properties: Any) -> None:
            if self._running:
                _logger.warning("MQTT bridge disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        client.connect(self._host, self._port, keepalive=self._keepalive)
        client.loop_start()

        self._client = client
        self._running = True

    def stop(self) -> None:
        """Stop and disconnect the MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        if client is None:
            return
        try:
            if was_running:
                client.disconnect()
        finally:
            client.loop_stop()
            _logger.debug("MQTT network loop stopped")

    def publish(self, topic: str, body: bytes) -> None:
        client = self._client
        if client is None:
            raise TransportError("MQTT bridge is not running")
        info = client.publish(topic, body, qos=1)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(f"MQTT publish on {topic} failed: {mqtt.error_string(info.rc)}")

    def _schedule(self, event: MqttEvent) -> None:
        task = self._loop.create_task(self.handle_event(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def handle_event(self, event: MqttEvent) -> None:
        """Apply one broker message to the hub."""
        try:
            if event.channel == CHANNEL_HELLO:
                await self._on_hello(event)
            elif event.channel == CHANNEL_UP:
                await self._on_up(event)
            elif event.channel == CHANNEL_STATUS:
                await self._on_status(event)
        except Exception:
            _logger.exception("Failed to handle MQTT message on %s", event.topic)

    async def _on_hello(self, event: MqttEvent) -> None:
        metadata = event.payload if isinstance(event.payload, dict) else {}
        transport = MqttAgentTransport(event.agent_id, self.publish, topic_prefix=self._prefix)
        previous = self._transports.get(event.agent_id)
        self._transports[event.agent_id] = transport
        await transport.send(WELCOME_EVENT, {})
        await self._hub.connect(transport, event.agent_id, metadata)
        if previous is not None:
            await previous.closed()

    async def _on_up(self, event: MqttEvent) -> None:
        transport = self._transports.get(event.agent_id)
        if transport is None:
            _logger.warning("Dropping %s from %s: no hello received", event.kind, event.agent_id)
            return
        await transport.dispatch(str(event.kind), event.payload)

    async def _on_status(self, event: MqttEvent) -> None:
        if event.payload != STATUS_OFFLINE:
            _logger.debug("Ignoring status %r from %s", event.payload, event.agent_id)
            return
        if not await self._hub.disconnect(event.agent_id):
            return
        transport = self._transports.pop(event.agent_id, None)
        if transport is not None:
            await transport.closed()
