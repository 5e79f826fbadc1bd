from __future__ import annotations

import asyncio
import json
from typing import Any

import paho.mqtt.client as mqtt
import pytest

from agenthub._mqtt import MqttBridge, MqttEvent, decode_payload, parse_topic
from agenthub.hub import AgentHub
from agenthub.models import DeliveryOutcome
from agenthub.store import AgentCollection


class _PublishInfo:
    def __init__(self, rc: int) -> None:
        self.rc = rc


class _FakeClient:
    def __init__(self) -> None:
        self.published: list[tuple[str, Any]] = []
        self.connected_to: tuple[str, int] | None = None
        self.looping = False
        self.rc = mqtt.MQTT_ERR_SUCCESS

    def enable_logger(self, _logger: Any) -> None:
        return None

    def connect(self, host: str, port: int, keepalive: int = 60) -> None:
        self.connected_to = (host, port)

    def loop_start(self) -> None:
        self.looping = True

    def loop_stop(self) -> None:
        self.looping = False

    def disconnect(self) -> None:
        self.connected_to = None

    def publish(self, topic: str, payload: bytes, qos: int = 0) -> _PublishInfo:
        self.published.append((topic, json.loads(payload)))
        return _PublishInfo(self.rc)


def _event(agent_id: str, channel: str, payload: Any, kind: str | None = None) -> MqttEvent:
    topic = f"agenthub/{agent_id}/{channel}" + (f"/{kind}" if kind else "")
    return MqttEvent(agent_id=agent_id, channel=channel, kind=kind, topic=topic, payload=payload)


def _bridge(hub: AgentHub, client: _FakeClient) -> MqttBridge:
    bridge = MqttBridge(
        hub,
        loop=asyncio.get_running_loop(),
        host="broker",
        port=1883,
        topic_prefix="agenthub",
        client_factory=lambda: client,  # type: ignore[arg-type,return-value]
    )
    bridge.start()
    return bridge


@pytest.mark.parametrize(
    ("topic", "expected"),
    [
        ("agenthub/A1/hello", ("A1", "hello", None)),
        ("agenthub/A1/status", ("A1", "status", None)),
        ("agenthub/A1/up/0xSM", ("A1", "up", "0xSM")),
        ("agenthub/A1/down/order", None),
        ("other/A1/hello", None),
        ("agenthub//hello", None),
        ("agenthub/A1/up", None),
    ],
)
def test_parse_topic(topic: str, expected: tuple[str, str, str | None] | None) -> None:
    assert parse_topic("agenthub", topic) == expected


def test_decode_payload() -> None:
    assert decode_payload(b'{"smslist": []}') == {"smslist": []}
    assert decode_payload(b"offline") == "offline"
    assert decode_payload(b'"offline"') == "offline"


@pytest.mark.asyncio
async def test_bridge_session_lifecycle() -> None:
    client = _FakeClient()
    async with AgentHub() as hub:
        bridge = _bridge(hub, client)
        assert bridge.is_running
        assert client.connected_to == ("broker", 1883)

        await bridge.handle_event(_event("A1", "hello", {"clientIP": "10.1.1.1"}))
        assert hub.is_online("A1")
        assert client.published == [("agenthub/A1/down/welcome", {})]

        result = await hub.send_command("A1", "contacts")
        assert result.outcome is DeliveryOutcome.SENT
        assert client.published[-1] == ("agenthub/A1/down/order", {"type": "0xCO"})

        await bridge.handle_event(
            _event("A1", "up", {"contactsList": [{"phoneNo": "+1 2", "name": "Bo"}]}, kind="0xCO")
        )
        contacts = hub.store.agent_data("A1").collection(AgentCollection.CONTACTS).value()
        assert [c["phoneNo"] for c in contacts] == ["+12"]

        await bridge.handle_event(_event("A1", "status", "offline"))
        assert not hub.is_online("A1")

        bridge.stop()
        assert not bridge.is_running
        assert client.looping is False


@pytest.mark.asyncio
async def test_late_offline_status_after_reconnect_is_ignored() -> None:
    client = _FakeClient()
    async with AgentHub(monotonic=lambda: 0.0) as hub:
        bridge = _bridge(hub, client)
        await bridge.handle_event(_event("A1", "hello", {}))
        await bridge.handle_event(_event("A1", "hello", {}))

        await bridge.handle_event(_event("A1", "status", "offline"))
        assert hub.is_online("A1")

        await bridge.handle_event(_event("A1", "status", "offline"))
        assert not hub.is_online("A1")
        bridge.stop()


@pytest.mark.asyncio
async def test_publish_failure_is_reported() -> None:
    client = _FakeClient()
    async with AgentHub() as hub:
        bridge = _bridge(hub, client)
        await bridge.handle_event(_event("A1", "hello", {}))
        client.rc = mqtt.MQTT_ERR_NO_CONN

        result = await hub.send_command("A1", "wifi")

        assert result.error is not None
        assert result.error.value == "transport_failed"
        bridge.stop()


@pytest.mark.asyncio
async def test_telemetry_without_hello_is_dropped() -> None:
    async with AgentHub() as hub:
        bridge = _bridge(hub, _FakeClient())
        await bridge.handle_event(_event("A9", "up", {"smslist": []}, kind="0xSM"))
        assert hub.list_agents() == []
        bridge.stop()
