from __future__ import annotations

import asyncio
import base64
from collections.abc import Callable
from pathlib import Path

import pytest
from aiohttp.test_utils import TestClient, TestServer

from agenthub.config import HubConfig
from agenthub.hub import AgentHub
from agenthub.models import DeliveryOutcome
from agenthub.server import AgentServer, decode_frame, encode_frame


async def _wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def test_frames_round_trip_with_binary_as_base64() -> None:
    text = encode_frame("0xMI", {"buffer": b"\x00\x01"})
    event, data = decode_frame(text)
    assert event == "0xMI"
    assert data == {"buffer": base64.b64encode(b"\x00\x01").decode()}


@pytest.mark.parametrize("text", ["not json", "[]", '{"data": 1}', '{"event": 5}'])
def test_decode_frame_rejects_malformed(text: str) -> None:
    with pytest.raises(ValueError):
        decode_frame(text)


@pytest.mark.asyncio
async def test_agent_session_over_websocket(tmp_path: Path) -> None:
    async with AgentHub(HubConfig(data_dir=tmp_path)) as hub:
        server = AgentServer(hub)
        async with TestClient(TestServer(server.create_app())) as client:
            ws = await client.ws_connect("/agent?id=A1&model=Pixel&manf=Google&release=14")
            assert await ws.receive_json() == {"event": "welcome", "data": {}}
            await _wait_for(lambda: hub.is_online("A1"))

            agent = hub.get_agent("A1")
            assert agent is not None
            assert agent.dynamic_data["device"] == {"model": "Pixel", "manufacture": "Google", "version": "14"}
            assert agent.dynamic_data["clientIP"]

            result = await hub.send_command("A1", "sms", {"action": "ls"})
            assert result.outcome is DeliveryOutcome.SENT
            assert await ws.receive_json() == {"event": "order", "data": {"action": "ls", "type": "0xSM"}}

            await ws.send_json({"event": "0xSM", "data": {"smslist": [{"address": "+1", "body": "hi"}]}})
            await ws.send_str("garbage")
            await ws.send_json(
                {
                    "event": "0xFI",
                    "data": {"type": "download", "name": "a.txt", "buffer": base64.b64encode(b"abc").decode()},
                }
            )
            await _wait_for(lambda: len(hub.get_agent_page("A1", "downloads")) == 1)
            assert len(hub.get_agent_page("A1", "sms")) == 1

            resp = await client.get("/health")
            assert resp.status == 200
            body = await resp.json()
            assert body["status"] == "healthy"
            assert body["onlineAgents"] == 1

            await ws.close()
            await _wait_for(lambda: not hub.is_online("A1"))

            queued = await hub.send_command("A1", "wifi")
            assert queued.outcome is DeliveryOutcome.QUEUED


@pytest.mark.asyncio
async def test_missing_agent_id_is_rejected() -> None:
    async with AgentHub() as hub:
        async with TestClient(TestServer(AgentServer(hub).create_app())) as client:
            resp = await client.get("/agent")
            assert resp.status == 400
            assert hub.list_agents() == []
