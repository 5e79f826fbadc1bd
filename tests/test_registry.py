from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

import pytest

from agenthub.hub import AgentHub
from agenthub.state import SessionState

if TYPE_CHECKING:
    from tests.conftest import FakeClock, FakeTransport


class _Monotonic:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_connect_creates_then_updates_agent(
    make_transport: Callable[..., FakeTransport], clock: FakeClock
) -> None:
    async with AgentHub(clock=clock) as hub:
        session = await hub.connect(make_transport(), "A1", {"clientIP": "10.0.0.2", "device": {"model": "P7"}})
        created = hub.get_agent("A1")
        assert session.state is SessionState.ACTIVE
        assert created is not None
        assert created.is_online
        assert created.first_seen == created.last_seen
        assert created.dynamic_data["clientIP"] == "10.0.0.2"
        assert created.dynamic_data["device"]["model"] == "P7"

        await hub.connect(make_transport(), "A1", {"clientIP": "10.0.0.3"})
        updated = hub.get_agent("A1")
        assert updated is not None
        assert updated.first_seen == created.first_seen
        assert updated.last_seen > created.last_seen
        assert updated.dynamic_data["clientIP"] == "10.0.0.3"
        assert len(hub.list_agents()) == 1


@pytest.mark.asyncio
async def test_close_marks_agent_offline_and_keeps_record(make_transport: Callable[..., FakeTransport]) -> None:
    async with AgentHub() as hub:
        first = make_transport()
        await hub.connect(first, "A1")
        await hub.connect(make_transport(), "A2")

        await first.closed()

        assert not hub.is_online("A1")
        assert [a.agent_id for a in hub.list_agents_online()] == ["A2"]
        assert [a.agent_id for a in hub.list_agents_offline()] == ["A1"]
        offline = hub.get_agent("A1")
        assert offline is not None
        assert offline.is_online is False


@pytest.mark.asyncio
async def test_superseded_transport_close_is_ignored(make_transport: Callable[..., FakeTransport]) -> None:
    async with AgentHub() as hub:
        old = make_transport("old")
        new = make_transport("new")
        await hub.connect(old, "A1")
        await hub.connect(new, "A1")

        await old.closed()
        assert hub.is_online("A1")

        await new.closed()
        assert not hub.is_online("A1")


@pytest.mark.asyncio
async def test_disconnect_after_reconnect_is_suppressed_once(make_transport: Callable[..., FakeTransport]) -> None:
    monotonic = _Monotonic()
    async with AgentHub(monotonic=monotonic) as hub:
        await hub.connect(make_transport(), "A1")
        await hub.connect(make_transport(), "A1")

        assert await hub.disconnect("A1") is False
        assert hub.is_online("A1")

        assert await hub.disconnect("A1") is True
        assert not hub.is_online("A1")


@pytest.mark.asyncio
async def test_disconnect_suppression_expires(make_transport: Callable[..., FakeTransport]) -> None:
    monotonic = _Monotonic()
    async with AgentHub(monotonic=monotonic) as hub:
        await hub.connect(make_transport(), "A1")
        await hub.connect(make_transport(), "A1")

        monotonic.now += 60
        assert await hub.disconnect("A1") is True
        assert not hub.is_online("A1")


@pytest.mark.asyncio
async def test_first_connect_sets_no_suppression(make_transport: Callable[..., FakeTransport]) -> None:
    async with AgentHub() as hub:
        await hub.connect(make_transport(), "A1")
        assert await hub.disconnect("A1") is True


@pytest.mark.asyncio
async def test_stats(make_transport: Callable[..., FakeTransport]) -> None:
    async with AgentHub() as hub:
        t1 = make_transport()
        await hub.connect(t1, "A1")
        await hub.connect(make_transport(), "A2")
        await t1.closed()

        stats = hub.get_stats()

    assert stats.total_agents == 2
    assert stats.online_agents == 1
    assert stats.offline_agents == 1
    assert stats.active_pollers == 0
