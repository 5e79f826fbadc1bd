from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from agenthub.exceptions import TransportError
from agenthub.transport import CallbackTransport


class FakeTransport(CallbackTransport):
    """Records every event sent to the agent."""

    def __init__(self, label: str = "fake", *, fail: bool = False, yielding: bool = False) -> None:
        super().__init__(label=label)
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self.fail = fail
        self.yielding = yielding

    async def send(self, kind: str, payload: dict[str, Any]) -> None:
        if self.yielding:
            await asyncio.sleep(0)
        if self.fail:
            raise TransportError("link down")
        self.sent.append((kind, payload))

    def orders(self) -> list[dict[str, Any]]:
        return [payload for kind, payload in self.sent if kind == "order"]


class FakeClock:
    """Wall clock advancing one second per call."""

    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


class VirtualSleep:
    """Sleep that only returns when the test advances virtual time."""

    def __init__(self) -> None:
        self.elapsed = 0.0
        self._sleepers: list[tuple[float, asyncio.Future[None]]] = []

    async def __call__(self, seconds: float) -> None:
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._sleepers.append((self.elapsed + seconds, future))
        await future

    @property
    def pending(self) -> int:
        return sum(1 for _, f in self._sleepers if not f.done())

    async def advance(self, seconds: float) -> None:
        for _ in range(20):
            await asyncio.sleep(0)
        target = self.elapsed + seconds
        while True:
            due = [(t, f) for t, f in self._sleepers if t <= target and not f.done()]
            if not due:
                break
            deadline = min(t for t, _ in due)
            self.elapsed = deadline
            for t, f in due:
                if t == deadline:
                    f.set_result(None)
            self._sleepers = [(t, f) for t, f in self._sleepers if not f.done()]
            for _ in range(20):
                await asyncio.sleep(0)
        self.elapsed = target


@pytest.fixture
def make_transport() -> Callable[..., FakeTransport]:
    return FakeTransport


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def virtual_sleep() -> VirtualSleep:
    return VirtualSleep()
