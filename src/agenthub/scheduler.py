"""Per-agent location polling."""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from typing import Any

from agenthub._constants import MIN_POLL_INTERVAL_SECONDS
from agenthub.exceptions import InvalidPollIntervalError, UnknownAgentError
from agenthub.models.agent import PollConfig
from agenthub.models.commands import CommandKind, CommandResult
from agenthub.state import CoreState

_logger = logging.getLogger(__name__)

SendCommand = Callable[[str, CommandKind, dict[str, Any]], Awaitable[CommandResult]]
Sleep = Callable[[float], Awaitable[Any]]


def validate_interval(seconds: float) -> int:
    """Return *seconds* as an int, or raise if it is not ``0`` or >= the minimum."""
    if not math.isfinite(seconds) or seconds < 0 or 0 < seconds < MIN_POLL_INTERVAL_SECONDS:
        raise InvalidPollIntervalError(
            f"Poll interval must be 0 or at least {MIN_POLL_INTERVAL_SECONDS} seconds, got {seconds}",
            seconds=seconds,
        )
    return int(seconds)


class PollScheduler:
    """Runs one recurring location request per connected agent.

    Poll tasks belong to the agent's :class:`~agenthub.state.AgentSession`;
    an agent without a live session has no running task, only a stored
    interval that applies on its next connect.

    Parameters
    ----------
    state : CoreState
        Shared sessions, locks and store.
    send_command : callable
        Coroutine used for each tick; goes through the normal command path
        so a tick racing a disconnect simply queues.
    sleep : callable
        Awaitable sleep, replaceable with a virtual clock in tests.
    """

    def __init__(self, state: CoreState, send_command: SendCommand, *, sleep: Sleep = asyncio.sleep) -> None:
        self._state = state
        self._send_command = send_command
        self._sleep = sleep

    def start(self, agent_id: str) -> bool:
        """(Re)start polling for a connected agent; ``True`` if a task now runs."""
        session = self._state.session(agent_id)
        if session is None:
            return False
        session.cancel_poll()
        seconds = self._state.store.agent_data(agent_id).poll_config().update_frequency_seconds
        if seconds <= 0:
            return False
        session.poll_task = asyncio.create_task(self._run(agent_id, seconds), name=f"agenthub-poll-{agent_id}")
        _logger.debug("Polling %s every %ss", agent_id, seconds)
        return True

    def stop(self, agent_id: str) -> bool:
        session = self._state.session(agent_id)
        if session is None:
            return False
        return session.cancel_poll()

    async def set_interval(self, agent_id: str, seconds: float) -> PollConfig:
        """Validate, persist and apply a new polling interval.

        Raises
        ------
        InvalidPollIntervalError
            ``seconds`` is negative or below the minimum but nonzero.
        UnknownAgentError
            No agent record exists for *agent_id*.
        """
        interval = validate_interval(seconds)
        async with self._state.lock_for(agent_id):
            if self._state.store.get_agent(agent_id) is None:
                raise UnknownAgentError("Agent doesn't exist!", agent_id=agent_id)
            config = PollConfig(update_frequency_seconds=interval)
            self._state.store.agent_data(agent_id).set_poll_config(config)
            self.start(agent_id)
        _logger.info("Poll interval for %s set to %ss", agent_id, interval)
        return config

    async def _run(self, agent_id: str, seconds: int) -> None:
        while True:
            await self._sleep(seconds)
            try:
                result = await self._send_command(agent_id, CommandKind.LOCATION, {})
            except Exception:
                _logger.exception("Location poll for %s failed", agent_id)
                continue
            if not result.success:
                _logger.warning("Location poll for %s not sent: %s", agent_id, result.message)
