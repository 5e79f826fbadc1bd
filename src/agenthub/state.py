"""In-memory core state.

Everything that dies with the process lives here: live sessions, their poll
tasks and the per-agent locks that serialize work on one agent. A single
:class:`CoreState` is created by :class:`agenthub.hub.AgentHub` and passed to
every component; there are no module-level registries.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass

from agenthub.store import HubStore
from agenthub.transport import AgentTransport

_logger = logging.getLogger(__name__)


class SessionState(enum.StrEnum):
    """Lifecycle of an agent's live session.

    ``CONNECTING`` covers queue replay and poll start; telemetry handlers are
    attached on the transition to ``ACTIVE``.
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    ACTIVE = "active"


@dataclass(slots=True, eq=False)
class AgentSession:
    """The live transport binding for one connected agent.

    The session owns the agent's poll task; tearing the session down cancels
    it so no tick outlives the connection.
    """

    agent_id: str
    transport: AgentTransport
    state: SessionState = SessionState.CONNECTING
    # Monotonic deadline for the one-shot disconnect suppression set when
    # this session superseded another one.
    suppress_disconnect_until: float | None = None
    poll_task: asyncio.Task[None] | None = None

    def consume_disconnect_suppression(self, now: float | None = None) -> bool:
        """Clear the suppression flag; ``True`` if it was set and still in its window."""
        deadline = self.suppress_disconnect_until
        self.suppress_disconnect_until = None
        if deadline is None:
            return False
        return (time.monotonic() if now is None else now) <= deadline

    def cancel_poll(self) -> bool:
        task = self.poll_task
        self.poll_task = None
        if task is None or task.done():
            return False
        task.cancel()
        return True


class CoreState:
    """Registries shared by the session, command, telemetry and poll components."""

    def __init__(self, store: HubStore) -> None:
        self.store = store
        self.sessions: dict[str, AgentSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, agent_id: str) -> asyncio.Lock:
        """Lock serializing all session, queue and log work for *agent_id*.

        Locks live as long as the hub, including after the agent is deleted,
        so coroutines already queued on one keep sharing it with later callers.
        """
        lock = self._locks.get(agent_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[agent_id] = lock
        return lock

    def session(self, agent_id: str) -> AgentSession | None:
        return self.sessions.get(agent_id)

    def active_pollers(self) -> int:
        return sum(1 for s in self.sessions.values() if s.poll_task is not None and not s.poll_task.done())

    def teardown(self) -> None:
        """Cancel every poll task and forget every session."""
        for session in self.sessions.values():
            session.cancel_poll()
            session.state = SessionState.DISCONNECTED
        if self.sessions:
            _logger.debug("Tore down %d live sessions", len(self.sessions))
        self.sessions.clear()
