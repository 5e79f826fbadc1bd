"""Session registry: connect and disconnect transitions per agent."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import TYPE_CHECKING, Any

from agenthub.exceptions import StorageIOError
from agenthub.models._base import utcnow
from agenthub.models.agent import Agent, AgentMetadata
from agenthub.state import AgentSession, CoreState, SessionState
from agenthub.transport import AgentTransport

if TYPE_CHECKING:
    from agenthub.dispatch import CommandDispatcher
    from agenthub.ingestion import TelemetryIngestor
    from agenthub.scheduler import PollScheduler

_logger = logging.getLogger(__name__)


class SessionRegistry:
    """Keeps exactly one live transport per agent id.

    ``connect`` runs, under the agent lock: session registration, agent
    record upsert, queue replay, poll (re)start and telemetry handler
    attachment, in that order. The session only becomes ``ACTIVE`` once all
    of them are done.
    """

    def __init__(
        self,
        state: CoreState,
        dispatcher: CommandDispatcher,
        scheduler: PollScheduler,
        ingestor: TelemetryIngestor,
        *,
        reconnect_grace: float = 5.0,
        clock: Callable[[], datetime] = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._state = state
        self._dispatcher = dispatcher
        self._scheduler = scheduler
        self._ingestor = ingestor
        self._reconnect_grace = reconnect_grace
        self._clock = clock
        self._monotonic = monotonic

    async def connect(
        self,
        transport: AgentTransport,
        agent_id: str,
        metadata: AgentMetadata | Mapping[str, Any] | None = None,
    ) -> AgentSession:
        """Bind *transport* to *agent_id*, superseding any live session.

        Raises
        ------
        StorageIOError
            The agent record could not be written; no session is kept.
        """
        if not isinstance(metadata, AgentMetadata):
            metadata = AgentMetadata.model_validate(dict(metadata or {}))

        async with self._state.lock_for(agent_id):
            now = self._monotonic()
            session = AgentSession(agent_id=agent_id, transport=transport)
            previous = self._state.sessions.get(agent_id)
            if previous is not None:
                previous.cancel_poll()
                previous.state = SessionState.DISCONNECTED
                session.suppress_disconnect_until = now + self._reconnect_grace
                _logger.info("%s reconnected; superseding the previous session", agent_id)
            self._state.sessions[agent_id] = session

            try:
                self._upsert_agent(agent_id, metadata)
            except StorageIOError:
                self._state.sessions.pop(agent_id, None)
                session.state = SessionState.DISCONNECTED
                raise

            async def _closed() -> None:
                await self.disconnect(agent_id, transport)

            transport.on_close(_closed)

            await self._dispatcher.replay_queue(agent_id)
            self._scheduler.start(agent_id)
            self._ingestor.attach(agent_id, transport)
            session.state = SessionState.ACTIVE

        _logger.info("%s connected", agent_id)
        return session

    def _upsert_agent(self, agent_id: str, metadata: AgentMetadata) -> None:
        now = self._clock()
        existing = self._state.store.get_agent(agent_id)
        if existing is None:
            agent = Agent(
                agent_id=agent_id,
                first_seen=now,
                last_seen=now,
                is_online=True,
                dynamic_data=metadata.to_document(),
            )
            self._state.store.save_agent(agent)
            _logger.info("New agent registered: %s", agent_id)
            return
        updated = existing.model_copy(
            update={"last_seen": now, "is_online": True, "dynamic_data": metadata.to_document()}
        )
        self._state.store.save_agent(updated)

    async def disconnect(self, agent_id: str, transport: AgentTransport | None = None) -> bool:
        """Tear down *agent_id*'s session; returns ``True`` if one was removed.

        A close reported by a superseded transport is ignored. A disconnect
        without a transport (a broker status message, for example) is
        ignored once if it arrives within the grace window after a
        superseding connect.
        """
        async with self._state.lock_for(agent_id):
            session = self._state.sessions.get(agent_id)
            if session is None:
                _logger.debug("Disconnect for %s without a live session", agent_id)
                return False
            if transport is not None and session.transport is not transport:
                _logger.debug("Ignoring close of a superseded transport for %s", agent_id)
                return False
            if transport is None and session.consume_disconnect_suppression(self._monotonic()):
                _logger.info("Ignoring disconnect of %s right after it reconnected", agent_id)
                return False

            session.suppress_disconnect_until = None
            session.cancel_poll()
            session.state = SessionState.DISCONNECTED
            del self._state.sessions[agent_id]
            self._mark_offline(agent_id)

        _logger.info("%s disconnected", agent_id)
        return True

    def _mark_offline(self, agent_id: str) -> None:
        existing = self._state.store.get_agent(agent_id)
        if existing is None:
            return
        updated = existing.model_copy(update={"last_seen": self._clock(), "is_online": False})
        try:
            self._state.store.save_agent(updated)
        except StorageIOError:
            _logger.exception("Failed to mark %s offline", agent_id)

    def reset_online_flags(self) -> int:
        """Mark every stored agent offline; used when a hub starts with no sessions."""
        return self._state.store.mark_all_offline(keep=self._state.sessions.keys())

    def is_online(self, agent_id: str) -> bool:
        return agent_id in self._state.sessions

    def list_all(self) -> list[Agent]:
        return self._state.store.list_agents()

    def list_online(self) -> list[Agent]:
        return [agent for agent in self.list_all() if agent.is_online]

    def list_offline(self) -> list[Agent]:
        return [agent for agent in self.list_all() if not agent.is_online]
