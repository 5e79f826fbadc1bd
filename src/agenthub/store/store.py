"""Agent store: the agents table plus per-agent data handles."""

from __future__ import annotations

import logging
from collections.abc import Collection

from sqlalchemy import delete, select, update

from agenthub.models.agent import Agent
from agenthub.store.agent_data import AgentData
from agenthub.store.database import Database
from agenthub.store.tables import AgentRow, LogEntryRow, QueuedCommandRow, SnapshotRow

_logger = logging.getLogger(__name__)


def _to_agent(row: AgentRow) -> Agent:
    return Agent(
        agent_id=row.id,
        first_seen=row.first_seen,
        last_seen=row.last_seen,
        is_online=row.is_online,
        dynamic_data=dict(row.dynamic_data or {}),
    )


class HubStore:
    """Persistent agent records, command queues and telemetry.

    Parameters
    ----------
    url : str
        SQLAlchemy database URL; ``sqlite://`` keeps everything in memory.
    echo : bool
        Log every SQL statement.
    """

    def __init__(self, url: str = "sqlite://", *, echo: bool = False) -> None:
        self._db = Database(url, echo=echo)

    @property
    def url(self) -> str:
        return self._db.url

    def close(self) -> None:
        self._db.dispose()

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    def get_agent(self, agent_id: str) -> Agent | None:
        with self._db.transaction() as session:
            row = session.get(AgentRow, agent_id)
            return _to_agent(row) if row is not None else None

    def list_agents(self) -> list[Agent]:
        with self._db.transaction() as session:
            rows = session.scalars(select(AgentRow).order_by(AgentRow.first_seen, AgentRow.id)).all()
            return [_to_agent(row) for row in rows]

    def save_agent(self, agent: Agent) -> None:
        """Insert or replace the record for ``agent.agent_id``."""
        with self._db.transaction() as session:
            session.merge(
                AgentRow(
                    id=agent.agent_id,
                    first_seen=agent.first_seen,
                    last_seen=agent.last_seen,
                    is_online=agent.is_online,
                    dynamic_data=dict(agent.dynamic_data),
                )
            )

    def mark_all_offline(self, *, keep: Collection[str] = ()) -> int:
        """Clear the online flag of every agent not in *keep*; returns how many changed."""
        statement = update(AgentRow).where(AgentRow.is_online.is_(True))
        if keep:
            statement = statement.where(AgentRow.id.not_in(list(keep)))
        with self._db.transaction() as session:
            return session.execute(statement.values(is_online=False)).rowcount or 0

    def remove_agent(self, agent_id: str, *, purge: bool = False) -> bool:
        """Delete the agent record; with *purge* also its logs, snapshots and queue."""
        with self._db.transaction() as session:
            removed = session.execute(delete(AgentRow).where(AgentRow.id == agent_id)).rowcount
            if purge:
                for table in (LogEntryRow, SnapshotRow, QueuedCommandRow):
                    session.execute(delete(table).where(table.agent_id == agent_id))
        if purge:
            _logger.info("Purged stored data for %s", agent_id)
        return bool(removed)

    # ------------------------------------------------------------------
    # Per-agent data
    # ------------------------------------------------------------------

    def agent_data(self, agent_id: str) -> AgentData:
        return AgentData(agent_id, self._db)
