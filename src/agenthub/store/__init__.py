"""Persistent store layer.

Agents, command queues and telemetry live in a SQLAlchemy database: one
table of agent records plus per-agent rows for queued commands, log entries
and snapshots. Every call runs in its own transaction.
"""

from agenthub.store.agent_data import (
    SNAPSHOT_COLLECTIONS,
    AgentCollection,
    AgentData,
    CommandQueue,
    LogCollection,
    SnapshotCollection,
)
from agenthub.store.database import Database, create_database_engine
from agenthub.store.store import HubStore

__all__ = [
    "SNAPSHOT_COLLECTIONS",
    "AgentCollection",
    "AgentData",
    "CommandQueue",
    "Database",
    "HubStore",
    "LogCollection",
    "SnapshotCollection",
    "create_database_engine",
]
