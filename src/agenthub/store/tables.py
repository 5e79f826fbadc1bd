"""ORM tables for agents, queued commands and telemetry.

Log kinds share one table keyed by ``(agent_id, collection)``; the unique
``(agent_id, collection, hash)`` constraint backs dedupe for hashed kinds.
Rows without a hash (GPS fixes, clipboard entries, downloads) never collide.
Snapshots hold one JSON value per ``(agent_id, name)``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware UTC datetimes on backends that store naive values."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(UTC).replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value


class Base(DeclarativeBase):
    pass


class AgentRow(Base):
    __tablename__ = "agents"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    first_seen: Mapped[datetime] = mapped_column(UTCDateTime)
    last_seen: Mapped[datetime] = mapped_column(UTCDateTime)
    is_online: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    dynamic_data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)


class QueuedCommandRow(Base):
    __tablename__ = "command_queue"

    # Autoincrement order is the replay order.
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    agent_id: Mapped[str] = mapped_column(String(255), index=True)
    uid: Mapped[str] = mapped_column(String(64))
    kind: Mapped[str] = mapped_column(String(16))
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    enqueued_at: Mapped[datetime] = mapped_column(UTCDateTime)

    __table_args__ = (
        UniqueConstraint("agent_id", "kind", name="uq_command_queue_agent_kind"),
        UniqueConstraint("agent_id", "uid", name="uq_command_queue_agent_uid"),
    )


class LogEntryRow(Base):
    __tablename__ = "log_entries"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    agent_id: Mapped[str] = mapped_column(String(255))
    collection: Mapped[str] = mapped_column(String(32))
    hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSON)

    __table_args__ = (
        UniqueConstraint("agent_id", "collection", "hash", name="uq_log_entries_agent_collection_hash"),
        Index("ix_log_entries_agent_collection", "agent_id", "collection"),
    )


class SnapshotRow(Base):
    __tablename__ = "snapshots"

    agent_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str] = mapped_column(String(32), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON)
