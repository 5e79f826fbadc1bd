"""Database engine and session management."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import Engine, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from agenthub.exceptions import StorageIOError
from agenthub.store.tables import Base

_logger = logging.getLogger(__name__)


def create_database_engine(url: str, *, echo: bool = False) -> Engine:
    """Create the engine for *url*.

    SQLite runs on a single shared connection so an in-memory database
    (``sqlite://``) survives across sessions; other backends get a pinged
    connection pool.
    """
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        if parsed.database and parsed.database != ":memory:":
            Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=echo,
        )
    return create_engine(url, echo=echo, pool_pre_ping=True)


class Database:
    """Engine, session factory and schema for one store."""

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self._safe_url = make_url(url).render_as_string(hide_password=True)
        try:
            self._engine = create_database_engine(url, echo=echo)
        except OSError as exc:
            raise StorageIOError(f"Failed to prepare {self._safe_url}: {exc}", url=self._safe_url) from exc
        self._session_maker = sessionmaker(
            self._engine,
            expire_on_commit=False,
            autoflush=False,
        )
        try:
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as exc:
            raise StorageIOError(f"Failed to initialize {self._safe_url}: {exc}", url=self._safe_url) from exc
        _logger.debug("Opened database %s", self._safe_url)

    @property
    def url(self) -> str:
        return self._safe_url

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Session committed on success and rolled back on any error.

        Raises
        ------
        StorageIOError
            The database rejected the statement or could not be reached.
        """
        try:
            with self._session_maker.begin() as session:
                yield session
        except SQLAlchemyError as exc:
            raise StorageIOError(f"Database operation failed on {self._safe_url}: {exc}", url=self._safe_url) from exc

    def dispose(self) -> None:
        self._engine.dispose()
