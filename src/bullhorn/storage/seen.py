"""Durable record of processed event ids.

This module provides the seen-event store backing de-duplication. Several
relay connections deliver the same event, and relays replay recent events
after every reconnect, so every event passes through ``try_mark_seen``
before anything is notified.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy import func, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from bullhorn.storage.models import Base, SeenEventModel

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when the seen-event store cannot be used.

    De-duplication cannot be guaranteed without the store, so callers treat
    this as fatal.
    """


def sqlite_url(path: Path) -> str:
    """Build an aiosqlite database URL for a file path."""
    return f"sqlite+aiosqlite:///{path}"


class SeenEventStore:
    """SQLite-backed set of processed event ids.

    ``try_mark_seen`` is an atomic check-and-set: the insert and the
    membership test are a single ``INSERT ... ON CONFLICT DO NOTHING``,
    executed under a lock shared by every caller in the process.

    Example:
        ```python
        store = SeenEventStore(Path("~/.local/share/bullhorn/seen.db"))
        await store.open()
        if await store.try_mark_seen(event.id):
            ...  # first time this id is seen
        await store.close()
        ```
    """

    def __init__(self, path: Path, *, echo: bool = False) -> None:
        """Initialize the store.

        Args:
            path: SQLite database file. Parent directories are created.
            echo: Log every SQL statement.
        """
        self.path = path
        self.echo = echo
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker | None = None
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        """Whether open() has completed."""
        return self._engine is not None

    async def open(self) -> None:
        """Create the database and schema.

        Raises:
            StoreError: If the database cannot be created or opened.
        """
        if self._engine is not None:
            return

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            engine = create_async_engine(sqlite_url(self.path), echo=self.echo)
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (OSError, SQLAlchemyError) as e:
            raise StoreError(f"Unable to open seen-event store at {self.path}: {e}") from e

        self._engine = engine
        self._session_factory = async_sessionmaker(engine, expire_on_commit=False)
        logger.info("Seen-event store opened at %s", self.path)

    async def close(self) -> None:
        """Dispose of the engine."""
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.debug("Seen-event store closed")

    def _sessions(self) -> async_sessionmaker:
        if self._session_factory is None:
            raise StoreError("Seen-event store is not open")
        return self._session_factory

    async def try_mark_seen(self, event_id: str, kind: int | None = None) -> bool:
        """Mark an event id as seen.

        Args:
            event_id: Event id to record.
            kind: Event kind, stored for inspection only.

        Returns:
            True only the first time an id is marked, across restarts.

        Raises:
            StoreError: If the database write fails.
        """
        sessions = self._sessions()
        stmt = (
            sqlite_insert(SeenEventModel)
            .values(event_id=event_id, kind=kind, seen_at=datetime.now(UTC))
            .on_conflict_do_nothing(index_elements=["event_id"])
        )

        async with self._lock:
            try:
                async with sessions() as session, session.begin():
                    result = await session.execute(stmt)
            except SQLAlchemyError as e:
                raise StoreError(f"Unable to record event {event_id}: {e}") from e

        inserted = result.rowcount == 1
        if not inserted:
            logger.debug("Event %s already seen", event_id)
        return inserted

    async def has_seen(self, event_id: str) -> bool:
        """Return True if the id has been marked.

        Raises:
            StoreError: If the database read fails.
        """
        sessions = self._sessions()
        try:
            async with sessions() as session:
                result = await session.execute(
                    select(SeenEventModel.event_id).where(SeenEventModel.event_id == event_id)
                )
                return result.scalar_one_or_none() is not None
        except SQLAlchemyError as e:
            raise StoreError(f"Unable to look up event {event_id}: {e}") from e

    async def count(self) -> int:
        """Number of ids recorded."""
        sessions = self._sessions()
        try:
            async with sessions() as session:
                result = await session.execute(select(func.count()).select_from(SeenEventModel))
                return int(result.scalar_one())
        except SQLAlchemyError as e:
            raise StoreError(f"Unable to count seen events: {e}") from e

    async def __aenter__(self) -> SeenEventStore:
        await self.open()
        return self

    async def __aexit__(self, *_args: object) -> None:
        await self.close()
