"""
core/database.py -- Shared async database handle for every store.

All four collections (users, counters, allocations, sessions) live in one
database reached through one AsyncEngine. Each store module declares its own
Table on the shared `metadata` and receives the Database in its constructor;
no store opens a private engine.

Error translation:
  Database.connect() / Database.begin() wrap SQLAlchemy failures. IntegrityError
  passes through untouched so stores can map it to a domain Conflict. Every
  other SQLAlchemyError (locked database, dropped connection, missing table)
  becomes StoreUnavailable -- a retryable condition the caller must surface.

Layer rule: core/ is the kernel. No imports from api/, web/, auth/ or ledger/.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import MetaData, event, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from core.errors import StoreUnavailable

logger = logging.getLogger("benefits.db")

metadata = MetaData()


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and a busy timeout on every new SQLite connection.

    WAL lets readers proceed while a writer holds the lock; the busy timeout
    makes a second writer wait instead of failing immediately with
    "database is locked". PRAGMAs are per-connection, so this runs on connect.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def _is_memory_url(url: str) -> bool:
    return ":memory:" in url or "mode=memory" in url


class Database:
    """Owns the AsyncEngine and hands out translated connections.

    Usage:
        db = Database("sqlite+aiosqlite:///./benefits.db")
        await db.create_all()
        async with db.begin() as conn:
            await conn.execute(...)
        await db.close()
    """

    def __init__(self, url: str, engine: AsyncEngine | None = None) -> None:
        self.url = url
        self.engine: AsyncEngine = engine or self._create_engine(url)

    @staticmethod
    def _create_engine(url: str) -> AsyncEngine:
        kwargs: dict = {}
        if url.startswith("sqlite") and _is_memory_url(url):
            # One in-memory database must be shared by every checkout.
            kwargs["poolclass"] = StaticPool
        engine = create_async_engine(url, **kwargs)
        if url.startswith("sqlite"):
            event.listen(engine.sync_engine, "connect", _set_sqlite_pragmas)
        return engine

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    async def create_all(self) -> None:
        """Create any missing tables registered on the shared metadata."""
        async with self.begin() as conn:
            await conn.run_sync(metadata.create_all)

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[AsyncConnection]:
        """Read connection. Callers that write must commit themselves."""
        try:
            async with self.engine.connect() as conn:
                yield conn
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.error("Store read failed: %s", exc.__class__.__name__)
            raise StoreUnavailable("The data store is temporarily unavailable.") from exc

    @asynccontextmanager
    async def begin(self) -> AsyncIterator[AsyncConnection]:
        """Connection inside a transaction committed on clean exit."""
        try:
            async with self.engine.begin() as conn:
                yield conn
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.error("Store write failed: %s", exc.__class__.__name__)
            raise StoreUnavailable("The data store is temporarily unavailable.") from exc

    async def ping(self) -> bool:
        """Return True when a trivial query succeeds. Used by the health check."""
        try:
            async with self.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except StoreUnavailable:
            return False
        return True

    async def close(self) -> None:
        await self.engine.dispose()
