# tracedock/db/session.py
"""
Database engine, session factory and schema initialization.

We use:
- SQLAlchemy async engine + AsyncSession
- aiosqlite (SQLite file), asyncpg (PostgreSQL) or aiomysql (MySQL)

Key points:
- One `Database` is built at startup from Settings and handed to the
  repository; nothing here is a module-level singleton, so tests can build
  as many isolated databases as they need.
- `init()` creates tables, seeds default settings, applies SQLite pragmas
  and probes optional capabilities (FTS5, JSON1).
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import event, select, text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tracedock.core.config import Settings
from tracedock.db.dialects import Dialect, build_async_url, get_dialect
from tracedock.db.fulltext import setup_fulltext
from tracedock.db.models import Base, SettingRecord

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS = {
    "retention.logs_days": "7",
    "retention.traces_days": "14",
    "retention.spans_days": "14",
    "retention.error_groups_days": "30",
    "cleanup.enabled": "true",
    "cleanup.interval_hours": "1",
}


def _apply_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    """
    Pragmas rationale:
    - journal_mode=WAL: readers don't block the writer (cleanup vs ingest)
    - synchronous=NORMAL: good balance for durability vs speed
    - foreign_keys=ON: enforce spans.trace_id -> traces.id
    - busy_timeout: wait for the write lock instead of failing immediately
    """
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


class Database:
    """Owns the async engine and session factory for one storage backend."""

    def __init__(self, dialect: Dialect, url: str):
        self.dialect = dialect
        self.url = url

        self._sqlite_file = False
        engine_kwargs = {"future": True}
        if dialect.kind == "sqlite":
            if ":memory:" in url or url.endswith(":///"):
                # A single shared connection, otherwise each session sees its own empty DB.
                engine_kwargs["poolclass"] = StaticPool
                engine_kwargs["connect_args"] = {"check_same_thread": False}
            else:
                self._sqlite_file = True
        else:
            engine_kwargs["pool_pre_ping"] = True

        self.engine: AsyncEngine = create_async_engine(url, **engine_kwargs)

        if dialect.kind == "sqlite":
            event.listen(self.engine.sync_engine, "connect", _apply_sqlite_pragmas)

        # Session factory used by the repository.
        self.sessionmaker = async_sessionmaker(
            bind=self.engine,
            expire_on_commit=False,
            class_=AsyncSession,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        dialect = get_dialect(settings.DB_TYPE)
        url = build_async_url(dialect, settings.database_target)
        return cls(dialect, url)

    @staticmethod
    def _ensure_sqlite_dir(url: str) -> None:
        path = url.split(":///", 1)[-1]
        directory = os.path.dirname(path)
        if directory and not os.path.isdir(directory):
            os.makedirs(directory, exist_ok=True)

    async def init(self) -> None:
        """Create schema, seed default settings and probe optional capabilities."""
        if self._sqlite_file:
            self._ensure_sqlite_dir(self.url)

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

            if self.dialect.kind == "sqlite":
                has_fts = await conn.run_sync(setup_fulltext)
                has_json = await self._probe_sqlite_json(conn)
                self.dialect = self.dialect.with_capabilities(
                    supports_fulltext=has_fts and self.dialect.supports_fulltext,
                    supports_json_query=has_json,
                )

        await self._seed_settings()
        logger.info(
            "Database ready (engine=%s fulltext=%s json_query=%s)",
            self.dialect.kind,
            self.dialect.supports_fulltext,
            self.dialect.supports_json_query,
        )

    @staticmethod
    async def _probe_sqlite_json(conn) -> bool:
        try:
            await conn.execute(text("SELECT json_extract('{\"a\": 1}', '$.a')"))
        except OperationalError:
            logger.warning("SQLite JSON1 unavailable; metadata filters use substring match")
            return False
        return True

    async def _seed_settings(self) -> None:
        """Insert default settings that are missing, never overwriting existing values."""
        async with self.session() as session:
            existing = set((await session.execute(select(SettingRecord.key))).scalars().all())
            missing = [
                SettingRecord(key=key, value=value)
                for key, value in DEFAULT_SETTINGS.items()
                if key not in existing
            ]
            if not missing:
                return
            session.add_all(missing)
            try:
                await session.commit()
            except IntegrityError:
                # Another server process sharing this database seeded first.
                await session.rollback()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with self.sessionmaker() as session:
            yield session

    @asynccontextmanager
    async def autocommit_connection(self):
        """Connection outside any transaction (VACUUM cannot run inside one)."""
        async with self.engine.connect() as conn:
            yield await conn.execution_options(isolation_level="AUTOCOMMIT")

    async def dispose(self) -> None:
        await self.engine.dispose()


def build_database(settings: Settings, url: Optional[str] = None) -> Database:
    """Construct a Database for the configured engine (optionally overriding the URL)."""
    if url is None:
        return Database.from_settings(settings)
    return Database(get_dialect(settings.DB_TYPE), url)
