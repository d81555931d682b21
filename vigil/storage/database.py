"""Async database engine and session management (SQLite via aiosqlite)."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from sqlalchemy.exc import DatabaseError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from vigil.config import Settings
from vigil.storage.models import Base

logger = logging.getLogger(__name__)


class Database:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self.engine = self._create_engine()
        self.session_factory = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

    def _create_engine(self):
        return create_async_engine(
            self._settings.db_url,
            echo=self._settings.log_level == "debug",
        )

    async def connect(self) -> None:
        """Create the schema, recovering from an unreadable database file.

        A corrupt file is moved aside and replaced by an empty database so
        the process can always cold-start without prior state.
        """
        self._settings.database_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            await self._create_schema()
        except DatabaseError:
            path = self._settings.database_path
            stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S")
            backup = path.with_name(f"{path.name}.corrupt-{stamp}")
            logger.warning("Database %s is unreadable, moving it to %s", path, backup)
            await self.engine.dispose()
            path.replace(backup)
            self.engine = self._create_engine()
            self.session_factory = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)
            await self._create_schema()

    async def _create_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def disconnect(self) -> None:
        """Dispose of connection pool."""
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield an async session with automatic cleanup."""
        async with self.session_factory() as session:
            yield session

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.disconnect()
