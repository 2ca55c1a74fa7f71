"""Async database engine and session management."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from agentgate.config import Settings
from agentgate.storage.models import Base

_SQLITE_PREFIX = "sqlite+aiosqlite:///"


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    def __init__(self, settings: Settings) -> None:
        self.url = settings.db_url
        self.engine = create_async_engine(
            self.url,
            echo=settings.log_level == "debug",
        )
        if self.url.startswith(_SQLITE_PREFIX):
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        self.session_factory = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

    async def connect(self) -> None:
        """Create the database file's directory and any missing tables."""
        if self.url.startswith(_SQLITE_PREFIX):
            path = self.url[len(_SQLITE_PREFIX):]
            if path and path != ":memory:":
                Path(path).parent.mkdir(parents=True, exist_ok=True)
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
