"""Database utilities for the Cinema Guru service."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import MetaData, event, inspect, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Declarative base with consistent naming conventions."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Owns the async engine and hands out sessions to the repositories."""

    def __init__(self, database_url: str):
        self._engine: AsyncEngine = create_async_engine(database_url, future=True)
        if make_url(database_url).get_backend_name() == "sqlite":
            # Relation rows cascade with their user and title only when
            # SQLite enforces foreign keys on every connection.
            event.listen(
                self._engine.sync_engine, "connect", _enable_sqlite_foreign_keys
            )
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    async def create_all(self) -> None:
        """Create missing tables and columns."""

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
            await connection.run_sync(self._upgrade_titles_table)

    @staticmethod
    def _upgrade_titles_table(sync_connection) -> None:
        """Bring catalogs created before image and ordering support up to date."""

        inspector = inspect(sync_connection)
        if "titles" not in inspector.get_table_names():
            return

        present = {column["name"] for column in inspector.get_columns("titles")}
        upgrades = (
            ("image", "ALTER TABLE titles ADD COLUMN image VARCHAR(512)", None),
            (
                "created_at",
                "ALTER TABLE titles ADD COLUMN created_at DATETIME",
                "UPDATE titles SET created_at = CURRENT_TIMESTAMP WHERE created_at IS NULL",
            ),
        )
        for column, ddl, backfill in upgrades:
            if column in present:
                continue
            sync_connection.execute(text(ddl))
            if backfill:
                sync_connection.execute(text(backfill))

    async def dispose(self) -> None:
        await self._engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session that commits on success and rolls back on error."""

        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
