"""Database utilities for the Biblio-theatron service."""

from __future__ import annotations

from sqlalchemy import MetaData, inspect, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base with consistent naming conventions."""

    metadata = MetaData()


class Database:
    """Thin wrapper managing the SQLAlchemy async engine and sessions."""

    def __init__(self, database_url: str):
        self._engine: AsyncEngine = create_async_engine(database_url, future=True)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    async def create_all(self) -> None:
        """Create database tables if they do not yet exist."""

        # Registers the ORM tables on Base.metadata.
        from . import db_models  # noqa: F401

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
            await connection.run_sync(self._apply_schema_migrations)

    @staticmethod
    def _apply_schema_migrations(sync_connection) -> None:
        """Ensure columns added after the first release exist on old tables."""

        inspector = inspect(sync_connection)
        if "media_items" not in inspector.get_table_names():
            return

        existing_columns = {
            column["name"] for column in inspector.get_columns("media_items")
        }

        def _ensure_column(name: str, ddl: str, init_sql: str | None = None) -> None:
            if name in existing_columns:
                return
            sync_connection.execute(text(ddl))
            if init_sql:
                sync_connection.execute(text(init_sql))
            existing_columns.add(name)

        _ensure_column(
            "api_id",
            "ALTER TABLE media_items ADD COLUMN api_id VARCHAR(128)",
            "UPDATE media_items SET api_id = id WHERE api_id IS NULL",
        )
        _ensure_column(
            "poster_url",
            "ALTER TABLE media_items ADD COLUMN poster_url VARCHAR(1024)",
        )
        _ensure_column(
            "description",
            "ALTER TABLE media_items ADD COLUMN description TEXT",
            "UPDATE media_items SET description = '' WHERE description IS NULL",
        )
        _ensure_column(
            "updated_at",
            "ALTER TABLE media_items ADD COLUMN updated_at DATETIME",
            "UPDATE media_items SET updated_at = created_at WHERE updated_at IS NULL",
        )

    async def dispose(self) -> None:
        """Dispose of the underlying database engine."""

        await self._engine.dispose()
