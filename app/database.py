"""SQLAlchemy engine management for the durable session store."""

from __future__ import annotations

import logging

from sqlalchemy import MetaData, inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for the session store tables."""

    metadata = MetaData()


class Database:
    """Async engine plus session factory backing ``session_entries``."""

    def __init__(self, database_url: str, *, echo: bool = False):
        self._engine: AsyncEngine = create_async_engine(
            database_url, echo=echo, future=True
        )
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    @classmethod
    async def connect(cls, database_url: str, *, echo: bool = False) -> Database | None:
        """Open the database and make sure its tables exist.

        Returns ``None`` when the store cannot be initialised so callers can
        keep the session cache in memory only.
        """

        try:
            database = cls(database_url, echo=echo)
        except SQLAlchemyError as exc:
            logger.warning("Invalid session store URL %s: %s", database_url, exc)
            return None

        try:
            await database.create_all()
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("Durable session store at %s unavailable: %s", database_url, exc)
            await database.dispose()
            return None
        return database

    async def create_all(self) -> None:
        """Create database tables if they do not yet exist."""

        # Imported for its side effect of registering the mapped tables.
        from . import db_models  # noqa: F401

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
            await connection.run_sync(self._apply_schema_migrations)

    @staticmethod
    def _apply_schema_migrations(sync_connection) -> None:
        """Bring ``session_entries`` tables from older releases up to date."""

        inspector = inspect(sync_connection)
        if "session_entries" not in inspector.get_table_names():
            return

        existing_columns = {
            column["name"] for column in inspector.get_columns("session_entries")
        }
        if "expires_at" not in existing_columns:
            sync_connection.execute(
                text("ALTER TABLE session_entries ADD COLUMN expires_at FLOAT")
            )
            # Rows written before the column existed cannot be purged by
            # expiry; only the ones without a TTL are worth keeping.
            sync_connection.execute(
                text(
                    "DELETE FROM session_entries "
                    "WHERE payload NOT LIKE '%\"expiresAt\": null}'"
                )
            )

    async def dispose(self) -> None:
        await self._engine.dispose()
