"""Database utilities for the My Movies service."""

from __future__ import annotations

import logging
import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from sqlalchemy import MetaData, event, inspect, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from .errors import (
    DatabaseError,
    DuplicateError,
    MyMoviesError,
    UnavailableError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_UNIQUE_RE = re.compile(r"UNIQUE constraint failed: ([\w.]+)")


class Base(DeclarativeBase):
    """Declarative base with consistent naming conventions."""

    metadata = MetaData()


class Database:
    """Thin wrapper managing the SQLAlchemy async engine and sessions."""

    def __init__(
        self,
        database_url: str,
        *,
        pool_size: int = 5,
        pool_timeout: float = 3.0,
    ):
        url = make_url(database_url)
        engine_kwargs: dict[str, object] = {"future": True}
        in_memory = url.database in (None, "", ":memory:")
        if not in_memory:
            engine_kwargs.update(
                pool_size=pool_size, max_overflow=0, pool_timeout=pool_timeout
            )
            if url.get_backend_name() == "sqlite":
                Path(url.database).expanduser().parent.mkdir(
                    parents=True, exist_ok=True
                )
        self._engine: AsyncEngine = create_async_engine(database_url, **engine_kwargs)
        if url.get_backend_name() == "sqlite":
            event.listen(self._engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_all(self) -> None:
        """Create database tables if they do not yet exist."""

        # Import ensures every mapped table is registered on the metadata.
        from . import db_models  # noqa: F401

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
            await connection.run_sync(self._apply_schema_migrations)
            await connection.execute(
                text(
                    "INSERT OR IGNORE INTO settings (key, value, description, created_at, updated_at) "
                    "VALUES ('tmdb_api_key', '', "
                    "'API key for The Movie Database (themoviedb.org)', "
                    "CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)"
                )
            )

    @staticmethod
    def _apply_schema_migrations(sync_connection) -> None:
        """Ensure newly introduced columns are available on existing tables."""

        inspector = inspect(sync_connection)
        table_names = set(inspector.get_table_names())

        def _column_adder(table: str):
            existing_columns = {
                column["name"] for column in inspector.get_columns(table)
            }

            def _ensure_column(
                name: str, ddl: str, init_sql: str | None = None
            ) -> None:
                if name in existing_columns:
                    return
                logger.info("Adding column %s.%s", table, name)
                sync_connection.execute(text(ddl))
                if init_sql:
                    sync_connection.execute(text(init_sql))
                existing_columns.add(name)

            return _ensure_column

        if "users" in table_names:
            _ensure_column = _column_adder("users")
            _ensure_column(
                "reset_token", "ALTER TABLE users ADD COLUMN reset_token VARCHAR(255)"
            )
            _ensure_column(
                "reset_token_expires",
                "ALTER TABLE users ADD COLUMN reset_token_expires DATETIME",
            )
            _ensure_column(
                "language",
                "ALTER TABLE users ADD COLUMN language VARCHAR(16) DEFAULT 'de-DE'",
                "UPDATE users SET language = 'de-DE' WHERE language IS NULL",
            )
            _ensure_column(
                "include_adult",
                "ALTER TABLE users ADD COLUMN include_adult BOOLEAN DEFAULT 0",
                "UPDATE users SET include_adult = 0 WHERE include_adult IS NULL",
            )
            _ensure_column(
                "theme",
                "ALTER TABLE users ADD COLUMN theme VARCHAR(32) DEFAULT 'dark'",
                "UPDATE users SET theme = 'dark' WHERE theme IS NULL",
            )
            _ensure_column(
                "card_size",
                "ALTER TABLE users ADD COLUMN card_size VARCHAR(16) DEFAULT 'medium'",
                "UPDATE users SET card_size = 'medium' WHERE card_size IS NULL",
            )

        if "movies" in table_names:
            _ensure_column = _column_adder("movies")
            _ensure_column(
                "poster_path", "ALTER TABLE movies ADD COLUMN poster_path VARCHAR(512)"
            )
            _ensure_column(
                "spoken_languages",
                "ALTER TABLE movies ADD COLUMN spoken_languages TEXT",
            )

    async def dispose(self) -> None:
        """Dispose of the underlying database engine."""

        await self._engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Provide a transactional scope around a series of operations."""

        async with scoped_session(self.session_factory) as session:
            yield session


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def translate_database_error(exc: SQLAlchemyError) -> MyMoviesError:
    """Map a SQLAlchemy failure onto the domain error taxonomy."""

    if isinstance(exc, PoolTimeoutError):
        return UnavailableError()
    if isinstance(exc, IntegrityError):
        detail = str(exc.orig) if exc.orig is not None else str(exc)
        match = _UNIQUE_RE.search(detail)
        if match:
            return DuplicateError(match.group(1).rsplit(".", 1)[-1])
        return ValidationError(detail)
    return DatabaseError(str(exc))


@asynccontextmanager
async def scoped_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Open a session whose store failures surface as domain errors."""

    try:
        async with session_factory() as session:
            yield session
    except SQLAlchemyError as exc:
        logger.debug("Database operation failed: %s", exc)
        raise translate_database_error(exc) from exc
