"""Database session and engine management."""
from __future__ import annotations

from collections.abc import AsyncGenerator, Mapping, Sequence
from typing import Any

from sqlalchemy import Table, text
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.sql.dml import Insert

from certportal.core.config import get_settings
from certportal.models.base import Base

_settings = get_settings()

_async_engine: AsyncEngine = create_async_engine(_settings.db_url, echo=False, future=True)
_async_session_factory = async_sessionmaker(_async_engine, expire_on_commit=False)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Provide an async SQLAlchemy session for request handling."""

    async with _async_session_factory() as session:
        yield session


async def dispose_engine() -> None:
    """Dispose the underlying engine (used in test teardown)."""

    await _async_engine.dispose()


async def check_connection() -> None:
    """Verify that the database connection is reachable."""

    async with _async_engine.connect() as connection:
        await connection.execute(text("SELECT 1"))


async def init_models() -> None:
    """Create all tables that do not exist yet (local runs and tests)."""

    async with _async_engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)


async def drop_models() -> None:
    async with _async_engine.begin() as connection:
        await connection.run_sync(Base.metadata.drop_all)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the underlying async session factory."""

    return _async_session_factory


def upsert(
    session: AsyncSession,
    table: Table,
    values: Mapping[str, Any],
    *,
    conflict_columns: Sequence[str],
    update: Mapping[str, Any] | None = None,
) -> Insert:
    """Build a single-statement insert-or-update for the session's dialect.

    ``update`` maps column names to values or SQL expressions applied when a row
    with the same ``conflict_columns`` already exists. An empty or missing
    ``update`` turns the statement into an insert-or-ignore.
    """

    dialect = session.get_bind().dialect.name
    if dialect == "mysql":
        stmt = mysql.insert(table).values(**values)
        if update:
            return stmt.on_duplicate_key_update(**update)
        return stmt.prefix_with("IGNORE")
    if dialect == "postgresql":
        pg_stmt = postgresql.insert(table).values(**values)
        if update:
            return pg_stmt.on_conflict_do_update(index_elements=list(conflict_columns), set_=dict(update))
        return pg_stmt.on_conflict_do_nothing(index_elements=list(conflict_columns))
    if dialect == "sqlite":
        lite_stmt = sqlite.insert(table).values(**values)
        if update:
            return lite_stmt.on_conflict_do_update(index_elements=list(conflict_columns), set_=dict(update))
        return lite_stmt.on_conflict_do_nothing(index_elements=list(conflict_columns))
    raise NotImplementedError(f"Atomic upsert is not supported for dialect {dialect!r}.")
