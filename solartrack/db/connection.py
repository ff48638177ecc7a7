"""Database connection factory.

Provides singleton async connection to SQLite (default) with WAL mode.
Backend selection via SOLARTRACK_DB_BACKEND env var.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Union

import aiosqlite
try:
    import asyncpg
except ImportError:
    asyncpg = None  # type: ignore

from solartrack import config

logger = logging.getLogger("solartrack.db")

DB_PATH = Path(config.DB_PATH)

# Type alias for DB connection/pool
DbConnection = Union[aiosqlite.Connection, Any]  # Any to support asyncpg.Pool

_connection: DbConnection | None = None


async def get_connection() -> DbConnection:
    """Return the singleton database connection/pool, creating it if needed."""
    global _connection
    if _connection is not None:
        return _connection

    if config.DB_BACKEND == "postgres":
        if not asyncpg:
            raise ImportError("asyncpg is required for Postgres backend.")

        logger.info("Connecting to PostgreSQL")
        _connection = await asyncpg.create_pool(config.DATABASE_URL)
        return _connection

    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(str(DB_PATH))
    conn.row_factory = aiosqlite.Row
    # Enable WAL mode for better concurrent read performance
    await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA foreign_keys=ON")
    await conn.execute("PRAGMA busy_timeout=5000")
    logger.info(f"Database connection established: {DB_PATH}")
    _connection = conn
    return _connection


async def close_connection() -> None:
    """Close the database connection."""
    global _connection
    if _connection is not None:
        await _connection.close()
        _connection = None
        logger.info("Database connection closed")


@asynccontextmanager
async def transaction(db: DbConnection) -> AsyncIterator[DbConnection]:
    """Single commit/rollback boundary for one unit of work.

    Yields the handle repositories should be built on. Repository write
    methods called inside the block do not commit on their own.
    """
    if isinstance(db, aiosqlite.Connection):
        try:
            yield db
        except BaseException:
            await db.rollback()
            raise
        await db.commit()
        return

    if hasattr(db, "acquire"):
        async with db.acquire() as conn:
            async with conn.transaction():
                yield conn
        return

    async with db.transaction():
        yield db
