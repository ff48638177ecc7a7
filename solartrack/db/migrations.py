"""Database migration dispatcher.

Routes migration calls to the appropriate backend implementation (SQLite or Postgres).
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import aiosqlite
try:
    import asyncpg
except ImportError:
    asyncpg = None

from solartrack.db import postgres_migrations, sqlite_migrations

if TYPE_CHECKING:
    from solartrack.milestones.catalog import MilestoneCatalog

logger = logging.getLogger("solartrack.db")


async def run_migrations(db: Any, catalog: MilestoneCatalog | None = None) -> None:
    """Run migrations on the provided database connection.

    When a catalog is given its definitions and default weights are seeded
    into the settings tables.
    """
    if isinstance(db, aiosqlite.Connection):
        logger.info("Running SQLite migrations...")
        await sqlite_migrations.run_migrations(db, catalog)
        return

    if asyncpg and isinstance(db, (asyncpg.Pool, asyncpg.Connection)):
        logger.info("Running Postgres migrations...")
        await postgres_migrations.run_migrations(db, catalog)
        return

    logger.warning(f"Unknown database connection type: {type(db)}")
