"""Database schema creation and versioning.

All CREATE TABLE statements for the milestone store.
Uses IF NOT EXISTS for idempotent runs.
"""
from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

import aiosqlite

if TYPE_CHECKING:
    from solartrack.milestones.catalog import MilestoneCatalog

logger = logging.getLogger("solartrack.db")

SCHEMA_VERSION = 3

_TABLES = """
-- ── Schema version tracking ────────────────────────────────────────
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TEXT NOT NULL DEFAULT (datetime('now'))
);

-- ── 1. Projects (with progress summary columns) ────────────────────
CREATE TABLE IF NOT EXISTS projects (
    id                    TEXT PRIMARY KEY,
    name                  TEXT NOT NULL DEFAULT '',
    is_deleted            INTEGER DEFAULT 0,
    admin_progress        REAL DEFAULT 0,
    engineering_progress  REAL DEFAULT 0,
    overall_progress      REAL DEFAULT 0,
    admin_stage           TEXT,
    engineering_stage     TEXT,
    construction_status   TEXT,
    progress_updated_at   TEXT,
    created_at            TEXT NOT NULL,
    updated_at            TEXT NOT NULL
);

-- ── 2. Documents (owned by document management) ────────────────────
CREATE TABLE IF NOT EXISTS documents (
    id                   TEXT PRIMARY KEY,
    project_id           TEXT NOT NULL,
    type_code            TEXT,
    type_label           TEXT,
    submitted_at         TEXT,
    issued_at            TEXT,
    attached_file_count  INTEGER DEFAULT 0,
    external_file_ref    TEXT,
    is_current           INTEGER DEFAULT 1,
    is_deleted           INTEGER DEFAULT 0,
    created_at           TEXT NOT NULL,
    updated_at           TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_documents_project ON documents(project_id, is_current, is_deleted);

-- ── 3. Milestone state per project ─────────────────────────────────
CREATE TABLE IF NOT EXISTS project_milestones (
    id                      INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id              TEXT NOT NULL,
    milestone_code          TEXT NOT NULL,
    is_completed            INTEGER DEFAULT 0,
    completed_at            TEXT,
    completed_by_actor_id   TEXT,
    note                    TEXT,
    provenance              TEXT,
    updated_at              TEXT
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_project_milestones_unique ON project_milestones(project_id, milestone_code);

-- ── 4. Settings (owned by configuration admin) ─────────────────────
CREATE TABLE IF NOT EXISTS milestone_definitions (
    code                TEXT PRIMARY KEY,
    milestone_type      TEXT NOT NULL,
    weight              REAL DEFAULT 0,
    sort_order          INTEGER DEFAULT 0,
    is_active           INTEGER DEFAULT 1,
    display_name        TEXT DEFAULT '',
    notify_on_complete  INTEGER DEFAULT 0,
    notify_recipients   TEXT DEFAULT '[]'
);

CREATE TABLE IF NOT EXISTS progress_settings (
    setting_key    TEXT PRIMARY KEY,
    setting_value  TEXT NOT NULL,
    updated_at     TEXT NOT NULL DEFAULT (datetime('now'))
);

-- ── 5. Audit log ───────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS milestone_audit_log (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id      TEXT NOT NULL,
    milestone_code  TEXT NOT NULL,
    actor_id        TEXT,
    action          TEXT NOT NULL,
    old_value       TEXT,
    new_value       TEXT,
    created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_audit_project ON milestone_audit_log(project_id, created_at);
"""


async def _column_exists(db: aiosqlite.Connection, table: str, column: str) -> bool:
    async with db.execute(f"PRAGMA table_info({table})") as cur:
        rows = await cur.fetchall()
    return any(row[1] == column for row in rows)


async def _ensure_column(db: aiosqlite.Connection, table: str, column: str, definition: str) -> None:
    if await _column_exists(db, table, column):
        return
    await db.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")


async def seed_catalog(db: aiosqlite.Connection, catalog: MilestoneCatalog) -> None:
    """Insert catalog definitions and weights that are not stored yet.

    Existing rows are admin-owned and never overwritten.
    """
    for definition in catalog.definitions:
        await db.execute(
            """INSERT OR IGNORE INTO milestone_definitions
               (code, milestone_type, weight, sort_order, is_active, display_name,
                notify_on_complete, notify_recipients)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                definition.code,
                definition.milestoneType.value,
                definition.weight,
                definition.sortOrder,
                1 if definition.isActive else 0,
                definition.displayName,
                1 if definition.notifyOnComplete else 0,
                json.dumps(definition.notifyRecipients),
            ),
        )
    await db.execute(
        "INSERT OR IGNORE INTO progress_settings (setting_key, setting_value) VALUES (?, ?)",
        ("weights", catalog.weights.model_dump_json()),
    )
    await db.commit()


async def run_migrations(db: aiosqlite.Connection, catalog: MilestoneCatalog | None = None) -> None:
    """Create all tables and seed catalog settings. Idempotent."""
    try:
        async with db.execute("SELECT MAX(version) FROM schema_version") as cur:
            row = await cur.fetchone()
            current_version = row[0] if row and row[0] else 0
    except aiosqlite.Error:
        current_version = 0

    if current_version >= SCHEMA_VERSION:
        logger.info(f"Schema is up to date (version {current_version})")
    else:
        logger.info(f"Running migrations: {current_version} → {SCHEMA_VERSION}")
        await db.executescript(_TABLES)

        # Rows written before provenance was tracked keep NULL and fall back to note markers.
        await _ensure_column(db, "project_milestones", "provenance", "TEXT")
        await _ensure_column(db, "projects", "construction_status", "TEXT")

        await db.execute(
            "INSERT INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
        await db.commit()
        logger.info(f"Migrations complete, schema version {SCHEMA_VERSION}")

    if catalog is not None:
        await seed_catalog(db, catalog)
