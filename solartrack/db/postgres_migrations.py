"""PostgreSQL schema creation and versioning.

Mirrors sqlite_migrations with Postgres types.
"""
from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from solartrack.milestones.catalog import MilestoneCatalog

logger = logging.getLogger("solartrack.db")

SCHEMA_VERSION = 3

_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS projects (
    id                    TEXT PRIMARY KEY,
    name                  TEXT NOT NULL DEFAULT '',
    is_deleted            BOOLEAN DEFAULT FALSE,
    admin_progress        DOUBLE PRECISION DEFAULT 0,
    engineering_progress  DOUBLE PRECISION DEFAULT 0,
    overall_progress      DOUBLE PRECISION DEFAULT 0,
    admin_stage           TEXT,
    engineering_stage     TEXT,
    construction_status   TEXT,
    progress_updated_at   TEXT,
    created_at            TEXT NOT NULL,
    updated_at            TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS documents (
    id                   TEXT PRIMARY KEY,
    project_id           TEXT NOT NULL,
    type_code            TEXT,
    type_label           TEXT,
    submitted_at         TEXT,
    issued_at            TEXT,
    attached_file_count  INTEGER DEFAULT 0,
    external_file_ref    TEXT,
    is_current           BOOLEAN DEFAULT TRUE,
    is_deleted           BOOLEAN DEFAULT FALSE,
    created_at           TEXT NOT NULL,
    updated_at           TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_documents_project ON documents(project_id, is_current, is_deleted);

CREATE TABLE IF NOT EXISTS project_milestones (
    id                      SERIAL PRIMARY KEY,
    project_id              TEXT NOT NULL,
    milestone_code          TEXT NOT NULL,
    is_completed            BOOLEAN DEFAULT FALSE,
    completed_at            TEXT,
    completed_by_actor_id   TEXT,
    note                    TEXT,
    provenance              TEXT,
    updated_at              TEXT
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_project_milestones_unique ON project_milestones(project_id, milestone_code);

CREATE TABLE IF NOT EXISTS milestone_definitions (
    code                TEXT PRIMARY KEY,
    milestone_type      TEXT NOT NULL,
    weight              DOUBLE PRECISION DEFAULT 0,
    sort_order          INTEGER DEFAULT 0,
    is_active           BOOLEAN DEFAULT TRUE,
    display_name        TEXT DEFAULT '',
    notify_on_complete  BOOLEAN DEFAULT FALSE,
    notify_recipients   JSONB DEFAULT '[]'
);

CREATE TABLE IF NOT EXISTS progress_settings (
    setting_key    TEXT PRIMARY KEY,
    setting_value  TEXT NOT NULL,
    updated_at     TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS milestone_audit_log (
    id              SERIAL PRIMARY KEY,
    project_id      TEXT NOT NULL,
    milestone_code  TEXT NOT NULL,
    actor_id        TEXT,
    action          TEXT NOT NULL,
    old_value       JSONB,
    new_value       JSONB,
    created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_audit_project ON milestone_audit_log(project_id, created_at);

ALTER TABLE project_milestones ADD COLUMN IF NOT EXISTS provenance TEXT;
ALTER TABLE projects ADD COLUMN IF NOT EXISTS construction_status TEXT;
"""


async def seed_catalog(db: Any, catalog: MilestoneCatalog) -> None:
    """Insert catalog definitions and weights that are not stored yet."""
    for definition in catalog.definitions:
        await db.execute(
            """INSERT INTO milestone_definitions
               (code, milestone_type, weight, sort_order, is_active, display_name,
                notify_on_complete, notify_recipients)
               VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb)
               ON CONFLICT (code) DO NOTHING""",
            definition.code,
            definition.milestoneType.value,
            definition.weight,
            definition.sortOrder,
            definition.isActive,
            definition.displayName,
            definition.notifyOnComplete,
            json.dumps(definition.notifyRecipients),
        )
    await db.execute(
        """INSERT INTO progress_settings (setting_key, setting_value) VALUES ($1, $2)
           ON CONFLICT (setting_key) DO NOTHING""",
        "weights",
        catalog.weights.model_dump_json(),
    )


async def run_migrations(db: Any, catalog: MilestoneCatalog | None = None) -> None:
    """Create all tables on a pool or connection. Idempotent."""
    current_version = 0
    exists = await db.fetchval("SELECT to_regclass('public.schema_version') IS NOT NULL")
    if exists:
        current_version = await db.fetchval("SELECT COALESCE(MAX(version), 0) FROM schema_version") or 0

    if current_version >= SCHEMA_VERSION:
        logger.info(f"Schema is up to date (version {current_version})")
    else:
        logger.info(f"Running Postgres migrations: {current_version} → {SCHEMA_VERSION}")
        await db.execute(_TABLES)
        await db.execute("INSERT INTO schema_version (version) VALUES ($1)", SCHEMA_VERSION)
        logger.info(f"Migrations complete, schema version {SCHEMA_VERSION}")

    if catalog is not None:
        await seed_catalog(db, catalog)
