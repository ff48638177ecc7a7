"""Repository factory to abstract DB backend (SQLite vs Postgres)."""
from __future__ import annotations

from typing import Any

import aiosqlite

from solartrack.db.repositories.documents import SqliteDocumentRepository
from solartrack.db.repositories.milestones import (
    SqliteMilestoneAuditRepository,
    SqliteMilestoneStateRepository,
)
from solartrack.db.repositories.projects import SqliteProjectRepository
from solartrack.db.repositories.settings import SqliteMilestoneSettingsRepository


def get_document_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteDocumentRepository(db)
    from solartrack.db.repositories.postgres.documents import PostgresDocumentRepository
    return PostgresDocumentRepository(db)


def get_milestone_state_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteMilestoneStateRepository(db)
    from solartrack.db.repositories.postgres.milestones import PostgresMilestoneStateRepository
    return PostgresMilestoneStateRepository(db)


def get_milestone_audit_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteMilestoneAuditRepository(db)
    from solartrack.db.repositories.postgres.milestones import PostgresMilestoneAuditRepository
    return PostgresMilestoneAuditRepository(db)


def get_settings_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteMilestoneSettingsRepository(db)
    from solartrack.db.repositories.postgres.settings import PostgresMilestoneSettingsRepository
    return PostgresMilestoneSettingsRepository(db)


def get_project_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteProjectRepository(db)
    from solartrack.db.repositories.postgres.projects import PostgresProjectRepository
    return PostgresProjectRepository(db)
