"""Repository package for database access."""

from .documents import SqliteDocumentRepository
from .milestones import SqliteMilestoneAuditRepository, SqliteMilestoneStateRepository
from .projects import SqliteProjectRepository
from .settings import SqliteMilestoneSettingsRepository

__all__ = [
    "SqliteDocumentRepository",
    "SqliteMilestoneStateRepository",
    "SqliteMilestoneAuditRepository",
    "SqliteProjectRepository",
    "SqliteMilestoneSettingsRepository",
]
