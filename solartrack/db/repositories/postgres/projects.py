"""PostgreSQL repository for project records and their progress summary."""
from __future__ import annotations

import asyncpg

from solartrack.date_utils import utc_now_iso
from solartrack.db.repositories.projects import row_to_project
from solartrack.models import ProgressSummary


class PostgresProjectRepository:
    def __init__(self, db: asyncpg.Connection):
        self.db = db

    async def get(self, project_id: str) -> dict | None:
        row = await self.db.fetchrow("SELECT * FROM projects WHERE id = $1", project_id)
        return row_to_project(row) if row else None

    async def list_ids(self, include_deleted: bool = False) -> list[str]:
        query = "SELECT id FROM projects"
        if not include_deleted:
            query += " WHERE NOT is_deleted"
        query += " ORDER BY created_at, id"
        rows = await self.db.fetch(query)
        return [row["id"] for row in rows]

    async def upsert(self, project_id: str, name: str = "", is_deleted: bool = False) -> None:
        now = utc_now_iso()
        await self.db.execute(
            """INSERT INTO projects (id, name, is_deleted, created_at, updated_at)
               VALUES ($1, $2, $3, $4, $5)
               ON CONFLICT(id) DO UPDATE SET
                 name=EXCLUDED.name, is_deleted=EXCLUDED.is_deleted, updated_at=EXCLUDED.updated_at""",
            project_id, name, is_deleted, now, now,
        )

    async def update_progress(self, project_id: str, summary: ProgressSummary, updated_at: str) -> None:
        await self.db.execute(
            """UPDATE projects SET
                 admin_progress = $1, engineering_progress = $2, overall_progress = $3,
                 admin_stage = $4, engineering_stage = $5, construction_status = $6,
                 progress_updated_at = $7, updated_at = $7
               WHERE id = $8""",
            summary.adminProgress,
            summary.engineeringProgress,
            summary.overallProgress,
            summary.adminStage,
            summary.engineeringStage,
            summary.constructionStatus,
            updated_at,
            project_id,
        )
