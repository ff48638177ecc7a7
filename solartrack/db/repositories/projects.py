"""SQLite repository for project records and their progress summary."""
from __future__ import annotations

from typing import Any

import aiosqlite

from solartrack.date_utils import utc_now_iso
from solartrack.models import ProgressSummary


def row_to_project(row: Any) -> dict:
    data = dict(row)
    data["is_deleted"] = bool(data.get("is_deleted"))
    return data


class SqliteProjectRepository:
    """Project rows and their progress rollup. Writes do not commit; wrap them in ``transaction``."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def get(self, project_id: str) -> dict | None:
        async with self.db.execute("SELECT * FROM projects WHERE id = ?", (project_id,)) as cur:
            row = await cur.fetchone()
        return row_to_project(row) if row else None

    async def list_ids(self, include_deleted: bool = False) -> list[str]:
        query = "SELECT id FROM projects"
        if not include_deleted:
            query += " WHERE is_deleted = 0"
        query += " ORDER BY created_at, id"
        async with self.db.execute(query) as cur:
            rows = await cur.fetchall()
        return [row[0] for row in rows]

    async def upsert(self, project_id: str, name: str = "", is_deleted: bool = False) -> None:
        now = utc_now_iso()
        await self.db.execute(
            """INSERT INTO projects (id, name, is_deleted, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                 name=excluded.name, is_deleted=excluded.is_deleted, updated_at=excluded.updated_at""",
            (project_id, name, 1 if is_deleted else 0, now, now),
        )

    async def update_progress(self, project_id: str, summary: ProgressSummary, updated_at: str) -> None:
        """Write the rollup onto the project row (no commit)."""
        await self.db.execute(
            """UPDATE projects SET
                 admin_progress = ?, engineering_progress = ?, overall_progress = ?,
                 admin_stage = ?, engineering_stage = ?, construction_status = ?,
                 progress_updated_at = ?, updated_at = ?
               WHERE id = ?""",
            (
                summary.adminProgress,
                summary.engineeringProgress,
                summary.overallProgress,
                summary.adminStage,
                summary.engineeringStage,
                summary.constructionStatus,
                updated_at,
                updated_at,
                project_id,
            ),
        )
