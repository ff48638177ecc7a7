"""PostgreSQL repositories for per-project milestone state and its audit trail."""
from __future__ import annotations

import json

import asyncpg

from solartrack.db.repositories.milestones import row_to_audit, row_to_state
from solartrack.models import AuditRecord, ProjectMilestoneState


class PostgresMilestoneStateRepository:
    def __init__(self, db: asyncpg.Connection):
        self.db = db

    async def list_for_project(self, project_id: str) -> list[ProjectMilestoneState]:
        rows = await self.db.fetch(
            "SELECT * FROM project_milestones WHERE project_id = $1 ORDER BY milestone_code",
            project_id,
        )
        return [row_to_state(row) for row in rows]

    async def get(self, project_id: str, code: str) -> ProjectMilestoneState | None:
        row = await self.db.fetchrow(
            "SELECT * FROM project_milestones WHERE project_id = $1 AND milestone_code = $2",
            project_id, code,
        )
        return row_to_state(row) if row else None

    async def upsert_state(self, project_id: str, state: ProjectMilestoneState) -> None:
        await self.db.execute(
            """INSERT INTO project_milestones (
                project_id, milestone_code, is_completed, completed_at,
                completed_by_actor_id, note, provenance, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            ON CONFLICT(project_id, milestone_code) DO UPDATE SET
                is_completed=EXCLUDED.is_completed, completed_at=EXCLUDED.completed_at,
                completed_by_actor_id=EXCLUDED.completed_by_actor_id, note=EXCLUDED.note,
                provenance=EXCLUDED.provenance, updated_at=EXCLUDED.updated_at""",
            project_id,
            state.code,
            state.isCompleted,
            state.completedAt,
            state.completedByActorId,
            state.note,
            state.provenance.value if state.provenance else None,
            state.updatedAt,
        )


class PostgresMilestoneAuditRepository:
    def __init__(self, db: asyncpg.Connection):
        self.db = db

    async def record(self, record: AuditRecord) -> None:
        await self.db.execute(
            """INSERT INTO milestone_audit_log
               (project_id, milestone_code, actor_id, action, old_value, new_value, created_at)
               VALUES ($1, $2, $3, $4, $5::jsonb, $6::jsonb, $7)""",
            record.projectId,
            record.milestoneCode,
            record.actorId,
            record.action,
            json.dumps(record.oldValue, ensure_ascii=False) if record.oldValue is not None else None,
            json.dumps(record.newValue, ensure_ascii=False),
            record.createdAt,
        )

    async def list_for_project(self, project_id: str, limit: int = 100) -> list[AuditRecord]:
        rows = await self.db.fetch(
            "SELECT * FROM milestone_audit_log WHERE project_id = $1 ORDER BY id DESC LIMIT $2",
            project_id, limit,
        )
        return [row_to_audit(row) for row in rows]
