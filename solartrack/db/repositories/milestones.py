"""SQLite repositories for per-project milestone state and its audit trail."""
from __future__ import annotations

import json
from typing import Any

import aiosqlite

from solartrack.models import AuditRecord, ProjectMilestoneState, Provenance


def parse_provenance(value: Any) -> Provenance | None:
    try:
        return Provenance(value) if value else None
    except ValueError:
        return None


def row_to_state(row: Any) -> ProjectMilestoneState:
    data = dict(row)
    return ProjectMilestoneState(
        id=data.get("id"),
        code=data["milestone_code"],
        isCompleted=bool(data.get("is_completed")),
        completedAt=data.get("completed_at"),
        completedByActorId=data.get("completed_by_actor_id"),
        note=data.get("note"),
        provenance=parse_provenance(data.get("provenance")),
        updatedAt=data.get("updated_at"),
    )


def _json_or_none(value: Any) -> Any:
    if value is None or value == "":
        return None
    if isinstance(value, (dict, list)):
        return value
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return None


def row_to_audit(row: Any) -> AuditRecord:
    data = dict(row)
    return AuditRecord(
        projectId=data["project_id"],
        milestoneCode=data["milestone_code"],
        actorId=data.get("actor_id"),
        action=data["action"],
        oldValue=_json_or_none(data.get("old_value")),
        newValue=_json_or_none(data.get("new_value")) or {},
        createdAt=data.get("created_at") or "",
    )


class SqliteMilestoneStateRepository:
    """Stored ProjectMilestoneState rows. Writes do not commit; wrap them in ``transaction``."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def list_for_project(self, project_id: str) -> list[ProjectMilestoneState]:
        async with self.db.execute(
            "SELECT * FROM project_milestones WHERE project_id = ? ORDER BY milestone_code",
            (project_id,),
        ) as cur:
            rows = await cur.fetchall()
        return [row_to_state(row) for row in rows]

    async def get(self, project_id: str, code: str) -> ProjectMilestoneState | None:
        async with self.db.execute(
            "SELECT * FROM project_milestones WHERE project_id = ? AND milestone_code = ?",
            (project_id, code),
        ) as cur:
            row = await cur.fetchone()
        return row_to_state(row) if row else None

    async def upsert_state(self, project_id: str, state: ProjectMilestoneState) -> None:
        await self.db.execute(
            """INSERT INTO project_milestones (
                project_id, milestone_code, is_completed, completed_at,
                completed_by_actor_id, note, provenance, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(project_id, milestone_code) DO UPDATE SET
                is_completed=excluded.is_completed, completed_at=excluded.completed_at,
                completed_by_actor_id=excluded.completed_by_actor_id, note=excluded.note,
                provenance=excluded.provenance, updated_at=excluded.updated_at""",
            (
                project_id,
                state.code,
                1 if state.isCompleted else 0,
                state.completedAt,
                state.completedByActorId,
                state.note,
                state.provenance.value if state.provenance else None,
                state.updatedAt,
            ),
        )


class SqliteMilestoneAuditRepository:
    """Append-only audit log of milestone writes."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def record(self, record: AuditRecord) -> None:
        await self.db.execute(
            """INSERT INTO milestone_audit_log
               (project_id, milestone_code, actor_id, action, old_value, new_value, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                record.projectId,
                record.milestoneCode,
                record.actorId,
                record.action,
                json.dumps(record.oldValue, ensure_ascii=False) if record.oldValue is not None else None,
                json.dumps(record.newValue, ensure_ascii=False),
                record.createdAt,
            ),
        )

    async def list_for_project(self, project_id: str, limit: int = 100) -> list[AuditRecord]:
        async with self.db.execute(
            """SELECT * FROM milestone_audit_log WHERE project_id = ?
               ORDER BY id DESC LIMIT ?""",
            (project_id, limit),
        ) as cur:
            rows = await cur.fetchall()
        return [row_to_audit(row) for row in rows]
