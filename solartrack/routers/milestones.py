"""Milestone sync, progress and manual override API."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, Request
from pydantic import BaseModel

from solartrack.db.sync_engine import (
    MilestonePersistenceError,
    ProjectNotFoundError,
    UnknownMilestoneError,
)

logger = logging.getLogger("solartrack.milestones")

project_milestones_router = APIRouter(prefix="/api/projects", tags=["milestones"])
milestones_router = APIRouter(prefix="/api/milestones", tags=["milestones"])


class SyncRequest(BaseModel):
    actorId: Optional[str] = None
    trigger: str = "api"


class SyncAllRequest(BaseModel):
    actorId: Optional[str] = None
    background: bool = True
    trigger: str = "api"


class ManualStateRequest(BaseModel):
    isCompleted: bool
    actorId: Optional[str] = None
    note: Optional[str] = None


def _get_engine(request: Request):
    engine = getattr(request.app.state, "milestone_engine", None)
    if not engine:
        raise HTTPException(status_code=503, detail="Milestone engine not initialized")
    return engine


def _persistence_failure(exc: MilestonePersistenceError) -> HTTPException:
    return HTTPException(
        status_code=503,
        detail={
            "message": str(exc),
            "projectId": exc.plan.project_id,
            "pendingChanges": [c.model_dump(by_alias=True) for c in exc.plan.changes],
        },
    )


@project_milestones_router.post("/{project_id}/milestones/sync")
async def sync_project_milestones(request: Request, project_id: str, body: Optional[SyncRequest] = None):
    """Recompute one project's milestones from its current documents."""
    engine = _get_engine(request)
    body = body or SyncRequest()
    try:
        result = await engine.sync_project(project_id, body.actorId, trigger=body.trigger)
    except ProjectNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except MilestonePersistenceError as exc:
        raise _persistence_failure(exc)
    return result.model_dump(by_alias=True)


@project_milestones_router.get("/{project_id}/milestones")
async def list_project_milestones(request: Request, project_id: str):
    engine = _get_engine(request)
    try:
        states = await engine.list_states(project_id)
    except ProjectNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return {"projectId": project_id, "items": [s.model_dump() for s in states]}


@project_milestones_router.put("/{project_id}/milestones/{code}")
async def set_project_milestone(request: Request, project_id: str, code: str, body: ManualStateRequest):
    """Manual override; the engine preserves manual completions on later passes."""
    engine = _get_engine(request)
    try:
        state, progress = await engine.set_manual_state(
            project_id,
            code,
            is_completed=body.isCompleted,
            actor_id=body.actorId,
            note=body.note,
        )
    except (ProjectNotFoundError, UnknownMilestoneError) as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return {"projectId": project_id, "state": state.model_dump(), "progress": progress.model_dump()}


@project_milestones_router.get("/{project_id}/progress")
async def get_project_progress(request: Request, project_id: str):
    engine = _get_engine(request)
    try:
        summary = await engine.recalculate_progress(project_id)
    except ProjectNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return {"projectId": project_id, **summary.model_dump()}


@milestones_router.post("/sync-all")
async def sync_all_milestones(
    request: Request,
    background_tasks: BackgroundTasks,
    body: Optional[SyncAllRequest] = None,
):
    """Sync every active project, in the background by default."""
    engine = _get_engine(request)
    body = body or SyncAllRequest()
    if body.background:
        operation_id = await engine.start_operation(
            "milestone_sync_all",
            "*",
            trigger=body.trigger,
            metadata={"actorId": body.actorId or ""},
        )
        background_tasks.add_task(
            engine.sync_all_projects,
            body.actorId,
            operation_id=operation_id,
            trigger=body.trigger,
        )
        return {
            "status": "ok",
            "mode": "background",
            "message": "Milestone sync triggered in background",
            "operationId": operation_id,
        }

    stats = await engine.sync_all_projects(body.actorId, trigger=body.trigger)
    return {
        "status": "ok",
        "mode": "foreground",
        "operationId": stats.get("operation_id", ""),
        "stats": stats,
    }


@milestones_router.get("/rules")
async def list_milestone_rules(request: Request):
    """Rules in evaluation order plus cross-trigger edges."""
    catalog = _get_engine(request).catalog
    return {
        "version": catalog.version,
        "rules": [rule.model_dump() for rule in catalog.rule_set],
        "crossTriggers": [t.model_dump() for t in catalog.rule_set.cross_triggers],
        "docTypes": catalog.registry.as_dict(),
    }


@milestones_router.get("/status")
async def get_milestone_sync_status(request: Request):
    """Engine readiness plus active and recent sync operations."""
    engine = _get_engine(request)
    observability = await engine.get_observability_snapshot()
    return {
        "status": "active",
        "milestone_engine": "ready",
        "catalogVersion": engine.catalog.version,
        "notifications": "enabled" if engine.notifier is not None else "disabled",
        "operations": observability,
    }


@milestones_router.get("/operations")
async def list_milestone_operations(request: Request, limit: int = Query(20, ge=1, le=200)):
    engine = _get_engine(request)
    operations = await engine.list_operations(limit=limit)
    return {"status": "ok", "count": len(operations), "items": operations}


@milestones_router.get("/operations/{operation_id}")
async def get_milestone_operation(request: Request, operation_id: str):
    engine = _get_engine(request)
    operation = await engine.get_operation(operation_id)
    if not operation:
        raise HTTPException(status_code=404, detail=f"Operation {operation_id} not found")
    return operation
