"""Document to milestone sync engine.

Loads a project's document snapshot and stored milestone states, runs the
pure milestone pass, then persists the resulting writes, audit records and
progress summary inside one transaction per project.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional

from solartrack import config
from solartrack.date_utils import utc_now_iso
from solartrack.db.connection import transaction
from solartrack.db.factory import (
    get_document_repository,
    get_milestone_audit_repository,
    get_milestone_state_repository,
    get_project_repository,
    get_settings_repository,
)
from solartrack.db.operations import OperationTracker
from solartrack.milestones.catalog import MilestoneCatalog
from solartrack.milestones.engine import compute_sync
from solartrack.milestones.progress import aggregate_progress
from solartrack.milestones.writer import SyncPlan, reconcile_plan
from solartrack.models import (
    AuditRecord,
    MilestoneDefinition,
    ProgressSummary,
    ProjectMilestoneState,
    ProjectSyncResult,
    Provenance,
    WeightConfig,
)
from solartrack.observability import record_sync, record_transitions, start_span
from solartrack.services.milestone_notifications import (
    LoggingNotifier,
    MilestoneNotifier,
    dispatch_notifications,
)

logger = logging.getLogger("solartrack.sync")

MANUAL_NOTE = "Manually updated"


class ProjectNotFoundError(LookupError):
    """The project does not exist or has been deleted."""


class UnknownMilestoneError(LookupError):
    """The milestone code is neither a rule, a trigger target nor a definition."""


class MilestonePersistenceError(RuntimeError):
    """Writing a computed plan failed; ``plan`` can be retried with ``apply_plan``."""

    def __init__(self, message: str, plan: SyncPlan):
        super().__init__(message)
        self.plan = plan


class MilestoneSyncEngine:
    """Runs milestone passes for projects stored in SQLite or Postgres."""

    def __init__(
        self,
        db: Any,  # aiosqlite.Connection or asyncpg.Pool
        catalog: MilestoneCatalog,
        notifier: MilestoneNotifier | None = None,
    ):
        self.db = db
        self.catalog = catalog
        self.document_repo = get_document_repository(db)
        self.state_repo = get_milestone_state_repository(db)
        self.settings_repo = get_settings_repository(db)
        self.project_repo = get_project_repository(db)
        if notifier is None and config.NOTIFICATIONS_ENABLED:
            notifier = LoggingNotifier()
        self.notifier = notifier
        self.operations = OperationTracker()
        # A single aiosqlite connection cannot hold two open transactions.
        self._write_lock = asyncio.Lock()
        # Reads and writes for one project never interleave with another call on it.
        self._project_locks: dict[str, asyncio.Lock] = {}

    # ── Operation tracking ─────────────────────────────────────────

    async def start_operation(
        self,
        kind: str,
        project_id: str,
        trigger: str = "api",
        metadata: dict[str, Any] | None = None,
    ) -> str:
        return await self.operations.start(kind, project_id, trigger, metadata)

    async def list_operations(self, limit: int = 20) -> list[dict[str, Any]]:
        return await self.operations.list(limit)

    async def get_operation(self, operation_id: str) -> dict[str, Any] | None:
        return await self.operations.get(operation_id)

    async def get_observability_snapshot(self) -> dict[str, Any]:
        return await self.operations.snapshot()

    # ── Helpers ────────────────────────────────────────────────────

    def _project_lock(self, project_id: str) -> asyncio.Lock:
        lock = self._project_locks.get(project_id)
        if lock is None:
            lock = self._project_locks[project_id] = asyncio.Lock()
        return lock

    async def _require_project(self, project_id: str) -> dict:
        project = await self.project_repo.get(project_id)
        if not project or project.get("is_deleted"):
            raise ProjectNotFoundError(f"Project {project_id} not found")
        return project

    async def _progress_inputs(self) -> tuple[list[MilestoneDefinition], WeightConfig]:
        definitions = await self.settings_repo.list_definitions()
        weights = await self.settings_repo.get_weights()
        return definitions, weights

    def _summarize(
        self,
        definitions: list[MilestoneDefinition],
        weights: WeightConfig,
        completed: set[str],
    ) -> ProgressSummary:
        return aggregate_progress(
            definitions,
            completed,
            weights,
            completed_label=self.catalog.completed_label,
            construction_rules=self.catalog.construction_rules,
            construction_default=self.catalog.construction_default,
        )

    def known_codes(self, definitions: list[MilestoneDefinition]) -> set[str]:
        codes = set(self.catalog.rule_set.codes)
        codes.update(self.catalog.rule_set.trigger_targets)
        codes.update(d.code for d in definitions)
        return codes

    # ── Milestone passes ───────────────────────────────────────────

    async def compute_plan(self, project_id: str, actor_id: Optional[str] = None) -> SyncPlan:
        """Run the pure pass against the current snapshot without writing."""
        await self._require_project(project_id)
        documents = await self.document_repo.list_current(project_id)
        stored = await self.state_repo.list_for_project(project_id)
        return compute_sync(
            self.catalog.rule_set,
            documents,
            stored,
            project_id=project_id,
            actor_id=actor_id,
            registry=self.catalog.registry,
        )

    async def apply_plan(self, plan: SyncPlan) -> ProjectSyncResult:
        """Persist ``plan`` and the resulting progress summary atomically.

        Safe to call again with the same plan after a MilestonePersistenceError:
        the plan is re-based on the rows stored at write time, so writes that
        already landed or that a manual action superseded are skipped.
        """
        async with self._project_lock(plan.project_id):
            return await self._persist(plan)

    async def _persist(self, plan: SyncPlan) -> ProjectSyncResult:
        definitions, weights = await self._progress_inputs()
        now = utc_now_iso()
        try:
            async with self._write_lock:
                async with transaction(self.db) as conn:
                    state_repo = get_milestone_state_repository(conn)
                    audit_repo = get_milestone_audit_repository(conn)
                    project_repo = get_project_repository(conn)
                    current = await state_repo.list_for_project(plan.project_id)
                    pending = reconcile_plan(plan, current)
                    summary = self._summarize(definitions, weights, pending.completed_codes)
                    for write in pending.writes:
                        await state_repo.upsert_state(pending.project_id, write.state)
                    for record in pending.audit_records():
                        await audit_repo.record(record)
                    await project_repo.update_progress(pending.project_id, summary, now)
        except Exception as exc:
            logger.error(
                "Persisting %d milestone change(s) for %s failed: %s",
                len(plan.writes),
                plan.project_id,
                exc,
            )
            raise MilestonePersistenceError(
                f"Failed to persist milestone changes for {plan.project_id}: {exc}", plan
            ) from exc

        if len(pending.writes) != len(plan.writes):
            logger.info(
                "Skipped %d milestone write(s) for %s already superseded in storage",
                len(plan.writes) - len(pending.writes),
                plan.project_id,
            )
        if self.notifier is not None and pending.changes:
            await dispatch_notifications(
                self.notifier, pending.project_id, pending.changes, definitions, pending.actor_id
            )
        return ProjectSyncResult(projectId=pending.project_id, sync=pending.result, progress=summary)

    async def sync_project(
        self,
        project_id: str,
        actor_id: Optional[str] = None,
        *,
        trigger: str = "api",
    ) -> ProjectSyncResult:
        """Full milestone pass for one project: compute, persist, roll up."""
        t0 = time.monotonic()
        result = "failed"
        try:
            with start_span("milestones.sync_project", {"project.id": project_id, "trigger": trigger}):
                async with self._project_lock(project_id):
                    plan = await self.compute_plan(project_id, actor_id)
                    outcome = await self._persist(plan)
            result = "completed"
        finally:
            elapsed = (time.monotonic() - t0) * 1000
            record_sync(result, elapsed, project_id=project_id, trigger=trigger)

        record_transitions(outcome.sync.changes, project_id=project_id)
        logger.info(
            "Milestone sync for %s: %d change(s), overall %.2f%% in %dms",
            project_id,
            len(outcome.sync.changes),
            outcome.progress.overallProgress,
            int(elapsed),
        )
        return outcome

    async def sync_all_projects(
        self,
        actor_id: Optional[str] = None,
        *,
        operation_id: str | None = None,
        trigger: str = "api",
    ) -> dict[str, Any]:
        """Sync every non-deleted project; a failing project does not stop the batch."""
        if not operation_id:
            operation_id = await self.start_operation("milestone_sync_all", "*", trigger)
        stats: dict[str, Any] = {
            "projects_total": 0,
            "projects_synced": 0,
            "projects_failed": 0,
            "changes": 0,
            "errors": [],
            "operation_id": operation_id,
        }
        t0 = time.monotonic()
        try:
            project_ids = await self.project_repo.list_ids()
            stats["projects_total"] = len(project_ids)
            await self.operations.update(
                operation_id,
                phase="projects",
                message=f"Syncing milestones for {len(project_ids)} project(s)",
                progress={"current": 0, "total": len(project_ids)},
            )
            for idx, project_id in enumerate(project_ids, start=1):
                try:
                    outcome = await self.sync_project(project_id, actor_id, trigger=trigger)
                    stats["projects_synced"] += 1
                    stats["changes"] += len(outcome.sync.changes)
                except Exception as exc:  # noqa: BLE001
                    logger.exception("Milestone sync failed for project %s", project_id)
                    stats["projects_failed"] += 1
                    stats["errors"].append({"projectId": project_id, "error": str(exc)})
                await self.operations.update(
                    operation_id,
                    progress={"current": idx, "total": len(project_ids)},
                    counters={
                        "projectsSynced": stats["projects_synced"],
                        "projectsFailed": stats["projects_failed"],
                    },
                )
        except Exception as exc:
            await self.operations.finish(operation_id, status="failed", stats=stats, error=str(exc))
            raise

        stats["duration_ms"] = int((time.monotonic() - t0) * 1000)
        await self.operations.finish(operation_id, status="completed", stats=stats)
        logger.info(
            "Milestone batch sync: %d/%d project(s) synced, %d failed, %d change(s) in %dms",
            stats["projects_synced"],
            stats["projects_total"],
            stats["projects_failed"],
            stats["changes"],
            stats["duration_ms"],
        )
        return stats

    # ── Stored state and manual overrides ──────────────────────────

    async def list_states(self, project_id: str) -> list[ProjectMilestoneState]:
        await self._require_project(project_id)
        return await self.state_repo.list_for_project(project_id)

    async def recalculate_progress(self, project_id: str) -> ProgressSummary:
        """Recompute and store the summary from stored states only."""
        await self._require_project(project_id)
        definitions, weights = await self._progress_inputs()
        async with self._project_lock(project_id), self._write_lock:
            async with transaction(self.db) as conn:
                stored = await get_milestone_state_repository(conn).list_for_project(project_id)
                summary = self._summarize(definitions, weights, {s.code for s in stored if s.isCompleted})
                await get_project_repository(conn).update_progress(project_id, summary, utc_now_iso())
        return summary

    async def set_manual_state(
        self,
        project_id: str,
        code: str,
        *,
        is_completed: bool,
        actor_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> tuple[ProjectMilestoneState, ProgressSummary]:
        """Record a manual completion or un-completion and refresh progress."""
        await self._require_project(project_id)
        definitions, weights = await self._progress_inputs()
        if code not in self.known_codes(definitions):
            raise UnknownMilestoneError(f"Unknown milestone code {code}")

        async with self._project_lock(project_id), self._write_lock:
            async with transaction(self.db) as conn:
                state_repo = get_milestone_state_repository(conn)
                stored = await state_repo.list_for_project(project_id)
                existing = next((s for s in stored if s.code == code), None)
                now = utc_now_iso()
                state = ProjectMilestoneState(
                    id=existing.id if existing else None,
                    code=code,
                    isCompleted=is_completed,
                    completedAt=now if is_completed else None,
                    completedByActorId=actor_id if is_completed else None,
                    note=note or MANUAL_NOTE,
                    provenance=Provenance.MANUAL,
                    updatedAt=now,
                )
                completed = {s.code for s in stored if s.isCompleted and s.code != code}
                if is_completed:
                    completed.add(code)
                summary = self._summarize(definitions, weights, completed)

                await state_repo.upsert_state(project_id, state)
                await get_milestone_audit_repository(conn).record(
                    AuditRecord(
                        projectId=project_id,
                        milestoneCode=code,
                        actorId=actor_id,
                        action="manual",
                        oldValue=existing.model_dump(mode="json") if existing else None,
                        newValue=state.model_dump(mode="json"),
                        createdAt=now,
                    )
                )
                await get_project_repository(conn).update_progress(project_id, summary, now)
        logger.info(
            "Manual milestone %s for %s set to %s by %s",
            code,
            project_id,
            is_completed,
            actor_id or "unknown",
        )
        return state, summary
