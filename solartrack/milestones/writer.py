"""Diff computed milestone targets against stored rows.

Only real transitions become writes. Every write is derived provenance,
carries the system marker in its note and is attributed to the acting
user; rows held by a preserved manual completion are never touched.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Iterable, Mapping, Optional

from solartrack import config
from solartrack.milestones.cross_triggers import TriggerFiring
from solartrack.milestones.evaluator import Evaluation
from solartrack.milestones.overrides import is_manually_completed
from solartrack.models import (
    AuditRecord,
    MilestoneChange,
    ProjectMilestoneState,
    Provenance,
    SyncResult,
)

SOURCE_RULE = "rule"
SOURCE_CROSS_TRIGGER = "cross_trigger"


def completed_note() -> str:
    return f"Auto-completed from document status ({config.DERIVED_NOTE_MARKER})"


def revoked_note() -> str:
    return f"Auto-revoked: document status no longer satisfies the rule ({config.DERIVED_NOTE_MARKER})"


def cross_trigger_note(source_code: str) -> str:
    return f"Auto-completed via {source_code} ({config.DERIVED_NOTE_MARKER})"


@dataclass
class MilestoneWrite:
    code: str
    action: str  # "insert" | "update"
    state: ProjectMilestoneState
    previous: Optional[ProjectMilestoneState] = None
    source: str = SOURCE_RULE


@dataclass
class SyncPlan:
    """Computed target state for one project pass, ready to persist or retry."""

    project_id: str
    actor_id: Optional[str]
    result: SyncResult
    writes: list[MilestoneWrite] = field(default_factory=list)
    completed_codes: set[str] = field(default_factory=set)

    @property
    def changes(self) -> list[MilestoneChange]:
        return self.result.changes

    def audit_records(self) -> list[AuditRecord]:
        records: list[AuditRecord] = []
        for write in self.writes:
            records.append(
                AuditRecord(
                    projectId=self.project_id,
                    milestoneCode=write.code,
                    actorId=self.actor_id,
                    action=write.action,
                    oldValue=write.previous.model_dump(mode="json") if write.previous else None,
                    newValue=write.state.model_dump(mode="json"),
                    createdAt=write.state.updatedAt or "",
                )
            )
        return records


def diff_milestone(
    code: str,
    target: bool,
    existing: Optional[ProjectMilestoneState],
    *,
    actor_id: Optional[str],
    now: str,
    note: str,
    source: str = SOURCE_RULE,
) -> Optional[tuple[MilestoneChange, MilestoneWrite]]:
    """Return the transition and write for ``code``, or None when unchanged."""
    current = bool(existing.isCompleted) if existing else False
    if target == current:
        return None
    state = ProjectMilestoneState(
        id=existing.id if existing else None,
        code=code,
        isCompleted=target,
        completedAt=now if target else None,
        completedByActorId=actor_id if target else None,
        note=note,
        provenance=Provenance.DERIVED,
        updatedAt=now,
    )
    change = MilestoneChange(code=code, from_=current, to=target, source=source, reason=note)
    write = MilestoneWrite(
        code=code,
        action="update" if existing else "insert",
        state=state,
        previous=existing,
        source=source,
    )
    return change, write


def build_plan(
    project_id: str,
    actor_id: Optional[str],
    evaluation: Evaluation,
    firings: list[TriggerFiring],
    stored: Mapping[str, ProjectMilestoneState],
    now: str,
) -> SyncPlan:
    result = SyncResult(synced=evaluation.synced, unsynced=evaluation.unsynced)
    plan = SyncPlan(project_id=project_id, actor_id=actor_id, result=result)

    for outcome in evaluation.outcomes:
        if outcome.preserved:
            continue
        target = outcome.computed
        diff = diff_milestone(
            outcome.code,
            target,
            stored.get(outcome.code),
            actor_id=actor_id,
            now=now,
            note=completed_note() if target else revoked_note(),
        )
        if diff:
            result.changes.append(diff[0])
            plan.writes.append(diff[1])

    for firing in firings:
        diff = diff_milestone(
            firing.target_code,
            True,
            stored.get(firing.target_code),
            actor_id=actor_id,
            now=now,
            note=cross_trigger_note(firing.source_code),
            source=SOURCE_CROSS_TRIGGER,
        )
        if diff:
            result.changes.append(diff[0])
            plan.writes.append(diff[1])
            result.synced.append(firing.target_code)

    plan.completed_codes = _completed_after(stored, plan.writes)
    return plan


def _completed_after(
    stored: Mapping[str, ProjectMilestoneState],
    writes: Iterable[MilestoneWrite],
) -> set[str]:
    completed = {code for code, state in stored.items() if state.isCompleted}
    for write in writes:
        if write.state.isCompleted:
            completed.add(write.code)
        else:
            completed.discard(write.code)
    return completed


def _row_changed(planned: Optional[ProjectMilestoneState], current: Optional[ProjectMilestoneState]) -> bool:
    if planned is None or current is None:
        return planned is not current
    return (planned.isCompleted, planned.provenance, planned.note, planned.updatedAt) != (
        current.isCompleted,
        current.provenance,
        current.note,
        current.updatedAt,
    )


def _is_manual_row(state: Optional[ProjectMilestoneState], markers: Iterable[str] | None) -> bool:
    if state is None:
        return False
    return state.provenance == Provenance.MANUAL or is_manually_completed(state, markers)


def reconcile_plan(
    plan: SyncPlan,
    current_states: Iterable[ProjectMilestoneState],
    markers: Iterable[str] | None = None,
) -> SyncPlan:
    """Re-base ``plan`` on the rows stored right before it is written.

    Writes already reflected in storage are dropped, and so is any write
    whose row was changed by a manual action after the plan was computed.
    The original plan is left untouched so it can be retried as-is.
    """
    current = {state.code: state for state in current_states}
    planned_changes = {change.code: change for change in plan.changes}
    result = SyncResult(synced=list(plan.result.synced), unsynced=list(plan.result.unsynced))
    rebased = SyncPlan(project_id=plan.project_id, actor_id=plan.actor_id, result=result)

    for write in plan.writes:
        existing = current.get(write.code)
        stored_value = bool(existing.isCompleted) if existing else False
        stale_manual = _row_changed(write.previous, existing) and _is_manual_row(existing, markers)
        if stored_value == write.state.isCompleted or stale_manual:
            _settle(result, write.code, stored_value)
            continue
        state = write.state.model_copy(update={"id": existing.id if existing else None})
        rebased.writes.append(
            replace(
                write,
                state=state,
                previous=existing,
                action="update" if existing else "insert",
            )
        )
        change = planned_changes.get(write.code)
        if change is not None:
            result.changes.append(change)

    rebased.completed_codes = _completed_after(current, rebased.writes)
    return rebased


def _settle(result: SyncResult, code: str, completed: bool) -> None:
    """Report ``code`` by its stored value once its write is dropped."""
    if code in result.synced and not completed:
        result.synced.remove(code)
        result.unsynced.append(code)
    elif code in result.unsynced and completed:
        result.unsynced.remove(code)
        result.synced.append(code)
