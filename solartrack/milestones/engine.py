"""One synchronous milestone pass over a document snapshot.

Document Index -> Evaluator (with override preservation) -> cross-trigger
propagation -> diff plan. Nothing here touches storage; the returned
``SyncPlan`` is persisted by the caller and progress is rolled up from its
``completed_codes``.
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional

from solartrack.date_utils import utc_now_iso
from solartrack.milestones.cross_triggers import propagate_cross_triggers
from solartrack.milestones.doc_types import DocTypeRegistry
from solartrack.milestones.document_index import DocumentIndex
from solartrack.milestones.evaluator import evaluate_rules
from solartrack.milestones.overrides import OverridePreserver
from solartrack.milestones.rules import RuleSet
from solartrack.milestones.writer import SyncPlan, build_plan
from solartrack.models import Document, ProjectMilestoneState

logger = logging.getLogger("solartrack.milestones")


def index_states(states: Iterable[ProjectMilestoneState]) -> dict[str, ProjectMilestoneState]:
    return {state.code: state for state in states}


def compute_sync(
    rule_set: RuleSet,
    documents: Iterable[Document],
    stored_states: Iterable[ProjectMilestoneState],
    *,
    project_id: str,
    actor_id: Optional[str],
    registry: DocTypeRegistry | None = None,
    now: Optional[str] = None,
    markers: Iterable[str] | None = None,
    sticky_default: bool | None = None,
) -> SyncPlan:
    stored = index_states(stored_states)
    index = DocumentIndex(documents, registry)
    preserver = OverridePreserver(stored, markers=markers, sticky_default=sticky_default)

    evaluation = evaluate_rules(rule_set, index, preserver)
    firings = propagate_cross_triggers(rule_set.cross_triggers, evaluation.resolved, stored)
    plan = build_plan(project_id, actor_id, evaluation, firings, stored, now or utc_now_iso())

    logger.info(
        "Milestone pass for %s: %d synced, %d unsynced, %d changes",
        project_id,
        len(plan.result.synced),
        len(plan.result.unsynced),
        len(plan.result.changes),
    )
    return plan
