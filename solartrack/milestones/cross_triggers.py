"""Admin -> engineering completion propagation."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping

from solartrack.models import CrossTrigger, ProjectMilestoneState

logger = logging.getLogger("solartrack.milestones")


@dataclass(frozen=True)
class TriggerFiring:
    source_code: str
    target_code: str


def propagate_cross_triggers(
    triggers: Iterable[CrossTrigger],
    resolved: set[str],
    stored: Mapping[str, ProjectMilestoneState],
) -> list[TriggerFiring]:
    """Return the edges that fire this pass.

    An edge fires when its source is resolved complete and its target is not
    already stored as completed, whatever that row's provenance. Each target
    fires at most once per pass; the first matching edge in configuration
    order is recorded as the reason.
    """
    fired: list[TriggerFiring] = []
    fired_targets: set[str] = set()
    for trigger in triggers:
        if trigger.sourceCode not in resolved:
            continue
        if trigger.targetCode in fired_targets:
            continue
        state = stored.get(trigger.targetCode)
        if state is not None and state.isCompleted:
            continue
        logger.info(
            "[cross-trigger] %s completed -> auto-complete %s",
            trigger.sourceCode,
            trigger.targetCode,
        )
        fired.append(TriggerFiring(trigger.sourceCode, trigger.targetCode))
        fired_targets.add(trigger.targetCode)
    return fired
