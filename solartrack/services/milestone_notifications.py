"""Milestone completion notifications fed by the sync ``changes`` list."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol

from solartrack.models import MilestoneChange, MilestoneDefinition

logger = logging.getLogger("solartrack.notifications")


@dataclass
class MilestoneNotification:
    project_id: str
    code: str
    display_name: str
    recipients: list[str] = field(default_factory=list)
    actor_id: Optional[str] = None
    reason: str = ""


class MilestoneNotifier(Protocol):
    async def notify(self, notifications: list[MilestoneNotification]) -> None: ...


class LoggingNotifier:
    """Default notifier: records what would be sent."""

    async def notify(self, notifications: list[MilestoneNotification]) -> None:
        for item in notifications:
            logger.info(
                "Milestone %s (%s) completed for project %s -> %s",
                item.code,
                item.display_name,
                item.project_id,
                ", ".join(item.recipients) or "(no recipients)",
            )


def select_notifiable_changes(
    changes: Iterable[MilestoneChange],
    definitions: Iterable[MilestoneDefinition],
) -> list[tuple[MilestoneChange, MilestoneDefinition]]:
    """Keep completions of active definitions configured to notify."""
    by_code = {d.code: d for d in definitions}
    selected: list[tuple[MilestoneChange, MilestoneDefinition]] = []
    for change in changes:
        if not change.to:
            continue
        definition = by_code.get(change.code)
        if definition is None or not definition.isActive or not definition.notifyOnComplete:
            continue
        selected.append((change, definition))
    return selected


def build_notifications(
    project_id: str,
    changes: Iterable[MilestoneChange],
    definitions: Iterable[MilestoneDefinition],
    actor_id: Optional[str] = None,
) -> list[MilestoneNotification]:
    return [
        MilestoneNotification(
            project_id=project_id,
            code=change.code,
            display_name=definition.displayName or change.code,
            recipients=list(definition.notifyRecipients),
            actor_id=actor_id,
            reason=change.reason,
        )
        for change, definition in select_notifiable_changes(changes, definitions)
    ]


async def dispatch_notifications(
    notifier: MilestoneNotifier,
    project_id: str,
    changes: Iterable[MilestoneChange],
    definitions: Iterable[MilestoneDefinition],
    actor_id: Optional[str] = None,
) -> int:
    """Send notifications for committed changes; returns how many were sent.

    Delivery failures are logged and do not undo the committed sync.
    """
    notifications = build_notifications(project_id, changes, definitions, actor_id)
    if not notifications:
        return 0
    try:
        await notifier.notify(notifications)
    except Exception:  # noqa: BLE001
        logger.exception("Milestone notification delivery failed for project %s", project_id)
        return 0
    return len(notifications)
