"""Manual-completion detection and preservation."""
from __future__ import annotations

from typing import Iterable, Mapping, Optional

from solartrack import config
from solartrack.models import MilestoneRule, ProjectMilestoneState, Provenance


def is_manually_completed(
    state: Optional[ProjectMilestoneState],
    markers: Iterable[str] | None = None,
) -> bool:
    """True for a completed row that was not written by the engine.

    Rows carrying an explicit provenance are trusted; older rows fall back
    to looking for a system-derived marker inside the note.
    """
    if state is None or not state.isCompleted:
        return False
    if state.provenance is not None:
        return state.provenance == Provenance.MANUAL
    note = state.note or ""
    active_markers = tuple(markers) if markers is not None else config.SYSTEM_NOTE_MARKERS
    return not any(marker and marker in note for marker in active_markers)


class OverridePreserver:
    """Decides which stored manual completions a pass must leave untouched."""

    def __init__(
        self,
        stored: Mapping[str, ProjectMilestoneState],
        markers: Iterable[str] | None = None,
        sticky_default: bool | None = None,
    ):
        self._stored = stored
        self._markers = tuple(markers) if markers is not None else config.SYSTEM_NOTE_MARKERS
        self._sticky_default = (
            config.STICKY_MANUAL_COMPLETIONS if sticky_default is None else sticky_default
        )

    def is_sticky(self, rule: MilestoneRule) -> bool:
        return self._sticky_default if rule.sticky is None else bool(rule.sticky)

    def is_manual(self, code: str) -> bool:
        return is_manually_completed(self._stored.get(code), self._markers)

    def preserves(self, rule: MilestoneRule) -> bool:
        return self.is_sticky(rule) and self.is_manual(rule.code)
