"""Weighted progress rollups and current-stage labels."""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from solartrack import config
from solartrack.models import (
    ConstructionStatusRule,
    MilestoneDefinition,
    MilestoneType,
    ProgressSummary,
    WeightConfig,
)

_TWO_PLACES = Decimal("0.01")
_HUNDRED = Decimal(100)


def _dec(value: float | int | str | None) -> Decimal:
    return Decimal(str(value or 0))


def _round2(value: Decimal) -> Decimal:
    return value.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)


def _active_of_type(
    definitions: Iterable[MilestoneDefinition], milestone_type: MilestoneType
) -> list[MilestoneDefinition]:
    return [d for d in definitions if d.isActive and d.milestoneType == milestone_type]


def type_progress(
    definitions: Iterable[MilestoneDefinition],
    completed: set[str],
    milestone_type: MilestoneType,
) -> Decimal:
    """Completed share of active weight for one type, rounded to 2 places."""
    active = _active_of_type(definitions, milestone_type)
    total = sum((_dec(d.weight) for d in active), Decimal(0))
    if total <= 0:
        return Decimal("0.00")
    done = sum((_dec(d.weight) for d in active if d.code in completed), Decimal(0))
    return _round2(_HUNDRED * done / total)


def current_stage(
    definitions: Iterable[MilestoneDefinition],
    completed: set[str],
    milestone_type: MilestoneType,
    completed_label: Optional[str] = None,
) -> Optional[str]:
    active = sorted(_active_of_type(definitions, milestone_type), key=lambda d: d.sortOrder)
    if not active:
        return None
    for definition in active:
        if definition.code not in completed:
            return definition.displayName or definition.code
    return completed_label if completed_label is not None else config.COMPLETED_STAGE_LABEL


def derive_construction_status(
    rules: Iterable[ConstructionStatusRule],
    completed: set[str],
    default: Optional[str] = None,
) -> Optional[str]:
    for rule in rules:
        if any(code in completed for code in rule.anyOf):
            return rule.status
    return default


def aggregate_progress(
    definitions: Iterable[MilestoneDefinition],
    completed: Iterable[str],
    weights: WeightConfig,
    *,
    completed_label: Optional[str] = None,
    construction_rules: Iterable[ConstructionStatusRule] = (),
    construction_default: Optional[str] = None,
) -> ProgressSummary:
    definitions = list(definitions)
    completed_set = set(completed)
    admin = type_progress(definitions, completed_set, MilestoneType.ADMIN)
    engineering = type_progress(definitions, completed_set, MilestoneType.ENGINEERING)
    # Overall is computed from the already-rounded per-type figures.
    overall = _round2(
        admin * _dec(weights.adminWeightPct) / _HUNDRED
        + engineering * _dec(weights.engineeringWeightPct) / _HUNDRED
    )
    return ProgressSummary(
        adminProgress=float(admin),
        engineeringProgress=float(engineering),
        overallProgress=float(overall),
        adminStage=current_stage(definitions, completed_set, MilestoneType.ADMIN, completed_label),
        engineeringStage=current_stage(
            definitions, completed_set, MilestoneType.ENGINEERING, completed_label
        ),
        constructionStatus=derive_construction_status(
            construction_rules, completed_set, construction_default
        ),
    )
