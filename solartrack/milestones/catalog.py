"""Load the static milestone catalog (rules, triggers, definitions) from YAML."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from solartrack import config
from solartrack.milestones.doc_types import DocTypeRegistry
from solartrack.milestones.rules import RuleSet, RuleSetError
from solartrack.models import (
    ConstructionStatusRule,
    CrossTrigger,
    MilestoneDefinition,
    MilestoneRule,
    WeightConfig,
)

logger = logging.getLogger("solartrack.milestones")


class MilestoneCatalog:
    """Validated catalog: the rule set plus the settings it is seeded with."""

    def __init__(
        self,
        rule_set: RuleSet,
        *,
        registry: DocTypeRegistry | None = None,
        definitions: list[MilestoneDefinition] | None = None,
        weights: WeightConfig | None = None,
        construction_rules: list[ConstructionStatusRule] | None = None,
        construction_default: Optional[str] = None,
        completed_label: Optional[str] = None,
        version: str = "1",
    ):
        self.rule_set = rule_set
        self.registry = registry or DocTypeRegistry()
        self.definitions = definitions or []
        self.weights = weights or WeightConfig(
            adminWeightPct=config.DEFAULT_ADMIN_WEIGHT_PCT,
            engineeringWeightPct=config.DEFAULT_ENGINEERING_WEIGHT_PCT,
        )
        self.construction_rules = construction_rules or []
        self.construction_default = construction_default
        self.completed_label = completed_label or config.COMPLETED_STAGE_LABEL
        self.version = version

        codes = [d.code for d in self.definitions]
        duplicates = sorted({code for code in codes if codes.count(code) > 1})
        if duplicates:
            raise RuleSetError(f"Duplicate milestone definition code(s): {', '.join(duplicates)}")
        defined = set(codes)
        if defined:
            for target in rule_set.trigger_targets:
                if target not in defined:
                    logger.warning("Cross-trigger target %s has no milestone definition", target)


def _as_list(data: dict[str, Any], key: str) -> list[Any]:
    value = data.get(key) or []
    if not isinstance(value, list):
        raise RuleSetError(f"Catalog section '{key}' must be a list")
    return value


def parse_catalog(data: dict[str, Any]) -> MilestoneCatalog:
    if not isinstance(data, dict):
        raise RuleSetError("Milestone catalog must be a mapping")
    try:
        rules = [MilestoneRule(**item) for item in _as_list(data, "rules")]
        triggers = [CrossTrigger(**item) for item in _as_list(data, "crossTriggers")]
        definitions = [MilestoneDefinition(**item) for item in _as_list(data, "definitions")]
        weights = WeightConfig(**data["weights"]) if data.get("weights") else None
        construction = data.get("constructionStatus") or {}
        construction_rules = [
            ConstructionStatusRule(**item) for item in (construction.get("rules") or [])
        ]
    except (TypeError, ValidationError) as exc:
        raise RuleSetError(f"Malformed milestone catalog: {exc}") from exc

    doc_types = data.get("docTypes") or {}
    if not isinstance(doc_types, dict):
        raise RuleSetError("Catalog section 'docTypes' must be a mapping of code -> labels")

    return MilestoneCatalog(
        RuleSet(rules, triggers),
        registry=DocTypeRegistry(doc_types),
        definitions=definitions,
        weights=weights,
        construction_rules=construction_rules,
        construction_default=construction.get("default"),
        completed_label=data.get("completedStageLabel"),
        version=str(data.get("version", "1")),
    )


def load_catalog(path: Path | str | None = None) -> MilestoneCatalog:
    """Read and validate a catalog file; any defect raises RuleSetError."""
    catalog_path = Path(path) if path else config.MILESTONE_CATALOG_PATH
    try:
        text = catalog_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise RuleSetError(f"Cannot read milestone catalog {catalog_path}: {exc}") from exc
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise RuleSetError(f"Invalid YAML in milestone catalog {catalog_path}: {exc}") from exc

    catalog = parse_catalog(data)
    logger.info(
        "Loaded milestone catalog %s (v%s): %d rules, %d cross-triggers, %d definitions",
        catalog_path.name,
        catalog.version,
        len(catalog.rule_set),
        len(catalog.rule_set.cross_triggers),
        len(catalog.definitions),
    )
    return catalog
