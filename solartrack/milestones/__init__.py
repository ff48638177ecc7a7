"""Milestone synchronization engine (pure, no I/O)."""

from solartrack.milestones.catalog import MilestoneCatalog, load_catalog, parse_catalog
from solartrack.milestones.doc_types import DocTypeRegistry
from solartrack.milestones.document_index import DocumentIndex
from solartrack.milestones.engine import compute_sync
from solartrack.milestones.progress import aggregate_progress
from solartrack.milestones.rules import RuleSet, RuleSetError, order_rules
from solartrack.milestones.writer import SyncPlan

__all__ = [
    "MilestoneCatalog",
    "load_catalog",
    "parse_catalog",
    "DocTypeRegistry",
    "DocumentIndex",
    "compute_sync",
    "aggregate_progress",
    "RuleSet",
    "RuleSetError",
    "order_rules",
    "SyncPlan",
]
