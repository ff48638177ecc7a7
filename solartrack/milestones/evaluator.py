"""Prerequisite-gated evaluation of milestone rules against document evidence."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from solartrack.milestones.document_index import DocumentIndex
from solartrack.milestones.overrides import OverridePreserver
from solartrack.milestones.rules import RuleSet
from solartrack.models import CheckKind, Document, MilestoneRule

logger = logging.getLogger("solartrack.milestones")


def has_file_evidence(doc: Document) -> bool:
    return doc.attachedFileCount > 0 or bool(doc.externalFileRef)


def is_issued(doc: Document) -> bool:
    # A stored file is proof of receipt even without an issued date.
    return bool(doc.issuedAt) or has_file_evidence(doc)


def is_submitted(doc: Document) -> bool:
    # Issued implies submitted: checkpoints of one document are monotonic.
    return bool(doc.submittedAt) or is_issued(doc)


def check_rule(rule: MilestoneRule, doc: Optional[Document], resolved: set[str]) -> bool:
    """Evaluate ``rule.checkKind`` once prerequisites are known to be met."""
    if rule.checkKind == CheckKind.ALWAYS_TRUE:
        return True
    if rule.checkKind == CheckKind.ALL_PREREQUISITES:
        return all(prereq in resolved for prereq in rule.prerequisites)
    if doc is None:
        return False
    if rule.checkKind == CheckKind.SUBMITTED:
        return is_submitted(doc)
    if rule.checkKind == CheckKind.ISSUED:
        return is_issued(doc)
    return False


@dataclass
class RuleOutcome:
    code: str
    prerequisites_met: bool
    computed: bool
    preserved: bool = False
    document_id: Optional[str] = None
    matched_via: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.computed or self.preserved


@dataclass
class Evaluation:
    outcomes: list[RuleOutcome] = field(default_factory=list)
    resolved: set[str] = field(default_factory=set)

    @property
    def synced(self) -> list[str]:
        return [o.code for o in self.outcomes if o.completed]

    @property
    def unsynced(self) -> list[str]:
        return [o.code for o in self.outcomes if not o.completed]


def evaluate_rules(
    rule_set: RuleSet,
    index: DocumentIndex,
    preserver: OverridePreserver,
) -> Evaluation:
    """Walk ``rule_set`` in dependency order and resolve each milestone."""
    evaluation = Evaluation()
    for rule in rule_set:
        prereqs_met = all(prereq in evaluation.resolved for prereq in rule.prerequisites)
        doc: Optional[Document] = None
        matched_via: Optional[str] = None
        computed = False
        if prereqs_met:
            if rule.checkKind in (CheckKind.SUBMITTED, CheckKind.ISSUED):
                doc, matched_via = index.resolve(rule)
            computed = check_rule(rule, doc, evaluation.resolved)

        preserved = not computed and preserver.preserves(rule)
        outcome = RuleOutcome(
            code=rule.code,
            prerequisites_met=prereqs_met,
            computed=computed,
            preserved=preserved,
            document_id=doc.id if doc else None,
            matched_via=matched_via,
        )
        evaluation.outcomes.append(outcome)
        if outcome.completed:
            evaluation.resolved.add(rule.code)

        if preserved:
            logger.debug("[%s] preserving manual completion", rule.code)
        else:
            logger.debug(
                "[%s] %s prereqs=%s doc=%s via=%s result=%s",
                rule.code,
                rule.checkKind.value,
                prereqs_met,
                outcome.document_id,
                matched_via,
                computed,
            )
    return evaluation
