"""Milestone rule set: validation and dependency ordering.

Rules are evaluated strictly in dependency order, so a rule set is only
accepted once every prerequisite resolves to a known rule and the
prerequisite graph is acyclic. Rules with no ordering constraint between
them keep their configured relative order.
"""
from __future__ import annotations

import heapq
from typing import Iterable, Iterator, Optional

from solartrack.models import CrossTrigger, MilestoneRule


class RuleSetError(ValueError):
    """Raised when a rule set or catalog cannot be evaluated safely."""


def _find_cycle(graph: dict[str, list[str]]) -> list[str]:
    """Return one prerequisite cycle in ``graph`` (code -> prerequisites)."""
    visiting: list[str] = []
    on_path: set[str] = set()
    done: set[str] = set()

    def visit(code: str) -> Optional[list[str]]:
        visiting.append(code)
        on_path.add(code)
        for prereq in graph.get(code, []):
            if prereq in on_path:
                return visiting[visiting.index(prereq):] + [prereq]
            if prereq not in done and prereq in graph:
                found = visit(prereq)
                if found:
                    return found
        on_path.discard(code)
        visiting.pop()
        done.add(code)
        return None

    for code in graph:
        if code not in done:
            found = visit(code)
            if found:
                return found
    return []


def order_rules(rules: Iterable[MilestoneRule]) -> list[MilestoneRule]:
    """Validate ``rules`` and return them in prerequisite-first order."""
    rule_list = list(rules)
    by_code: dict[str, MilestoneRule] = {}
    position: dict[str, int] = {}
    for idx, rule in enumerate(rule_list):
        if rule.code in by_code:
            raise RuleSetError(f"Duplicate milestone rule code: {rule.code}")
        by_code[rule.code] = rule
        position[rule.code] = idx

    for rule in rule_list:
        missing = [p for p in rule.prerequisites if p not in by_code]
        if missing:
            raise RuleSetError(
                f"Rule {rule.code} references undefined prerequisite(s): {', '.join(missing)}"
            )

    pending = {rule.code: len(set(rule.prerequisites)) for rule in rule_list}
    dependents: dict[str, list[str]] = {code: [] for code in by_code}
    for rule in rule_list:
        for prereq in set(rule.prerequisites):
            dependents[prereq].append(rule.code)

    ready = [position[code] for code, count in pending.items() if count == 0]
    heapq.heapify(ready)
    ordered: list[MilestoneRule] = []
    while ready:
        rule = rule_list[heapq.heappop(ready)]
        ordered.append(rule)
        for dependent in dependents[rule.code]:
            pending[dependent] -= 1
            if pending[dependent] == 0:
                heapq.heappush(ready, position[dependent])

    if len(ordered) != len(rule_list):
        emitted = {rule.code for rule in ordered}
        remaining = {
            rule.code: list(rule.prerequisites)
            for rule in rule_list
            if rule.code not in emitted
        }
        cycle = _find_cycle(remaining)
        detail = " -> ".join(cycle) if cycle else ", ".join(sorted(remaining))
        raise RuleSetError(f"Milestone prerequisites form a cycle: {detail}")
    return ordered


class RuleSet:
    """Validated, dependency-ordered rules plus their cross-trigger edges."""

    def __init__(
        self,
        rules: Iterable[MilestoneRule],
        cross_triggers: Iterable[CrossTrigger] = (),
    ):
        self.rules: list[MilestoneRule] = order_rules(rules)
        self._by_code = {rule.code: rule for rule in self.rules}
        self.cross_triggers: list[CrossTrigger] = self._validate_cross_triggers(cross_triggers)

    def _validate_cross_triggers(self, triggers: Iterable[CrossTrigger]) -> list[CrossTrigger]:
        validated: list[CrossTrigger] = []
        seen: set[tuple[str, str]] = set()
        for trigger in triggers:
            if trigger.sourceCode not in self._by_code:
                raise RuleSetError(
                    f"Cross-trigger source {trigger.sourceCode} is not a milestone rule code"
                )
            if trigger.targetCode in self._by_code:
                raise RuleSetError(
                    f"Cross-trigger target {trigger.targetCode} is itself a rule-derived milestone"
                )
            key = (trigger.sourceCode, trigger.targetCode)
            if key in seen:
                continue
            seen.add(key)
            validated.append(trigger)
        return validated

    @property
    def codes(self) -> list[str]:
        return [rule.code for rule in self.rules]

    @property
    def trigger_targets(self) -> list[str]:
        targets: list[str] = []
        for trigger in self.cross_triggers:
            if trigger.targetCode not in targets:
                targets.append(trigger.targetCode)
        return targets

    def get(self, code: str) -> Optional[MilestoneRule]:
        return self._by_code.get(code)

    def __iter__(self) -> Iterator[MilestoneRule]:
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    def __contains__(self, code: object) -> bool:
        return code in self._by_code
