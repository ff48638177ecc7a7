import unittest

from solartrack.milestones.cross_triggers import TriggerFiring, propagate_cross_triggers
from solartrack.milestones.engine import compute_sync
from solartrack.milestones.rules import RuleSet
from solartrack.milestones.writer import SOURCE_CROSS_TRIGGER
from solartrack.models import CheckKind, CrossTrigger, MilestoneRule, ProjectMilestoneState, Provenance

NOW = "2024-05-01T00:00:00Z"


class PropagateCrossTriggersTests(unittest.TestCase):
    def setUp(self) -> None:
        self.triggers = [
            CrossTrigger(sourceCode="ADMIN_02", targetCode="ENG_01"),
            CrossTrigger(sourceCode="ADMIN_03", targetCode="ENG_01"),
            CrossTrigger(sourceCode="ADMIN_08", targetCode="ENG_01"),
            CrossTrigger(sourceCode="ADMIN_08", targetCode="ENG_02"),
        ]

    def test_fires_for_resolved_sources_only(self) -> None:
        fired = propagate_cross_triggers(self.triggers, {"ADMIN_08"}, {})
        self.assertEqual(fired, [TriggerFiring("ADMIN_08", "ENG_01"), TriggerFiring("ADMIN_08", "ENG_02")])

    def test_each_target_fires_once_with_first_source_as_reason(self) -> None:
        fired = propagate_cross_triggers(self.triggers, {"ADMIN_02", "ADMIN_03", "ADMIN_08"}, {})
        self.assertEqual([f.target_code for f in fired], ["ENG_01", "ENG_02"])
        self.assertEqual(fired[0].source_code, "ADMIN_02")

    def test_never_overwrites_completed_target_of_any_provenance(self) -> None:
        stored = {
            "ENG_01": ProjectMilestoneState(code="ENG_01", isCompleted=True, provenance=Provenance.MANUAL),
            "ENG_02": ProjectMilestoneState(code="ENG_02", isCompleted=True, note="Auto (SSOT)"),
        }
        self.assertEqual(propagate_cross_triggers(self.triggers, {"ADMIN_08"}, stored), [])

    def test_refires_when_target_was_uncompleted(self) -> None:
        stored = {"ENG_01": ProjectMilestoneState(code="ENG_01", isCompleted=False, provenance=Provenance.MANUAL)}
        fired = propagate_cross_triggers(self.triggers, {"ADMIN_02"}, stored)
        self.assertEqual(fired, [TriggerFiring("ADMIN_02", "ENG_01")])


class CrossTriggerPassTests(unittest.TestCase):
    def test_trigger_fires_once_across_runs(self) -> None:
        rule_set = RuleSet(
            [MilestoneRule(code="ADMIN_01", checkKind=CheckKind.ALWAYS_TRUE)],
            [CrossTrigger(sourceCode="ADMIN_01", targetCode="ENG_01")],
        )
        first = compute_sync(rule_set, [], [], project_id="p1", actor_id="u1", now=NOW)

        trigger_changes = [c for c in first.changes if c.source == SOURCE_CROSS_TRIGGER]
        self.assertEqual([(c.code, c.from_, c.to) for c in trigger_changes], [("ENG_01", False, True)])
        self.assertIn("ADMIN_01", trigger_changes[0].reason)
        self.assertIn("ENG_01", first.result.synced)
        self.assertEqual(first.completed_codes, {"ADMIN_01", "ENG_01"})

        stored = [w.state for w in first.writes]
        second = compute_sync(rule_set, [], stored, project_id="p1", actor_id="u1", now=NOW)
        self.assertEqual(second.changes, [])

    def test_trigger_completion_is_not_revoked_when_source_is(self) -> None:
        rule_set = RuleSet(
            [MilestoneRule(code="ADMIN_02", triggerTypeCode="X", checkKind=CheckKind.ISSUED)],
            [CrossTrigger(sourceCode="ADMIN_02", targetCode="ENG_01")],
        )
        stored = [
            ProjectMilestoneState(code="ADMIN_02", isCompleted=True, provenance=Provenance.DERIVED),
            ProjectMilestoneState(code="ENG_01", isCompleted=True, provenance=Provenance.DERIVED),
        ]
        plan = compute_sync(rule_set, [], stored, project_id="p1", actor_id="u1", now=NOW)
        self.assertEqual([(c.code, c.to) for c in plan.changes], [("ADMIN_02", False)])
        self.assertIn("ENG_01", plan.completed_codes)


if __name__ == "__main__":
    unittest.main()
