import unittest

from solartrack.milestones.writer import SOURCE_CROSS_TRIGGER, completed_note, diff_milestone, reconcile_plan
from solartrack.milestones.engine import compute_sync
from solartrack.milestones.rules import RuleSet
from solartrack.models import CheckKind, CrossTrigger, MilestoneRule, ProjectMilestoneState, Provenance

NOW = "2024-05-01T00:00:00Z"


class DiffMilestoneTests(unittest.TestCase):
    def test_unchanged_state_produces_no_write(self) -> None:
        existing = ProjectMilestoneState(id=3, code="A", isCompleted=True)
        self.assertIsNone(diff_milestone("A", True, existing, actor_id="u", now=NOW, note="n"))
        self.assertIsNone(diff_milestone("A", False, None, actor_id="u", now=NOW, note="n"))

    def test_new_completion_inserts_attributed_row(self) -> None:
        change, write = diff_milestone("A", True, None, actor_id="u1", now=NOW, note=completed_note())
        self.assertEqual((change.code, change.from_, change.to), ("A", False, True))
        self.assertEqual(write.action, "insert")
        self.assertIsNone(write.previous)
        self.assertEqual(write.state.completedByActorId, "u1")
        self.assertEqual(write.state.provenance, Provenance.DERIVED)

    def test_existing_row_is_updated_in_place(self) -> None:
        existing = ProjectMilestoneState(id=9, code="A", isCompleted=True, completedAt="2024-01-01", note="x (SSOT)")
        change, write = diff_milestone("A", False, existing, actor_id="u2", now=NOW, note="revoked (SSOT)")
        self.assertEqual(write.action, "update")
        self.assertEqual(write.state.id, 9)
        self.assertIsNone(write.state.completedAt)
        self.assertIs(write.previous, existing)
        self.assertEqual(change.model_dump(by_alias=True)["from"], True)


class SyncPlanTests(unittest.TestCase):
    def test_rule_changes_precede_cross_trigger_changes(self) -> None:
        rule_set = RuleSet(
            [
                MilestoneRule(code="A", checkKind=CheckKind.ALWAYS_TRUE),
                MilestoneRule(code="B", checkKind=CheckKind.ALL_PREREQUISITES, prerequisites=["A"]),
            ],
            [CrossTrigger(sourceCode="A", targetCode="ENG")],
        )
        plan = compute_sync(rule_set, [], [], project_id="p1", actor_id="u1", now=NOW)
        self.assertEqual([c.code for c in plan.changes], ["A", "B", "ENG"])
        self.assertEqual(plan.writes[-1].source, SOURCE_CROSS_TRIGGER)

    def test_audit_records_capture_old_and_new_values(self) -> None:
        rule_set = RuleSet([MilestoneRule(code="A", checkKind=CheckKind.ALWAYS_TRUE)])
        previous = ProjectMilestoneState(id=4, code="A", isCompleted=False, note="reset by admin", provenance=Provenance.MANUAL)
        plan = compute_sync(rule_set, [], [previous], project_id="p1", actor_id="u1", now=NOW)

        records = plan.audit_records()
        self.assertEqual(len(records), 1)
        record = records[0]
        self.assertEqual(record.projectId, "p1")
        self.assertEqual(record.milestoneCode, "A")
        self.assertEqual(record.actorId, "u1")
        self.assertEqual(record.action, "update")
        self.assertEqual(record.oldValue["isCompleted"], False)
        self.assertEqual(record.newValue["isCompleted"], True)
        self.assertEqual(record.newValue["provenance"], "derived")
        self.assertEqual(record.createdAt, NOW)


class ReconcilePlanTests(unittest.TestCase):
    def setUp(self) -> None:
        rule_set = RuleSet(
            [
                MilestoneRule(code="A", checkKind=CheckKind.ALWAYS_TRUE),
                MilestoneRule(code="B", checkKind=CheckKind.ALL_PREREQUISITES, prerequisites=["A"]),
            ]
        )
        self.plan = compute_sync(rule_set, [], [], project_id="p1", actor_id="u1", now=NOW)

    def test_writes_already_in_storage_are_dropped(self) -> None:
        landed = ProjectMilestoneState(id=1, code="A", isCompleted=True, provenance=Provenance.DERIVED, updatedAt=NOW)
        rebased = reconcile_plan(self.plan, [landed])

        self.assertEqual([w.code for w in rebased.writes], ["B"])
        self.assertEqual([c.code for c in rebased.changes], ["B"])
        self.assertEqual(rebased.completed_codes, {"A", "B"})
        self.assertEqual(len(self.plan.writes), 2)

    def test_row_changed_by_manual_action_is_left_alone(self) -> None:
        self.assertIn("A", self.plan.result.synced)
        manual = ProjectMilestoneState(id=2, code="A", isCompleted=False, note="on hold", provenance=Provenance.MANUAL, updatedAt=NOW)
        rebased = reconcile_plan(self.plan, [manual])

        self.assertEqual([w.code for w in rebased.writes], ["B"])
        self.assertNotIn("A", rebased.result.synced)
        self.assertIn("A", rebased.result.unsynced)
        self.assertEqual(rebased.completed_codes, {"B"})
        self.assertEqual(len(rebased.audit_records()), 1)

    def test_kept_write_targets_the_current_row(self) -> None:
        revoked = ProjectMilestoneState(id=7, code="A", isCompleted=False, note="revoked (SSOT)", provenance=Provenance.DERIVED, updatedAt=NOW)
        rebased = reconcile_plan(self.plan, [revoked])

        write = rebased.writes[0]
        self.assertEqual(write.code, "A")
        self.assertEqual(write.action, "update")
        self.assertEqual(write.state.id, 7)
        self.assertIs(write.previous, revoked)
        self.assertEqual(self.plan.writes[0].action, "insert")
        self.assertIsNone(self.plan.writes[0].state.id)


if __name__ == "__main__":
    unittest.main()
