import unittest

from solartrack.milestones.rules import RuleSet, RuleSetError, order_rules
from solartrack.models import CheckKind, CrossTrigger, MilestoneRule


def _rule(code: str, *prereqs: str, kind: CheckKind = CheckKind.ALWAYS_TRUE) -> MilestoneRule:
    return MilestoneRule(code=code, checkKind=kind, prerequisites=list(prereqs))


class OrderRulesTests(unittest.TestCase):
    def test_presorted_rules_keep_their_order(self) -> None:
        rules = [_rule("A"), _rule("B", "A"), _rule("C", "A", "B")]
        self.assertEqual([r.code for r in order_rules(rules)], ["A", "B", "C"])

    def test_prerequisites_are_moved_ahead_of_dependents(self) -> None:
        rules = [_rule("C", "A", "B"), _rule("B", "A"), _rule("A")]
        self.assertEqual([r.code for r in order_rules(rules)], ["A", "B", "C"])

    def test_independent_rules_keep_configured_relative_order(self) -> None:
        rules = [_rule("Z"), _rule("Y", "Z"), _rule("M"), _rule("K")]
        self.assertEqual([r.code for r in order_rules(rules)], ["Z", "Y", "M", "K"])

    def test_two_rule_cycle_is_rejected_before_evaluation(self) -> None:
        with self.assertRaises(RuleSetError) as ctx:
            order_rules([_rule("X", "Y"), _rule("Y", "X")])
        message = str(ctx.exception)
        self.assertIn("cycle", message)
        self.assertIn("X", message)
        self.assertIn("Y", message)

    def test_cycle_report_names_only_the_loop(self) -> None:
        rules = [_rule("ROOT"), _rule("P", "ROOT", "R"), _rule("Q", "P"), _rule("R", "Q")]
        with self.assertRaises(RuleSetError) as ctx:
            order_rules(rules)
        self.assertNotIn("ROOT", str(ctx.exception))

    def test_self_prerequisite_is_a_cycle(self) -> None:
        with self.assertRaises(RuleSetError):
            order_rules([_rule("SELF", "SELF")])

    def test_undefined_prerequisite_is_rejected(self) -> None:
        with self.assertRaises(RuleSetError) as ctx:
            order_rules([_rule("A"), _rule("B", "MISSING")])
        self.assertIn("MISSING", str(ctx.exception))

    def test_duplicate_codes_are_rejected(self) -> None:
        with self.assertRaises(RuleSetError):
            order_rules([_rule("A"), _rule("A")])

    def test_duplicate_prerequisite_entries_do_not_stall_ordering(self) -> None:
        rules = [_rule("A"), _rule("B", "A", "A")]
        self.assertEqual([r.code for r in order_rules(rules)], ["A", "B"])


class RuleSetTests(unittest.TestCase):
    def test_cross_trigger_source_must_be_a_rule(self) -> None:
        with self.assertRaises(RuleSetError):
            RuleSet([_rule("A")], [CrossTrigger(sourceCode="NOPE", targetCode="ENG_1")])

    def test_cross_trigger_target_must_not_be_a_rule(self) -> None:
        with self.assertRaises(RuleSetError):
            RuleSet([_rule("A"), _rule("B", "A")], [CrossTrigger(sourceCode="A", targetCode="B")])

    def test_duplicate_cross_triggers_are_collapsed(self) -> None:
        triggers = [
            CrossTrigger(sourceCode="A", targetCode="ENG_1"),
            CrossTrigger(sourceCode="A", targetCode="ENG_1"),
            CrossTrigger(sourceCode="A", targetCode="ENG_2"),
        ]
        rule_set = RuleSet([_rule("A")], triggers)
        self.assertEqual(len(rule_set.cross_triggers), 2)
        self.assertEqual(rule_set.trigger_targets, ["ENG_1", "ENG_2"])

    def test_lookup_helpers(self) -> None:
        rule_set = RuleSet([_rule("B", "A"), _rule("A")])
        self.assertEqual(rule_set.codes, ["A", "B"])
        self.assertIn("A", rule_set)
        self.assertNotIn("C", rule_set)
        self.assertEqual(rule_set.get("B").prerequisites, ["A"])
        self.assertIsNone(rule_set.get("C"))
        self.assertEqual(len(rule_set), 2)


if __name__ == "__main__":
    unittest.main()
