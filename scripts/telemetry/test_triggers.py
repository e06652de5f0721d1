#!/usr/bin/env python3
"""
Tests for trigger conditions and evaluation.

Run with: python3 -m pytest scripts/telemetry/test_triggers.py -v
"""

import sys
import unittest
from pathlib import Path

if __name__ == "__main__":
    sys.path.insert(0, str(Path(__file__).parent.parent))

from telemetry.action_store import ActionStore
from telemetry.schema import Event, decode_trigger, group_triggers
from telemetry.triggers import TriggerEvaluator, evaluate_condition


def trigger(index, event_name="levelUp", priority=0, condition=None, response=None, **extra):
    data = {
        "eventName": event_name,
        "priority": priority,
        "condition": condition or [],
        "response": response or {"parameters": {"index": index}},
        "campaignID": 100 + index,
        "variantID": 1,
    }
    data.update(extra)
    return decode_trigger(index, data)


class TestConditions(unittest.TestCase):
    """Test reverse-polish condition evaluation."""

    def test_empty_condition_is_true(self):
        self.assertTrue(evaluate_condition([], {}))

    def test_numeric_comparisons(self):
        params = {"level": 5, "score": 2.5}
        self.assertTrue(evaluate_condition([{"p": "level"}, {"i": 4}, {"o": "greater than"}], params))
        self.assertTrue(evaluate_condition([{"p": "level"}, {"i": 5}, {"o": "greater than eq"}], params))
        self.assertFalse(evaluate_condition([{"p": "level"}, {"i": 5}, {"o": "less than"}], params))
        self.assertTrue(evaluate_condition([{"p": "score"}, {"f": 2.5}, {"o": "less than eq"}], params))
        self.assertTrue(evaluate_condition([{"p": "level"}, {"f": 5.0}, {"o": "equal to"}], params))

    def test_string_and_bool_equality(self):
        params = {"mode": "hard", "paid": True}
        self.assertTrue(evaluate_condition([{"p": "mode"}, {"s": "hard"}, {"o": "equal to"}], params))
        self.assertTrue(evaluate_condition([{"p": "mode"}, {"s": "easy"}, {"o": "not equal to"}], params))
        self.assertTrue(evaluate_condition([{"p": "paid"}, {"b": True}, {"o": "equal to"}], params))

    def test_logical_operators(self):
        params = {"level": 5, "mode": "hard"}
        cond = [
            {"p": "level"}, {"i": 3}, {"o": "greater than"},
            {"p": "mode"}, {"s": "easy"}, {"o": "equal to"},
            {"o": "or"},
        ]
        self.assertTrue(evaluate_condition(cond, params))
        cond[-1] = {"o": "and"}
        self.assertFalse(evaluate_condition(cond, params))

    def test_missing_parameter_does_not_match(self):
        self.assertFalse(evaluate_condition([{"p": "level"}, {"i": 1}, {"o": "equal to"}], {}))

    def test_type_mismatch_does_not_match(self):
        params = {"mode": "hard", "paid": True}
        self.assertFalse(evaluate_condition([{"p": "mode"}, {"i": 1}, {"o": "greater than"}], params))
        self.assertFalse(evaluate_condition([{"p": "paid"}, {"i": 1}, {"o": "equal to"}], params))
        self.assertFalse(evaluate_condition([{"p": "mode"}, {"s": "x"}, {"o": "and"}], params))

    def test_malformed_tokens_do_not_match(self):
        self.assertFalse(evaluate_condition([{"o": "equal to"}], {}))
        self.assertFalse(evaluate_condition([{"x": 1}], {}))
        self.assertFalse(evaluate_condition([{"i": 1}, {"i": 1}, {"o": "xor"}], {}))
        self.assertFalse(evaluate_condition([{"i": 1}], {}))


class TestTriggerEvaluator(unittest.TestCase):
    """Test first-match evaluation over ordered trigger groups."""

    def setUp(self):
        self.actions = ActionStore()
        self.evaluator = TriggerEvaluator(self.actions)

    def test_no_triggers_for_event(self):
        self.evaluator.load(group_triggers([trigger(0, event_name="other")]))
        action = self.evaluator.evaluate(Event("levelUp"))
        self.assertFalse(action.triggered)
        self.assertFalse(action.run(lambda payload: self.fail("should not run")))

    def test_priority_wins(self):
        self.evaluator.load(group_triggers([
            trigger(0, priority=1),
            trigger(1, priority=5),
            trigger(2, priority=3),
        ]))
        action = self.evaluator.evaluate(Event("levelUp"))
        self.assertEqual(action.trigger.index, 1)
        self.assertEqual(action.payload["parameters"]["index"], 1)

    def test_sequence_index_breaks_ties(self):
        self.evaluator.load(group_triggers([
            trigger(3, priority=2),
            trigger(1, priority=2),
            trigger(2, priority=2),
        ]))
        for _ in range(3):
            self.assertEqual(self.evaluator.evaluate(Event("levelUp")).trigger.index, 1)

    def test_first_true_condition_wins(self):
        self.evaluator.load(group_triggers([
            trigger(0, priority=9, condition=[{"p": "level"}, {"i": 10}, {"o": "greater than"}]),
            trigger(1, priority=1, condition=[{"p": "level"}, {"i": 1}, {"o": "greater than"}]),
        ]))
        self.assertEqual(self.evaluator.evaluate(Event("levelUp", {"level": 5})).trigger.index, 1)
        self.assertEqual(self.evaluator.evaluate(Event("levelUp", {"level": 50})).trigger.index, 0)
        self.assertFalse(self.evaluator.evaluate(Event("levelUp", {"level": 0})).triggered)

    def test_execution_limit(self):
        self.evaluator.load(group_triggers([trigger(0, priority=2, limit=2), trigger(1)]))
        picks = [self.evaluator.evaluate(Event("levelUp")).trigger.index for _ in range(4)]
        self.assertEqual(picks, [0, 0, 1, 1])

        # New rule set resets the counters
        self.evaluator.load(group_triggers([trigger(0, limit=1)]))
        self.assertTrue(self.evaluator.evaluate(Event("levelUp")).triggered)

    def test_persistent_payload_resolved_from_store(self):
        t = trigger(0, response={"parameters": {"ddnaIsPersistent": True, "gift": "live"}})
        self.actions.put(t.id, {"ddnaIsPersistent": True, "gift": "stored"})
        self.evaluator.load(group_triggers([t]))

        action = self.evaluator.evaluate(Event("levelUp"))

        received = []
        self.assertTrue(action.run(received.append))
        self.assertEqual(received[0]["parameters"]["gift"], "stored")

    def test_run_consumes_stored_action(self):
        t = trigger(0, response={"parameters": {"ddnaIsPersistent": True, "gift": "live"}})
        self.actions.put(t.id, {"ddnaIsPersistent": True, "gift": "stored"})
        self.evaluator.load(group_triggers([t]))

        self.evaluator.evaluate(Event("levelUp")).run()

        self.assertNotIn(t.id, self.actions)
        self.assertEqual(self.evaluator.evaluate(Event("levelUp")).payload["parameters"]["gift"], "live")

    def test_unrun_action_stays_stored(self):
        t = trigger(0, response={"parameters": {"ddnaIsPersistent": True}})
        self.actions.put(t.id, {"gift": "stored"})
        self.evaluator.load(group_triggers([t]))

        self.assertTrue(self.evaluator.evaluate(Event("levelUp")).triggered)
        self.assertIn(t.id, self.actions)

    def test_persistent_falls_back_to_live_response(self):
        t = trigger(0, response={"parameters": {"ddnaIsPersistent": True, "gift": "live"}})
        self.evaluator.load(group_triggers([t]))
        self.assertEqual(self.evaluator.evaluate(Event("levelUp")).payload["parameters"]["gift"], "live")


class TestDecodeTrigger(unittest.TestCase):

    def test_identity_from_campaign_and_variant(self):
        self.assertEqual(decode_trigger(0, {"eventName": "e", "campaignID": 7, "variantID": 3}).id, "7:3")
        self.assertEqual(decode_trigger(4, {"eventName": "e"}).id, "e:4")
        self.assertEqual(decode_trigger(0, {"eventName": "e", "id": "abc"}).id, "abc")

    def test_rejects_unusable_entries(self):
        self.assertIsNone(decode_trigger(0, "nope"))
        self.assertIsNone(decode_trigger(0, {"priority": 1}))
        self.assertIsNone(decode_trigger(0, {"eventName": "e", "condition": "bad"}))

    def test_persistent_flag(self):
        t = decode_trigger(0, {"eventName": "e", "response": {"parameters": {"ddnaIsPersistent": True}}})
        self.assertTrue(t.is_persistent)
        self.assertFalse(decode_trigger(0, {"eventName": "e"}).is_persistent)


if __name__ == "__main__":
    unittest.main()
