"""
Event-triggered actions.

Matches a recorded event against the server-supplied triggers for its
name and returns the first winning action. Conditions are reverse-polish
token lists, e.g. [{"p": "level"}, {"i": 5}, {"o": "greater than"}].
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .action_store import ActionStore
from .schema import Event, EventTrigger

log = logging.getLogger(__name__)

LITERAL_TYPES = {
    "i": int,
    "f": float,
    "s": str,
    "b": bool,
}


class ConditionMismatch(Exception):
    """Condition cannot be evaluated against the given parameters."""


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _comparable(left: Any, right: Any) -> bool:
    if _is_number(left) and _is_number(right):
        return True
    return type(left) is type(right) and isinstance(left, (str, bool))


def _logical(fn):
    def apply(left, right):
        if not isinstance(left, bool) or not isinstance(right, bool):
            raise ConditionMismatch("logical operator on non-boolean operands")
        return fn(left, right)
    return apply


def _equality(fn):
    def apply(left, right):
        if not _comparable(left, right):
            raise ConditionMismatch(f"cannot compare {type(left).__name__} with {type(right).__name__}")
        return fn(left, right)
    return apply


def _ordering(fn):
    def apply(left, right):
        if not (_is_number(left) and _is_number(right)):
            raise ConditionMismatch("ordering requires numeric operands")
        return fn(left, right)
    return apply


OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "and": _logical(lambda a, b: a and b),
    "or": _logical(lambda a, b: a or b),
    "equal to": _equality(lambda a, b: a == b),
    "not equal to": _equality(lambda a, b: a != b),
    "greater than": _ordering(lambda a, b: a > b),
    "greater than eq": _ordering(lambda a, b: a >= b),
    "less than": _ordering(lambda a, b: a < b),
    "less than eq": _ordering(lambda a, b: a <= b),
}


def evaluate_condition(condition: Sequence[Mapping[str, Any]], params: Mapping[str, Any]) -> bool:
    """
    Evaluate a reverse-polish condition against event parameters.

    An empty condition is true. Missing parameters, unknown tokens and
    type mismatches make the condition false rather than raising.
    """
    if not condition:
        return True

    stack: List[Any] = []
    try:
        for token in condition:
            if "o" in token:
                op = OPERATORS.get(str(token["o"]).lower())
                if op is None or len(stack) < 2:
                    raise ConditionMismatch(f"bad operator token {dict(token)}")
                right = stack.pop()
                left = stack.pop()
                stack.append(op(left, right))
            elif "p" in token:
                name = token["p"]
                if name not in params:
                    raise ConditionMismatch(f"missing parameter {name}")
                stack.append(params[name])
            else:
                for key, kind in LITERAL_TYPES.items():
                    if key in token:
                        value = token[key]
                        if kind is float and _is_number(value):
                            value = float(value)
                        elif kind is int and isinstance(value, float) and value.is_integer():
                            value = int(value)
                        if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
                            raise ConditionMismatch(f"bad literal {dict(token)}")
                        stack.append(value)
                        break
                else:
                    raise ConditionMismatch(f"unknown token {dict(token)}")
    except ConditionMismatch as e:
        log.debug("Condition not met: %s", e)
        return False

    return len(stack) == 1 and stack[0] is True


class EventAction:
    """The outcome of recording an event: zero or one triggered action."""

    def __init__(
        self,
        event: Event,
        trigger: Optional[EventTrigger] = None,
        payload: Optional[Dict[str, Any]] = None,
        action_store: Optional[ActionStore] = None
    ):
        self.event = event
        self.trigger = trigger
        self.payload = payload
        self.action_store = action_store

    @classmethod
    def empty(cls, event: Event) -> "EventAction":
        return cls(event)

    @property
    def triggered(self) -> bool:
        return self.trigger is not None

    def run(self, handler: Optional[Callable[[Dict[str, Any]], None]] = None) -> bool:
        """
        Hand the payload to handler if a trigger fired.

        A stored persistent action is consumed once delivered.

        Returns:
            True if an action was delivered
        """
        if not self.triggered:
            return False
        if handler is not None:
            handler(self.payload)
        if self.trigger.is_persistent and self.action_store is not None:
            self.action_store.remove(self.trigger.id)
        return True

    def __repr__(self):
        trigger_id = self.trigger.id if self.trigger else None
        return f"EventAction(event={self.event.name!r}, trigger={trigger_id!r})"


class TriggerEvaluator:
    """
    Evaluates events against the current trigger mapping.

    The mapping and its execution counters are replaced together as one
    tuple, so evaluation never sees a half-loaded rule set.
    """

    def __init__(self, action_store: ActionStore):
        self.action_store = action_store
        self._state: Tuple[Mapping[str, Tuple[EventTrigger, ...]], Dict[str, int]] = ({}, {})
        self._count_lock = threading.Lock()

    @property
    def triggers(self) -> Mapping[str, Tuple[EventTrigger, ...]]:
        return self._state[0]

    def load(self, triggers: Mapping[str, Tuple[EventTrigger, ...]]):
        """Replace the rule set wholesale."""
        self._state = (triggers, {})

    def evaluate(self, event: Event) -> EventAction:
        """
        Find the first trigger for event.name whose condition holds.

        Returns:
            EventAction, empty when nothing matched
        """
        triggers, counts = self._state
        for trigger in triggers.get(event.name, ()):
            if not evaluate_condition(trigger.condition, event.params):
                continue
            if trigger.limit is not None:
                with self._count_lock:
                    fired = counts.get(trigger.id, 0)
                    if fired >= trigger.limit:
                        continue
                    counts[trigger.id] = fired + 1
            return EventAction(event, trigger, self._resolve_payload(trigger), self.action_store)

        return EventAction.empty(event)

    def _resolve_payload(self, trigger: EventTrigger) -> Dict[str, Any]:
        payload = dict(trigger.response)
        if trigger.is_persistent:
            stored = self.action_store.get(trigger.id)
            if stored is not None:
                payload["parameters"] = stored
        return payload
