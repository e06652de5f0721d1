"""
Data model for the telemetry pipeline.

Defines dataclasses for events, engagements, server-delivered triggers and
the session configuration snapshot, plus the typed decode step that turns
the loosely-typed configuration JSON into those types.
"""

import logging
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

log = logging.getLogger(__name__)

ENGAGEMENT_FLAVOUR = "engagement"
PERSISTENT_FLAG = "ddnaIsPersistent"


@dataclass
class Event:
    """A named, parameterized record produced by the host."""
    name: str
    params: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.name:
            raise ValueError("Event name cannot be empty")

    def add_param(self, key: str, value: Any) -> "Event":
        """Add a parameter, returning self for chaining."""
        self.params[key] = value
        return self

    def as_dict(self) -> Dict[str, Any]:
        """Convert to the eventName/eventParams wire shape."""
        return {
            "eventName": self.name,
            "eventParams": dict(self.params),
        }


@dataclass
class Engagement:
    """A request for a remote decision at a named decision point."""
    decision_point: str
    flavour: str = ENGAGEMENT_FLAVOUR
    parameters: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.decision_point:
            raise ValueError("Decision point cannot be empty")

    def add_param(self, key: str, value: Any) -> "Engagement":
        self.parameters[key] = value
        return self

    @property
    def decision_point_and_flavour(self) -> str:
        return f"{self.decision_point}@{self.flavour}"


@dataclass(frozen=True)
class EventTrigger:
    """A server-defined rule mapping an event + condition to an action."""
    id: str
    index: int
    event_name: str
    condition: Tuple[Mapping[str, Any], ...] = ()
    priority: int = 0
    response: Mapping[str, Any] = field(default_factory=dict)
    limit: Optional[int] = None
    campaign_id: Optional[int] = None
    variant_id: Optional[int] = None

    @property
    def sort_key(self) -> Tuple[int, int]:
        """Priority descending, then sequence index ascending."""
        return (-self.priority, self.index)

    @property
    def parameters(self) -> Dict[str, Any]:
        params = self.response.get("parameters")
        return dict(params) if isinstance(params, dict) else {}

    @property
    def is_persistent(self) -> bool:
        return self.parameters.get(PERSISTENT_FLAG) is True


@dataclass(frozen=True)
class SessionConfig:
    """
    Immutable snapshot of remotely configured session state.

    Replaced wholesale on each successful configuration fetch so readers
    never observe a half-applied update.
    """
    dp_whitelist: Tuple[str, ...] = ()
    events_whitelist: Tuple[str, ...] = ()
    triggers: Mapping[str, Tuple[EventTrigger, ...]] = field(
        default_factory=lambda: MappingProxyType({}))
    image_cache: Tuple[str, ...] = ()
    is_cached: bool = False

    def allows_event(self, name: str) -> bool:
        return not self.events_whitelist or name in self.events_whitelist

    def allows_decision_point(self, dp_and_flavour: str) -> bool:
        return not self.dp_whitelist or dp_and_flavour in self.dp_whitelist

    def triggers_for(self, event_name: str) -> Tuple[EventTrigger, ...]:
        return self.triggers.get(event_name, ())


def _as_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value)
    return default


def _string_list(value: Any) -> Optional[Tuple[str, ...]]:
    if not isinstance(value, list):
        return None
    return tuple(v for v in value if isinstance(v, str))


def decode_trigger(index: int, data: Any) -> Optional[EventTrigger]:
    """
    Decode one trigger DTO, returning None if it is unusable.

    Args:
        index: Position in the server list (tie-break)
        data: Raw JSON object
    """
    if not isinstance(data, dict):
        log.warning("Ignoring trigger %d: not an object", index)
        return None

    event_name = data.get("eventName")
    if not isinstance(event_name, str) or not event_name:
        log.warning("Ignoring trigger %d: missing eventName", index)
        return None

    condition = data.get("condition", [])
    if not isinstance(condition, list) or not all(isinstance(t, dict) for t in condition):
        log.warning("Ignoring trigger %d: malformed condition", index)
        return None

    response = data.get("response", {})
    if not isinstance(response, dict):
        response = {}

    campaign_id = _as_int(data.get("campaignID"))
    variant_id = _as_int(data.get("variantID"))
    trigger_id = data.get("id")
    if trigger_id is None:
        if campaign_id is not None:
            trigger_id = f"{campaign_id}:{variant_id if variant_id is not None else 0}"
        else:
            trigger_id = f"{event_name}:{index}"

    limit = _as_int(data.get("limit"))

    return EventTrigger(
        id=str(trigger_id),
        index=index,
        event_name=event_name,
        condition=tuple(MappingProxyType(dict(t)) for t in condition),
        priority=_as_int(data.get("priority"), 0),
        response=MappingProxyType(dict(response)),
        limit=limit if limit is not None and limit > 0 else None,
        campaign_id=campaign_id,
        variant_id=variant_id,
    )


def group_triggers(triggers: List[EventTrigger]) -> Mapping[str, Tuple[EventTrigger, ...]]:
    """Group triggers by event name, each group sorted by sort_key."""
    groups: Dict[str, List[EventTrigger]] = {}
    for trigger in triggers:
        groups.setdefault(trigger.event_name, []).append(trigger)
    return MappingProxyType({
        name: tuple(sorted(group, key=lambda t: t.sort_key))
        for name, group in groups.items()
    })


def decode_session_config(
    response: Any,
    previous: SessionConfig
) -> Optional[SessionConfig]:
    """
    Decode a session configuration response into a new snapshot.

    Keys absent from the response keep their previous value; unknown keys
    are ignored.

    Args:
        response: Parsed engagement response
        previous: Snapshot currently in effect

    Returns:
        New SessionConfig, or None when the response is empty or has no
        usable "parameters" object (configuration failure)
    """
    if not isinstance(response, dict) or not response:
        return None

    parameters = response.get("parameters")
    if not isinstance(parameters, dict):
        return None

    changes: Dict[str, Any] = {}

    dp_whitelist = _string_list(parameters.get("dpWhitelist"))
    if dp_whitelist is not None:
        changes["dp_whitelist"] = dp_whitelist

    events_whitelist = _string_list(parameters.get("eventsWhitelist"))
    if events_whitelist is not None:
        changes["events_whitelist"] = events_whitelist

    raw_triggers = parameters.get("triggers")
    if isinstance(raw_triggers, list):
        decoded = [decode_trigger(i, t) for i, t in enumerate(raw_triggers)]
        changes["triggers"] = group_triggers([t for t in decoded if t is not None])

    image_cache = _string_list(parameters.get("imageCache"))
    if image_cache is not None:
        changes["image_cache"] = image_cache

    cached = parameters.get("isCachedResponse")
    changes["is_cached"] = cached if isinstance(cached, bool) else False

    return replace(previous, **changes)
