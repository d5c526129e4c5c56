"""Trigger matching for automations.

The matcher is a pure filter: given an inbound stimulus and a set of
automations it returns the automations that should start a run, together with
the data each run is seeded with. Automations whose trigger configuration is
malformed are excluded and reported, never matched.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from apscheduler.triggers.cron import CronTrigger

from ..core.exceptions import MalformedTriggerError
from ..core.logger import get_logger
from .models import Automation, TriggerStimulus, TriggerType
from .scheduling import build_cron_trigger, cron_matches, floor_to_minute
from .templating import UNDEFINED, resolve_path

logger = get_logger("automation.triggers")

SCHEDULE_DEDUPE_WINDOW = timedelta(seconds=60)

_EVENT_NAME = re.compile(r"^[a-z0-9_]+(\.[a-z0-9_]+)*(\.\*)?$", re.IGNORECASE)

FILTER_OPERATORS = ("$eq", "$ne", "$in", "$contains", "$gt", "$gte", "$lt", "$lte")

PARAMETER_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "number": (int, float),
    "integer": (int,),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list,),
}


# ----------------------------------------------------------------------
# Parsed trigger configurations
# ----------------------------------------------------------------------
@dataclass
class EventTriggerSpec:
    event: str
    filters: dict[str, Any] = field(default_factory=dict)

    @property
    def is_wildcard(self) -> bool:
        return self.event.endswith(".*")

    def matches_name(self, event_name: str | None) -> bool:
        if not event_name:
            return False
        if self.is_wildcard:
            return event_name.startswith(self.event[:-1])
        return event_name == self.event


@dataclass
class ScheduleTriggerSpec:
    cron_expression: str
    timezone: str
    trigger: CronTrigger


@dataclass
class ToolParameter:
    name: str
    type: str = "string"
    required: bool = False
    description: str = ""


@dataclass
class AIToolTriggerSpec:
    tool_name: str
    tool_description: str = ""
    parameters: list[ToolParameter] = field(default_factory=list)


@dataclass
class ManualTriggerSpec:
    pass


TriggerSpec = EventTriggerSpec | ScheduleTriggerSpec | AIToolTriggerSpec | ManualTriggerSpec


def effective_trigger_config(automation: Automation) -> dict[str, Any]:
    """Trigger settings: the trigger node's payload overlaid with ``trigger_config``."""
    config: dict[str, Any] = {}
    for node in automation.nodes:
        if node.type.is_trigger:
            config.update({k: v for k, v in node.data.items() if k not in {"label", "disabled"}})
            break
    config.update(automation.trigger_config)
    return config


def _parse_event(automation_id: str, config: Mapping[str, Any]) -> EventTriggerSpec:
    event = config.get("event", config.get("eventName"))
    if not isinstance(event, str) or not event.strip():
        raise MalformedTriggerError(automation_id, "event name is missing")
    event = event.strip()
    if event == "*" or not _EVENT_NAME.match(event):
        raise MalformedTriggerError(automation_id, f"invalid event name '{event}'")

    filters = config.get("filters") or {}
    if not isinstance(filters, Mapping):
        raise MalformedTriggerError(automation_id, "filters must be a mapping")
    for key, expected in filters.items():
        if isinstance(expected, Mapping):
            unknown = [op for op in expected if op not in FILTER_OPERATORS]
            if unknown:
                raise MalformedTriggerError(
                    automation_id, f"unknown filter operator {unknown[0]} on '{key}'"
                )
            if "$in" in expected and not isinstance(expected["$in"], list):
                raise MalformedTriggerError(automation_id, f"$in on '{key}' needs a list")
    return EventTriggerSpec(event=event, filters=dict(filters))


def _parse_schedule(automation_id: str, config: Mapping[str, Any]) -> ScheduleTriggerSpec:
    expression = config.get("cronExpression") or config.get("cron") or config.get("schedule")
    if not isinstance(expression, str) or not expression.strip():
        raise MalformedTriggerError(automation_id, "cron expression is missing")
    tz = config.get("timezone") or "UTC"
    try:
        trigger = build_cron_trigger(expression, str(tz))
    except ValueError as exc:
        raise MalformedTriggerError(automation_id, str(exc)) from exc
    return ScheduleTriggerSpec(cron_expression=expression.strip(), timezone=str(tz), trigger=trigger)


def _parse_ai_tool(automation_id: str, config: Mapping[str, Any]) -> AIToolTriggerSpec:
    tool_name = config.get("toolName")
    if not isinstance(tool_name, str) or not tool_name.strip():
        raise MalformedTriggerError(automation_id, "tool name is missing")
    parameters: list[ToolParameter] = []
    for raw in config.get("parameters") or []:
        if not isinstance(raw, Mapping) or not raw.get("name"):
            raise MalformedTriggerError(automation_id, "tool parameters need a name")
        param_type = str(raw.get("type", "string")).lower()
        if param_type not in PARAMETER_TYPES:
            raise MalformedTriggerError(
                automation_id, f"unsupported parameter type '{param_type}' for {raw['name']}"
            )
        parameters.append(
            ToolParameter(
                name=str(raw["name"]),
                type=param_type,
                required=bool(raw.get("required", False)),
                description=str(raw.get("description", "")),
            )
        )
    return AIToolTriggerSpec(
        tool_name=tool_name.strip(),
        tool_description=str(config.get("toolDescription", "")),
        parameters=parameters,
    )


def check_trigger_config(automation: Automation) -> TriggerSpec:
    """Parse and validate an automation's trigger configuration.

    Raises:
        MalformedTriggerError: If the configuration cannot be used for matching.
    """
    config = effective_trigger_config(automation)
    if automation.trigger_type is TriggerType.EVENT:
        return _parse_event(automation.id, config)
    if automation.trigger_type is TriggerType.SCHEDULE:
        return _parse_schedule(automation.id, config)
    if automation.trigger_type is TriggerType.AI_TOOL:
        return _parse_ai_tool(automation.id, config)
    return ManualTriggerSpec()


# ----------------------------------------------------------------------
# Filters and parameters
# ----------------------------------------------------------------------
def _number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None or value is UNDEFINED:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _check_operator(operator: str, actual: Any, expected: Any) -> bool:
    if operator == "$eq":
        return actual == expected
    if operator == "$ne":
        return actual != expected
    if operator == "$in":
        return actual in expected
    if operator == "$contains":
        text = "" if actual in (None, UNDEFINED) else str(actual)
        return str(expected) in text
    left, right = _number(actual), _number(expected)
    if left is None or right is None:
        return False
    if operator == "$gt":
        return left > right
    if operator == "$gte":
        return left >= right
    if operator == "$lt":
        return left < right
    return left <= right


def matches_filters(filters: Mapping[str, Any], payload: Mapping[str, Any]) -> bool:
    """Check event filters against a payload.

    Paths are resolved against the payload first and then against its
    ``record`` section, so filters written for database rows keep working.
    """
    record = payload.get("record")
    for path, expected in filters.items():
        actual = resolve_path(payload, path)
        if actual is UNDEFINED and isinstance(record, Mapping):
            actual = resolve_path(record, path)
        if isinstance(expected, Mapping):
            for operator, operand in expected.items():
                if not _check_operator(operator, actual, operand):
                    return False
        elif actual is UNDEFINED or actual != expected:
            return False
    return True


def check_tool_parameters(spec: AIToolTriggerSpec, payload: Mapping[str, Any]) -> list[str]:
    """Return problems with an AI tool invocation's arguments."""
    problems: list[str] = []
    for param in spec.parameters:
        if param.name not in payload or payload[param.name] is None:
            if param.required:
                problems.append(f"Missing required parameter: {param.name}")
            continue
        value = payload[param.name]
        expected = PARAMETER_TYPES[param.type]
        if isinstance(value, bool) and bool not in expected:
            problems.append(f"Parameter {param.name} must be {param.type}")
        elif not isinstance(value, expected):
            problems.append(f"Parameter {param.name} must be {param.type}")
    return problems


# ----------------------------------------------------------------------
# Matcher
# ----------------------------------------------------------------------
@dataclass
class TriggerMatch:
    """An automation selected to run and the data its run starts with."""

    automation: Automation
    trigger_data: dict[str, Any]


@dataclass
class RejectedTrigger:
    """An automation excluded because its trigger or the invocation was malformed."""

    automation_id: str
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {"automation_id": self.automation_id, "reason": self.reason}


@dataclass
class MatchResult:
    matches: list[TriggerMatch] = field(default_factory=list)
    rejected: list[RejectedTrigger] = field(default_factory=list)

    @property
    def automations(self) -> list[Automation]:
        return [match.automation for match in self.matches]


class TriggerMatcher:
    """Select automations whose trigger accepts a stimulus."""

    def __init__(self, dedupe_window: timedelta = SCHEDULE_DEDUPE_WINDOW) -> None:
        self.dedupe_window = dedupe_window

    def match(
        self,
        stimulus: TriggerStimulus,
        automations: Iterable[Automation],
        now: datetime | None = None,
    ) -> MatchResult:
        """Return the automations a stimulus starts.

        Args:
            stimulus: Inbound event, schedule tick, manual or tool invocation
            automations: Candidate automations (usually the tenant's)
            now: Evaluation time for schedule triggers, defaults to the stimulus time

        Returns:
            MatchResult with matches and rejected automations
        """
        result = MatchResult()
        moment = now or stimulus.occurred_at

        for automation in automations:
            if not automation.enabled:
                continue
            if stimulus.tenant_id and automation.tenant_id != stimulus.tenant_id:
                continue
            if automation.trigger_type is not stimulus.source_type:
                continue
            if stimulus.source_type in (TriggerType.MANUAL, TriggerType.AI_TOOL) and (
                automation.id != stimulus.automation_id
            ):
                continue

            try:
                spec = check_trigger_config(automation)
            except MalformedTriggerError as exc:
                logger.warning("Excluding automation %s: %s", automation.id, exc.reason)
                result.rejected.append(RejectedTrigger(automation.id, exc.reason))
                continue

            if isinstance(spec, EventTriggerSpec):
                if not spec.matches_name(stimulus.event_name):
                    continue
                if spec.filters and not matches_filters(spec.filters, stimulus.payload):
                    continue
            elif isinstance(spec, ScheduleTriggerSpec):
                if not self._schedule_due(automation, spec, moment):
                    continue
            elif isinstance(spec, AIToolTriggerSpec):
                problems = check_tool_parameters(spec, stimulus.payload)
                if problems:
                    reason = "; ".join(problems)
                    logger.warning("Rejecting tool call for %s: %s", automation.id, reason)
                    result.rejected.append(RejectedTrigger(automation.id, reason))
                    continue

            result.matches.append(
                TriggerMatch(automation, self.build_trigger_data(automation, stimulus, moment))
            )

        logger.debug(
            "Stimulus %s/%s matched %d automation(s)",
            stimulus.source_type.value,
            stimulus.event_name or stimulus.automation_id or "-",
            len(result.matches),
        )
        return result

    def _schedule_due(
        self, automation: Automation, spec: ScheduleTriggerSpec, moment: datetime
    ) -> bool:
        if not cron_matches(spec.trigger, moment):
            return False
        last = automation.last_executed_at
        if last is not None:
            # Compared in whole minutes.
            if abs(floor_to_minute(moment) - floor_to_minute(last)) < self.dedupe_window:
                return False
        return True

    @staticmethod
    def build_trigger_data(
        automation: Automation, stimulus: TriggerStimulus, moment: datetime | None = None
    ) -> dict[str, Any]:
        """Seed data for a run: the payload plus a ``trigger`` section describing the start."""
        data = copy.deepcopy(stimulus.payload)
        moment = moment or stimulus.occurred_at
        trigger: dict[str, Any] = {
            "type": automation.trigger_type.value,
            "timestamp": moment.isoformat(),
        }
        if stimulus.source_type is TriggerType.EVENT:
            trigger["event"] = stimulus.event_name
        elif stimulus.source_type is TriggerType.SCHEDULE:
            config = effective_trigger_config(automation)
            trigger["scheduled_at"] = floor_to_minute(moment).isoformat()
            trigger["timezone"] = config.get("timezone") or "UTC"
        else:
            trigger.update(copy.deepcopy(stimulus.payload))
        existing = data.get("trigger")
        if isinstance(existing, Mapping):
            trigger = {**trigger, **existing}
        data["trigger"] = trigger
        return data


__all__ = [
    "AIToolTriggerSpec",
    "EventTriggerSpec",
    "FILTER_OPERATORS",
    "ManualTriggerSpec",
    "MatchResult",
    "RejectedTrigger",
    "ScheduleTriggerSpec",
    "ToolParameter",
    "TriggerMatch",
    "TriggerMatcher",
    "check_tool_parameters",
    "check_trigger_config",
    "effective_trigger_config",
    "matches_filters",
]
