"""Graph arena for automations and the validation applied when they are saved.

Nodes are kept in a dictionary keyed by id and edges in adjacency lists keyed by
source node id and handle. The walker only ever moves between ids, so loops in
a user-authored graph are bounded by counting visits instead of following
object references.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from ..core.exceptions import AmbiguousEdgeError, AutomationConfigError
from .conditions import ConditionEvaluator, condition_from_node_data
from .models import TRIGGER_NODE_TYPES, Automation, Edge, Node, NodeType
from .templating import UNDEFINED, resolve_path

BRANCH_HANDLES = ("true", "false")


class AutomationGraph:
    """Read-only adjacency view over an automation's nodes and edges."""

    def __init__(self, automation: Automation) -> None:
        self.automation = automation
        self._nodes: dict[str, Node] = {node.id: node for node in automation.nodes}
        self._outgoing: dict[str, list[Edge]] = {node_id: [] for node_id in self._nodes}
        for edge in automation.edges:
            self._outgoing[edge.source].append(edge)
        self.trigger_node = self._find_trigger()

    def _find_trigger(self) -> Node:
        triggers = [node for node in self._nodes.values() if node.type.is_trigger]
        if not triggers:
            raise AutomationConfigError(
                f"Automation '{self.automation.id}' has no trigger node"
            )
        if len(triggers) > 1:
            ids = ", ".join(node.id for node in triggers)
            raise AutomationConfigError(
                f"Automation '{self.automation.id}' has several trigger nodes: {ids}"
            )
        trigger = triggers[0]
        if len(self._outgoing[trigger.id]) > 1:
            raise AmbiguousEdgeError(trigger.id, len(self._outgoing[trigger.id]))
        return trigger

    def node(self, node_id: str) -> Node:
        return self._nodes[node_id]

    @property
    def nodes(self) -> Mapping[str, Node]:
        return self._nodes

    def outgoing(self, node_id: str) -> list[Edge]:
        return list(self._outgoing.get(node_id, ()))

    def targets(self, node_id: str, handle: str | None = None) -> list[str]:
        """Targets of edges leaving ``node_id`` with the given source handle."""
        return [
            edge.target
            for edge in self._outgoing.get(node_id, ())
            if edge.source_handle == handle
        ]

    def first_target(self, node_id: str) -> str | None:
        edges = self._outgoing.get(node_id)
        return edges[0].target if edges else None

    def single_target(self, node_id: str) -> str | None:
        """The only target of a plain node.

        Raises:
            AmbiguousEdgeError: If the node has more than one outgoing edge.
        """
        edges = self._outgoing.get(node_id, [])
        if len(edges) > 1:
            raise AmbiguousEdgeError(node_id, len(edges))
        return edges[0].target if edges else None

    def reachable(self) -> set[str]:
        """Ids of nodes reachable from the trigger node, the trigger included."""
        seen = {self.trigger_node.id}
        queue = deque([self.trigger_node.id])
        while queue:
            current = queue.popleft()
            for edge in self._outgoing.get(current, ()):
                if edge.target not in seen:
                    seen.add(edge.target)
                    queue.append(edge.target)
        return seen


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------
@dataclass
class ValidationIssue:
    """One finding about an automation definition."""

    message: str
    severity: str = "error"
    node_id: str | None = None
    field: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "severity": self.severity,
            "node_id": self.node_id,
            "field": self.field,
        }


@dataclass
class ValidationReport:
    """Errors block execution; warnings are advisory."""

    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def error(self, message: str, node_id: str | None = None, field_name: str | None = None) -> None:
        self.errors.append(ValidationIssue(message, "error", node_id, field_name))

    def warn(self, message: str, node_id: str | None = None, field_name: str | None = None) -> None:
        self.warnings.append(ValidationIssue(message, "warning", node_id, field_name))

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [issue.to_dict() for issue in self.errors],
            "warnings": [issue.to_dict() for issue in self.warnings],
        }


@dataclass(frozen=True)
class FieldRule:
    field: str
    message: str
    min_length: int | None = None


NODE_FIELD_RULES: dict[NodeType, tuple[FieldRule, ...]] = {
    NodeType.TRIGGER_EVENT: (FieldRule("event", "Select an event to trigger on"),),
    NodeType.TRIGGER_SCHEDULE: (
        FieldRule("cronExpression", "Set a schedule (cron expression)"),
    ),
    NodeType.TRIGGER_AI_TOOL: (
        FieldRule("toolName", "Enter a tool name"),
        FieldRule("toolDescription", "Describe what this tool does"),
    ),
    NodeType.ACTION_EMAIL: (
        FieldRule("to", "Select a recipient"),
        FieldRule("subject", "Enter an email subject"),
        FieldRule("body", "Enter email content"),
    ),
    NodeType.ACTION_SEND_MESSAGE: (FieldRule("message", "Enter a message"),),
    NodeType.ACTION_HTTP: (
        FieldRule("url", "Enter a URL"),
        FieldRule("method", "Select an HTTP method"),
    ),
    NodeType.ACTION_UPDATE_LEAD: (
        FieldRule("fields", "Add at least one field to update", min_length=1),
    ),
    NodeType.ACTION_CREATE_BOOKING: (FieldRule("startTime", "Set a start time"),),
    NodeType.LOGIC_DELAY: (FieldRule("delayMs", "Set a delay duration"),),
    NodeType.TRANSFORM_SET_VARIABLE: (
        FieldRule("variableName", "Enter a variable name"),
        FieldRule("valueExpression", "Enter a value expression"),
    ),
    NodeType.AI_GENERATE: (
        FieldRule("prompt", "Enter a prompt"),
        FieldRule("outputVariable", "Name the output variable"),
    ),
    NodeType.AI_CLASSIFY: (
        FieldRule("categories", "Add at least 2 categories", min_length=2),
        FieldRule("outputVariable", "Name the output variable"),
    ),
    NodeType.AI_EXTRACT: (
        FieldRule("fields", "Add at least one field to extract", min_length=1),
        FieldRule("outputVariable", "Name the output variable"),
    ),
}

# Fields that may be spelled differently in older documents.
_FIELD_FALLBACKS = {
    "cronExpression": ("schedule", "cron"),
    "valueExpression": ("value",),
}


def _is_blank(value: Any) -> bool:
    if value is UNDEFINED or value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


def _lookup_field(data: Mapping[str, Any], name: str) -> Any:
    value = resolve_path(data, name)
    for fallback in _FIELD_FALLBACKS.get(name, ()):
        if not _is_blank(value):
            break
        value = resolve_path(data, fallback)
    return value


def validate_node(node: Node) -> list[ValidationIssue]:
    """Check a node's configuration payload against its required fields."""
    issues: list[ValidationIssue] = []
    for rule in NODE_FIELD_RULES.get(node.type, ()):
        value = _lookup_field(node.data, rule.field)
        if _is_blank(value):
            issues.append(ValidationIssue(rule.message, "warning", node.id, rule.field))
        elif rule.min_length is not None and isinstance(value, list) and len(value) < rule.min_length:
            issues.append(ValidationIssue(rule.message, "warning", node.id, rule.field))
    return issues


def validate_automation(automation: Automation) -> ValidationReport:
    """Validate an automation definition.

    Structural problems that make the graph unwalkable, malformed conditions
    and malformed trigger configurations are errors. Unreachable nodes, missing
    branch edges and incomplete node payloads are warnings.
    """
    from .triggers import check_trigger_config

    report = ValidationReport()

    try:
        check_trigger_config(automation)
    except AutomationConfigError as exc:
        report.error(str(exc), field_name="trigger_config")

    try:
        graph = AutomationGraph(automation)
    except AutomationConfigError as exc:
        report.error(str(exc), node_id=exc.node_id)
        return report

    expected_trigger = TRIGGER_NODE_TYPES[automation.trigger_type]
    if graph.trigger_node.type is not expected_trigger:
        report.warn(
            f"Trigger node type {graph.trigger_node.type.value} does not match "
            f"trigger type {automation.trigger_type.value}",
            node_id=graph.trigger_node.id,
        )

    evaluator = ConditionEvaluator()
    reachable = graph.reachable()
    for node in automation.nodes:
        if node.id not in reachable:
            report.warn(
                f"Node '{node.label}' is not connected to the trigger and will never run",
                node_id=node.id,
            )
        edges = graph.outgoing(node.id)

        if node.type.is_condition:
            try:
                for problem in evaluator.validate(condition_from_node_data(node.data)):
                    report.error(problem, node_id=node.id, field_name="condition")
            except AutomationConfigError as exc:
                report.error(str(exc), node_id=node.id, field_name="condition")
            for handle in BRANCH_HANDLES:
                count = len(graph.targets(node.id, handle))
                if count == 0 and not node.disabled:
                    report.warn(f"Condition has no '{handle}' branch", node_id=node.id)
                elif count > 1:
                    report.error(f"Condition has {count} '{handle}' branches", node_id=node.id)
        elif len(edges) > 1:
            if node.disabled:
                report.warn(
                    "Disabled node has several outgoing edges; only the first is followed",
                    node_id=node.id,
                )
            else:
                report.error(
                    f"Node has {len(edges)} outgoing edges; exactly one is allowed",
                    node_id=node.id,
                )

        for issue in validate_node(node):
            report.warnings.append(issue)

    return report


__all__ = [
    "AutomationGraph",
    "BRANCH_HANDLES",
    "NODE_FIELD_RULES",
    "ValidationIssue",
    "ValidationReport",
    "validate_automation",
    "validate_node",
]
