"""Persisted documents of the automation engine.

Automations, nodes and edges are the editor's documents; runs and step records
are the execution history. All of them serialise to JSON-shaped dicts so they
can be stored and reloaded without loss.
"""

from __future__ import annotations

import copy
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..core.exceptions import AutomationConfigError, UnknownNodeTypeError


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class TriggerType(str, Enum):
    """Ways a run can be started."""

    EVENT = "event"
    SCHEDULE = "schedule"
    MANUAL = "manual"
    AI_TOOL = "ai_tool"


class NodeType(str, Enum):
    """Closed set of node types understood by the engine."""

    TRIGGER_EVENT = "trigger-event"
    TRIGGER_SCHEDULE = "trigger-schedule"
    TRIGGER_MANUAL = "trigger-manual"
    TRIGGER_AI_TOOL = "trigger-ai-tool"
    ACTION_HTTP = "action-http"
    ACTION_EMAIL = "action-email"
    ACTION_SEND_MESSAGE = "action-send-message"
    ACTION_CREATE_LEAD = "action-create-lead"
    ACTION_UPDATE_LEAD = "action-update-lead"
    ACTION_CREATE_BOOKING = "action-create-booking"
    LOGIC_CONDITION = "logic-condition"
    LOGIC_DELAY = "logic-delay"
    LOGIC_STOP = "logic-stop"
    LOGIC_NOOP = "logic-noop"
    TRANSFORM_SET_VARIABLE = "transform-set-variable"
    AI_GENERATE = "ai-generate"
    AI_CLASSIFY = "ai-classify"
    AI_EXTRACT = "ai-extract"

    @property
    def is_trigger(self) -> bool:
        return self.value.startswith("trigger-")

    @property
    def is_condition(self) -> bool:
        return self is NodeType.LOGIC_CONDITION


TRIGGER_NODE_TYPES: dict[TriggerType, NodeType] = {
    TriggerType.EVENT: NodeType.TRIGGER_EVENT,
    TriggerType.SCHEDULE: NodeType.TRIGGER_SCHEDULE,
    TriggerType.MANUAL: NodeType.TRIGGER_MANUAL,
    TriggerType.AI_TOOL: NodeType.TRIGGER_AI_TOOL,
}


class RunMode(str, Enum):
    """Execution mode of a run."""

    LIVE = "live"
    TEST = "test"


class RunStatus(str, Enum):
    """Lifecycle state of a run."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.RUNNING


class StepOutcome(str, Enum):
    """Result of a single node visit."""

    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


# ----------------------------------------------------------------------
# Graph documents
# ----------------------------------------------------------------------
class Node(BaseModel):
    """One step in an automation graph."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    type: NodeType
    data: dict[str, Any] = Field(default_factory=dict)
    disabled: bool = False

    @model_validator(mode="before")
    @classmethod
    def _check_type(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        raw_type = values.get("type")
        node_type = raw_type.value if isinstance(raw_type, NodeType) else raw_type
        if node_type not in {member.value for member in NodeType}:
            raise UnknownNodeTypeError(str(raw_type), node_id=values.get("id"))
        data = values.get("data") or {}
        if "disabled" not in values and isinstance(data, dict) and data.get("disabled"):
            values = {**values, "disabled": True}
        return values

    @property
    def label(self) -> str:
        return str(self.data.get("label") or self.type.value)


class Edge(BaseModel):
    """Directed connection between two nodes."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_id)
    source: str
    target: str
    source_handle: str | None = Field(default=None, alias="sourceHandle")


class Automation(BaseModel):
    """A tenant-owned, versioned workflow definition."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_id)
    tenant_id: str = "default"
    name: str = "Untitled automation"
    description: str = ""
    enabled: bool = True
    trigger_type: TriggerType = TriggerType.MANUAL
    trigger_config: dict[str, Any] = Field(default_factory=dict)
    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)
    version: int = Field(default=1, ge=1)
    execution_count: int = 0
    last_executed_at: datetime | None = None
    last_execution_status: str | None = None
    last_error: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _check_references(self) -> Automation:
        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                raise AutomationConfigError(f"Duplicate node id: {node.id}", node_id=node.id)
            seen.add(node.id)
        for edge in self.edges:
            for endpoint in (edge.source, edge.target):
                if endpoint not in seen:
                    raise AutomationConfigError(
                        f"Edge '{edge.id}' references unknown node '{endpoint}'",
                        node_id=endpoint,
                    )
        return self

    def get_node(self, node_id: str) -> Node | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def to_document(self) -> dict[str, Any]:
        """Serialise to the JSON-shaped document used for storage."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> Automation:
        return cls.model_validate(document)


# ----------------------------------------------------------------------
# Execution history
# ----------------------------------------------------------------------
class StepRecord(BaseModel):
    """Immutable log entry for one node visit within a run."""

    model_config = ConfigDict(frozen=True)

    index: int
    node_id: str
    node_type: str
    input: dict[str, Any] = Field(default_factory=dict)
    output: dict[str, Any] = Field(default_factory=dict)
    outcome: StepOutcome
    error: str | None = None
    branch: str | None = None
    simulated: bool = False
    started_at: datetime = Field(default_factory=utcnow)
    duration_ms: float = 0.0


class Run(BaseModel):
    """One execution instance of an automation."""

    id: str = Field(default_factory=new_id)
    automation_id: str
    automation_version: int = 1
    tenant_id: str = "default"
    mode: RunMode = RunMode.LIVE
    trigger_type: TriggerType = TriggerType.MANUAL
    trigger_payload: dict[str, Any] = Field(default_factory=dict)
    steps: list[StepRecord] = Field(default_factory=list)
    status: RunStatus = RunStatus.RUNNING
    context: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    error_node_id: str | None = None
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    duration_ms: float | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def replay_context(self) -> dict[str, Any]:
        """Rebuild the run context from the trigger payload and step outputs."""
        context = copy.deepcopy(self.trigger_payload)
        for step in self.steps:
            if step.outcome is StepOutcome.SUCCESS:
                context.update(copy.deepcopy(step.output))
        return context

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class TriggerStimulus(BaseModel):
    """Inbound request that may start one or more runs."""

    model_config = ConfigDict(populate_by_name=True)

    source_type: TriggerType = Field(alias="sourceType")
    automation_id: str | None = Field(default=None, alias="automationId")
    event_name: str | None = Field(default=None, alias="eventName")
    tenant_id: str | None = Field(default=None, alias="tenantId")
    payload: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=utcnow, alias="occurredAt")


__all__ = [
    "Automation",
    "Edge",
    "Node",
    "NodeType",
    "Run",
    "RunMode",
    "RunStatus",
    "StepOutcome",
    "StepRecord",
    "TRIGGER_NODE_TYPES",
    "TriggerStimulus",
    "TriggerType",
    "new_id",
    "utcnow",
]
