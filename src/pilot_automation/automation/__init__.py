"""Automation workflow engine.

Automations are directed graphs of typed nodes started by a trigger. This
package holds the documents, the graph walker and node adapters, the trigger
matcher and the store that keeps automations and their run history.
"""

from .actions import (
    AdapterRegistry,
    BaseNodeAdapter,
    NodeExecutor,
    NodeResult,
    create_default_registry,
)
from .conditions import ConditionEvaluator, evaluate_condition
from .engine import RunEngine
from .events import ChangeNotification, stimulus_from_change
from .gateways import AIClient, BookingGateway, LeadGateway, MessageGateway
from .graph import AutomationGraph, ValidationReport, validate_automation
from .models import (
    Automation,
    Edge,
    Node,
    NodeType,
    Run,
    RunMode,
    RunStatus,
    StepOutcome,
    StepRecord,
    TriggerStimulus,
    TriggerType,
)
from .recorder import RunRecorder
from .service import AutomationService, TriggerResult
from .store import AutomationStore
from .templates import AutomationTemplate, TemplateRegistry, create_default_template_registry
from .triggers import TriggerMatcher

__all__ = [
    # Documents
    "Automation",
    "Edge",
    "Node",
    "NodeType",
    "Run",
    "RunMode",
    "RunStatus",
    "StepOutcome",
    "StepRecord",
    "TriggerStimulus",
    "TriggerType",
    # Execution
    "AdapterRegistry",
    "AutomationGraph",
    "BaseNodeAdapter",
    "ConditionEvaluator",
    "NodeExecutor",
    "NodeResult",
    "RunEngine",
    "RunRecorder",
    "create_default_registry",
    "evaluate_condition",
    # Triggers
    "ChangeNotification",
    "TriggerMatcher",
    "stimulus_from_change",
    # Integrations
    "AIClient",
    "BookingGateway",
    "LeadGateway",
    "MessageGateway",
    # Management
    "AutomationService",
    "AutomationStore",
    "AutomationTemplate",
    "TemplateRegistry",
    "TriggerResult",
    "ValidationReport",
    "create_default_template_registry",
    "validate_automation",
]
