"""Built-in automation templates users can start from."""

from __future__ import annotations

import copy
import json
import threading
from dataclasses import dataclass, field
from typing import Any

from ..core.logger import get_logger
from .models import Automation, TriggerType, new_id

logger = get_logger("automation.templates")

TEMPLATE_CATEGORIES = {
    "lead-management": "Lead Management",
    "notifications": "Notifications",
    "ai-workflows": "AI Workflows",
    "integrations": "Integrations",
}


@dataclass
class AutomationTemplate:
    """Reusable automation graph."""

    id: str
    name: str
    description: str
    category: str
    trigger_type: TriggerType
    trigger_config: dict[str, Any] = field(default_factory=dict)
    nodes: list[dict[str, Any]] = field(default_factory=list)
    edges: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "trigger_type": self.trigger_type.value,
            "trigger_config": copy.deepcopy(self.trigger_config),
            "nodes": copy.deepcopy(self.nodes),
            "edges": copy.deepcopy(self.edges),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AutomationTemplate:
        """Create from dictionary."""
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            description=data.get("description", ""),
            category=data.get("category", "integrations"),
            trigger_type=TriggerType(data.get("trigger_type", "manual")),
            trigger_config=data.get("trigger_config", {}),
            nodes=data.get("nodes", []),
            edges=data.get("edges", []),
        )


class TemplateRegistry:
    """Registry for automation templates."""

    def __init__(self) -> None:
        self._templates: dict[str, AutomationTemplate] = {}
        self._lock = threading.Lock()

    def register(self, template: AutomationTemplate) -> None:
        with self._lock:
            self._templates[template.id] = template
            logger.debug("Registered automation template: %s", template.id)

    def get(self, template_id: str) -> AutomationTemplate | None:
        return self._templates.get(template_id)

    def list_templates(self, category: str | None = None) -> list[AutomationTemplate]:
        templates = list(self._templates.values())
        if category:
            templates = [t for t in templates if t.category == category]
        return templates

    def categories(self) -> list[dict[str, Any]]:
        """Template categories with the number of templates in each."""
        return [
            {
                "id": category,
                "name": label,
                "count": sum(1 for t in self._templates.values() if t.category == category),
            }
            for category, label in TEMPLATE_CATEGORIES.items()
        ]

    def instantiate(
        self,
        template_id: str,
        tenant_id: str = "default",
        name: str | None = None,
    ) -> Automation:
        """Create a new automation from a template with fresh node and edge ids.

        Raises:
            KeyError: If the template does not exist.
        """
        template = self.get(template_id)
        if template is None:
            raise KeyError(f"Unknown template: {template_id}")

        id_map: dict[str, str] = {}
        nodes = []
        for node in template.nodes:
            fresh = f"{node['type']}-{new_id()[:8]}"
            id_map[node["id"]] = fresh
            nodes.append({**copy.deepcopy(node), "id": fresh})
        edges = [
            {
                **copy.deepcopy(edge),
                "id": f"edge-{new_id()[:8]}",
                "source": id_map.get(edge["source"], edge["source"]),
                "target": id_map.get(edge["target"], edge["target"]),
            }
            for edge in template.edges
        ]
        return Automation(
            tenant_id=tenant_id,
            name=name or template.name,
            description=template.description,
            enabled=False,
            trigger_type=template.trigger_type,
            trigger_config=copy.deepcopy(template.trigger_config),
            nodes=nodes,
            edges=edges,
        )

    def import_templates(self, templates_data: list[dict[str, Any]]) -> int:
        """Import templates from a list of dictionaries.

        Returns:
            Number of templates imported
        """
        count = 0
        for data in templates_data:
            try:
                template = AutomationTemplate.from_dict(data)
            except (KeyError, ValueError) as exc:
                logger.error("Failed to import template: %s", exc)
                continue
            self.register(template)
            count += 1
        return count


# Built-in automation templates
BUILTIN_TEMPLATES: list[dict[str, Any]] = [
    {
        "id": "new-lead-email",
        "name": "New Lead Email Notification",
        "description": "Send an email notification when a new lead is created",
        "category": "lead-management",
        "trigger_type": "event",
        "trigger_config": {"event": "lead.created"},
        "nodes": [
            {
                "id": "trigger-1",
                "type": "trigger-event",
                "data": {"label": "New Lead Created", "event": "lead.created"},
            },
            {
                "id": "action-1",
                "type": "action-email",
                "data": {
                    "label": "Send Notification",
                    "to": "{{lead.assigned_to_email}}",
                    "subject": "New Lead: {{lead.name}}",
                    "body": (
                        "A new lead has been created.\n\n"
                        "Name: {{lead.name}}\nEmail: {{lead.email}}\nPhone: {{lead.phone}}"
                    ),
                    "bodyType": "text",
                },
            },
        ],
        "edges": [{"id": "edge-1", "source": "trigger-1", "target": "action-1"}],
    },
    {
        "id": "lead-stage-update",
        "name": "Lead Stage Changed Handler",
        "description": "Perform actions when a lead moves to a new stage",
        "category": "lead-management",
        "trigger_type": "event",
        "trigger_config": {"event": "lead.stage_changed"},
        "nodes": [
            {
                "id": "trigger-1",
                "type": "trigger-event",
                "data": {"label": "Stage Changed", "event": "lead.stage_changed"},
            },
            {
                "id": "condition-1",
                "type": "logic-condition",
                "data": {
                    "label": "Check New Stage",
                    "conditions": [
                        {"field": "{{lead.stage_id}}", "operator": "equals", "value": "qualified"}
                    ],
                    "logic": "and",
                },
            },
            {
                "id": "action-1",
                "type": "action-email",
                "data": {
                    "label": "Send Qualified Email",
                    "to": "sales@example.com",
                    "subject": "Lead Qualified: {{lead.name}}",
                    "body": "A lead has been qualified and is ready for follow-up.",
                    "bodyType": "text",
                },
            },
            {
                "id": "action-2",
                "type": "action-update-lead",
                "data": {
                    "label": "Update Priority",
                    "fields": [{"field": "priority", "value": "high", "type": "string"}],
                },
            },
        ],
        "edges": [
            {"id": "edge-1", "source": "trigger-1", "target": "condition-1"},
            {"id": "edge-2", "source": "condition-1", "target": "action-1", "sourceHandle": "true"},
            {"id": "edge-3", "source": "condition-1", "target": "action-2", "sourceHandle": "false"},
        ],
    },
    {
        "id": "ai-lead-classification",
        "name": "AI Lead Classification",
        "description": "Automatically classify and score new leads using AI",
        "category": "ai-workflows",
        "trigger_type": "event",
        "trigger_config": {"event": "lead.created"},
        "nodes": [
            {
                "id": "trigger-1",
                "type": "trigger-event",
                "data": {"label": "New Lead", "event": "lead.created"},
            },
            {
                "id": "ai-1",
                "type": "ai-classify",
                "data": {
                    "label": "Classify Lead",
                    "inputVariable": "lead",
                    "categories": [
                        {"name": "hot", "description": "High intent, ready to buy"},
                        {"name": "warm", "description": "Interested but needs nurturing"},
                        {"name": "cold", "description": "Low intent or just browsing"},
                    ],
                    "outputVariable": "classification",
                },
            },
            {
                "id": "action-1",
                "type": "action-update-lead",
                "data": {
                    "label": "Update Lead Score",
                    "fields": [
                        {
                            "field": "data.ai_classification",
                            "value": "{{classification.category}}",
                            "type": "string",
                        },
                        {
                            "field": "data.ai_confidence",
                            "value": "{{classification.confidence}}",
                            "type": "number",
                        },
                    ],
                },
            },
        ],
        "edges": [
            {"id": "edge-1", "source": "trigger-1", "target": "ai-1"},
            {"id": "edge-2", "source": "ai-1", "target": "action-1"},
        ],
    },
    {
        "id": "ai-response-generator",
        "name": "AI Response Generator",
        "description": "Generate contextual AI responses as a callable tool",
        "category": "ai-workflows",
        "trigger_type": "ai_tool",
        "trigger_config": {
            "toolName": "generate_response",
            "toolDescription": "Generate a contextual response for a customer inquiry",
            "parameters": [
                {"name": "query", "type": "string", "description": "The customer's question", "required": True},
                {"name": "context", "type": "string", "description": "Additional context", "required": False},
            ],
        },
        "nodes": [
            {
                "id": "trigger-1",
                "type": "trigger-ai-tool",
                "data": {"label": "AI Tool Trigger", "toolName": "generate_response"},
            },
            {
                "id": "ai-1",
                "type": "ai-generate",
                "data": {
                    "label": "Generate Response",
                    "prompt": (
                        "Based on the following question and context, generate a helpful response.\n\n"
                        "Question: {{trigger.query}}\nContext: {{trigger.context}}\n\n"
                        "Provide a clear, concise, and helpful response."
                    ),
                    "temperature": 0.7,
                    "maxTokens": 500,
                    "outputVariable": "response",
                },
            },
        ],
        "edges": [{"id": "edge-1", "source": "trigger-1", "target": "ai-1"}],
    },
    {
        "id": "webhook-integration",
        "name": "Webhook Integration",
        "description": "Send data to an external webhook when events occur",
        "category": "integrations",
        "trigger_type": "event",
        "trigger_config": {"event": "lead.created"},
        "nodes": [
            {
                "id": "trigger-1",
                "type": "trigger-event",
                "data": {"label": "Event Trigger", "event": "lead.created"},
            },
            {
                "id": "action-1",
                "type": "action-http",
                "data": {
                    "label": "Send to Webhook",
                    "method": "POST",
                    "url": "https://your-webhook-url.com/endpoint",
                    "headers": [
                        {"key": "Content-Type", "value": "application/json", "enabled": True}
                    ],
                    "bodyType": "json",
                    "body": json.dumps(
                        {
                            "event": "{{trigger.event}}",
                            "lead": "{{lead}}",
                            "timestamp": "{{trigger.timestamp}}",
                        },
                        indent=2,
                    ),
                    "retryOnFailure": True,
                    "maxRetries": 3,
                },
            },
        ],
        "edges": [{"id": "edge-1", "source": "trigger-1", "target": "action-1"}],
    },
    {
        "id": "crm-sync",
        "name": "CRM Sync",
        "description": "Sync lead data to an external CRM system",
        "category": "integrations",
        "trigger_type": "event",
        "trigger_config": {"event": "lead.updated"},
        "nodes": [
            {
                "id": "trigger-1",
                "type": "trigger-event",
                "data": {"label": "Lead Updated", "event": "lead.updated"},
            },
            {
                "id": "transform-1",
                "type": "transform-set-variable",
                "data": {
                    "label": "Prepare CRM Payload",
                    "variableName": "crm_payload",
                    "value": json.dumps(
                        {
                            "external_id": "{{lead.id}}",
                            "name": "{{lead.name}}",
                            "email": "{{lead.email}}",
                            "phone": "{{lead.phone}}",
                            "company": "{{lead.company}}",
                            "status": "{{lead.status}}",
                        }
                    ),
                    "valueType": "json",
                },
            },
            {
                "id": "action-1",
                "type": "action-http",
                "data": {
                    "label": "Update CRM",
                    "method": "PUT",
                    "url": "https://your-crm.com/api/contacts/{{lead.id}}",
                    "headers": [
                        {"key": "Content-Type", "value": "application/json", "enabled": True},
                        {"key": "Authorization", "value": "Bearer YOUR_API_KEY", "enabled": True},
                    ],
                    "bodyType": "json",
                    "body": "{{crm_payload}}",
                    "retryOnFailure": True,
                    "maxRetries": 2,
                },
            },
        ],
        "edges": [
            {"id": "edge-1", "source": "trigger-1", "target": "transform-1"},
            {"id": "edge-2", "source": "transform-1", "target": "action-1"},
        ],
    },
    {
        "id": "takeover-alert",
        "name": "Human Takeover Alert",
        "description": "Notify team when AI hands off to a human",
        "category": "notifications",
        "trigger_type": "event",
        "trigger_config": {"event": "conversation.human_takeover"},
        "nodes": [
            {
                "id": "trigger-1",
                "type": "trigger-event",
                "data": {"label": "Takeover Requested", "event": "conversation.human_takeover"},
            },
            {
                "id": "action-1",
                "type": "action-email",
                "data": {
                    "label": "Alert Team",
                    "to": "support@example.com",
                    "subject": "Human Takeover Required",
                    "body": (
                        "A conversation requires human attention.\n\n"
                        "Conversation ID: {{conversation.id}}\nLead: {{lead.name}}"
                    ),
                    "bodyType": "text",
                },
            },
        ],
        "edges": [{"id": "edge-1", "source": "trigger-1", "target": "action-1"}],
    },
    {
        "id": "daily-summary",
        "name": "Daily Summary Report",
        "description": "Send a daily summary of activity",
        "category": "notifications",
        "trigger_type": "schedule",
        "trigger_config": {"cronExpression": "0 9 * * *", "timezone": "America/New_York"},
        "nodes": [
            {
                "id": "trigger-1",
                "type": "trigger-schedule",
                "data": {
                    "label": "Daily at 9 AM",
                    "cronExpression": "0 9 * * *",
                    "timezone": "America/New_York",
                },
            },
            {
                "id": "action-1",
                "type": "action-http",
                "data": {
                    "label": "Fetch Stats",
                    "method": "GET",
                    "url": "https://your-app.example.com/api/stats/daily",
                    "outputVariable": "stats",
                },
            },
            {
                "id": "action-2",
                "type": "action-email",
                "data": {
                    "label": "Send Summary",
                    "to": "team@example.com",
                    "subject": "Daily Activity Summary - {{trigger.scheduled_at}}",
                    "body": "Here is your daily summary:\n\n{{stats.body}}",
                    "bodyType": "text",
                },
            },
        ],
        "edges": [
            {"id": "edge-1", "source": "trigger-1", "target": "action-1"},
            {"id": "edge-2", "source": "action-1", "target": "action-2"},
        ],
    },
]


def create_default_template_registry() -> TemplateRegistry:
    """Create a template registry with built-in templates."""
    registry = TemplateRegistry()
    registry.import_templates(BUILTIN_TEMPLATES)
    return registry


__all__ = [
    "AutomationTemplate",
    "BUILTIN_TEMPLATES",
    "TEMPLATE_CATEGORIES",
    "TemplateRegistry",
    "create_default_template_registry",
]
