"""Test configuration hooks and automation builders."""

from __future__ import annotations

from typing import Any

import pytest

from pilot_automation.automation.models import Automation


# Configure anyio to only use asyncio backend (skip trio tests)
@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio to use only asyncio backend."""
    return "asyncio"


def node(node_id: str, node_type: str, **data: Any) -> dict[str, Any]:
    """Build a node document."""
    return {"id": node_id, "type": node_type, "data": data}


def edge(source: str, target: str, handle: str | None = None) -> dict[str, Any]:
    """Build an edge document."""
    doc: dict[str, Any] = {"id": f"{source}->{target}", "source": source, "target": target}
    if handle is not None:
        doc["sourceHandle"] = handle
    return doc


def build_automation(
    nodes: list[dict[str, Any]],
    edges: list[dict[str, Any]],
    *,
    automation_id: str = "auto-1",
    trigger_type: str = "manual",
    **fields: Any,
) -> Automation:
    """Build an automation from node and edge documents."""
    return Automation.from_document(
        {
            "id": automation_id,
            "name": fields.pop("name", f"Automation {automation_id}"),
            "trigger_type": trigger_type,
            "nodes": nodes,
            "edges": edges,
            **fields,
        }
    )


def stage_branch_automation(**fields: Any) -> Automation:
    """Trigger -> condition(lead.stage == new) -> true: set stage / false: noop."""
    return build_automation(
        [
            node("trigger", "trigger-manual"),
            node(
                "check-stage",
                "logic-condition",
                condition={"field": "lead.stage", "operator": "equals", "value": "new"},
            ),
            node(
                "mark-contacted",
                "transform-set-variable",
                variableName="stage",
                valueExpression="contacted",
            ),
            node("nothing", "logic-noop"),
        ],
        [
            edge("trigger", "check-stage"),
            edge("check-stage", "mark-contacted", "true"),
            edge("check-stage", "nothing", "false"),
        ],
        **fields,
    )


@pytest.fixture
def branch_automation() -> Automation:
    return stage_branch_automation()
