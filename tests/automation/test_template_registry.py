"""Tests for built-in automation templates."""

from __future__ import annotations

import pytest

from pilot_automation.automation.actions import NodeExecutor, create_default_registry
from pilot_automation.automation.engine import RunEngine
from pilot_automation.automation.gateways import InMemoryMessageGateway
from pilot_automation.automation.graph import validate_automation
from pilot_automation.automation.models import RunMode, RunStatus, StepOutcome
from pilot_automation.automation.templates import (
    BUILTIN_TEMPLATES,
    TEMPLATE_CATEGORIES,
    create_default_template_registry,
)


@pytest.fixture
def registry():
    return create_default_template_registry()


def test_all_builtins_registered(registry) -> None:
    assert len(registry.list_templates()) == len(BUILTIN_TEMPLATES)
    assert all(t.category in TEMPLATE_CATEGORIES for t in registry.list_templates())


def test_category_counts(registry) -> None:
    counts = {c["id"]: c["count"] for c in registry.categories()}
    assert set(counts) == set(TEMPLATE_CATEGORIES)
    assert sum(counts.values()) == len(BUILTIN_TEMPLATES)
    assert [t.id for t in registry.list_templates("notifications")] == [
        "takeover-alert",
        "daily-summary",
    ]


@pytest.mark.parametrize("template_id", [t["id"] for t in BUILTIN_TEMPLATES])
def test_builtin_templates_validate(registry, template_id: str) -> None:
    automation = registry.instantiate(template_id)
    report = validate_automation(automation)
    assert report.valid, report.to_dict()


def test_instantiate_uses_fresh_ids(registry) -> None:
    first = registry.instantiate("lead-stage-update", tenant_id="acme", name="Stage handler")
    second = registry.instantiate("lead-stage-update")

    assert first.id != second.id
    assert first.tenant_id == "acme"
    assert first.name == "Stage handler"
    assert not first.enabled
    assert {n.id for n in first.nodes}.isdisjoint({n.id for n in second.nodes})

    node_ids = {n.id for n in first.nodes}
    for edge in first.edges:
        assert edge.source in node_ids
        assert edge.target in node_ids
    assert sorted(e.source_handle or "" for e in first.edges) == ["", "false", "true"]


def test_instantiate_does_not_share_state(registry) -> None:
    automation = registry.instantiate("new-lead-email")
    automation.nodes[1].data["to"] = "changed@example.com"
    assert registry.get("new-lead-email").nodes[1]["data"]["to"] == "{{lead.assigned_to_email}}"


def test_unknown_template(registry) -> None:
    with pytest.raises(KeyError):
        registry.instantiate("does-not-exist")


def test_import_skips_invalid_entries(registry) -> None:
    imported = registry.import_templates(
        [
            {"name": "No id"},
            {"id": "bad-trigger", "trigger_type": "carrier-pigeon"},
            {"id": "custom", "name": "Custom", "category": "integrations"},
        ]
    )
    assert imported == 1
    assert registry.get("custom") is not None
    assert registry.get("bad-trigger") is None


@pytest.mark.anyio
async def test_stage_template_runs_in_test_mode(registry) -> None:
    messages = InMemoryMessageGateway()
    engine = RunEngine(executor=NodeExecutor(create_default_registry(messages=messages)))
    automation = registry.instantiate("lead-stage-update")

    run = await engine.run(
        automation, {"lead": {"id": "L1", "name": "Ada", "stage_id": "qualified"}}, RunMode.TEST
    )

    assert run.status is RunStatus.SUCCEEDED
    assert [s.node_type for s in run.steps] == ["logic-condition", "action-email"]
    assert run.steps[0].branch == "true"
    assert run.steps[1].outcome is StepOutcome.SUCCESS
    assert run.steps[1].simulated
    assert messages.outbox == []
