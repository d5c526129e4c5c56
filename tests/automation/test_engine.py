"""Tests for the run engine."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

import httpx
import pytest
from conftest import build_automation, edge, node, stage_branch_automation

from pilot_automation.automation.actions import (
    BaseNodeAdapter,
    NodeExecutor,
    NodeResult,
    create_default_registry,
)
from pilot_automation.automation.engine import RunEngine
from pilot_automation.automation.gateways import InMemoryLeadGateway, InMemoryMessageGateway
from pilot_automation.automation.http import HTTPRequester
from pilot_automation.automation.models import (
    NodeType,
    Run,
    RunMode,
    RunStatus,
    StepOutcome,
)
from pilot_automation.automation.recorder import RunRecorder
from pilot_automation.automation.store import AutomationStore
from pilot_automation.core.config import EngineSettings
from pilot_automation.core.exceptions import AutomationConfigError


def make_engine(registry=None, settings: EngineSettings | None = None, store=None) -> RunEngine:
    settings = settings or EngineSettings()
    return RunEngine(
        executor=NodeExecutor(registry or create_default_registry(), settings),
        recorder=RunRecorder(store),
        settings=settings,
    )


def outcomes(run: Run) -> list[tuple[str, StepOutcome]]:
    return [(step.node_id, step.outcome) for step in run.steps]


class TestBranching:
    @pytest.mark.anyio
    async def test_true_branch_updates_context(self) -> None:
        payload = {"lead": {"id": "L1", "stage": "new"}}
        run = await make_engine().run(stage_branch_automation(), payload)

        assert run.status is RunStatus.SUCCEEDED
        assert outcomes(run) == [
            ("check-stage", StepOutcome.SUCCESS),
            ("mark-contacted", StepOutcome.SUCCESS),
        ]
        assert run.steps[0].branch == "true"
        assert run.steps[1].input == payload
        assert run.steps[1].output == {"stage": "contacted"}
        assert run.context == {**payload, "stage": "contacted"}

    @pytest.mark.anyio
    async def test_false_branch_leaves_context_unchanged(self) -> None:
        payload = {"lead": {"id": "L1", "stage": "qualified"}}
        run = await make_engine().run(stage_branch_automation(), payload)

        assert run.status is RunStatus.SUCCEEDED
        assert run.steps[0].branch == "false"
        assert [step.node_id for step in run.steps] == ["check-stage", "nothing"]
        assert run.context == payload

    @pytest.mark.anyio
    async def test_missing_branch_edge_fails_run(self) -> None:
        automation = build_automation(
            [
                node("trigger", "trigger-manual"),
                node(
                    "check-stage",
                    "logic-condition",
                    condition={"field": "lead.stage", "operator": "equals", "value": "new"},
                ),
                node("noop", "logic-noop"),
            ],
            [edge("trigger", "check-stage"), edge("check-stage", "noop", "true")],
        )
        run = await make_engine().run(automation, {"lead": {"stage": "lost"}})

        assert run.status is RunStatus.FAILED
        assert run.error_node_id == "check-stage"
        assert "Dangling branch" in run.error
        assert len(run.steps) == 1
        assert run.steps[0].outcome is StepOutcome.FAILURE
        assert run.steps[0].branch == "false"

    @pytest.mark.anyio
    async def test_malformed_condition_fails_run(self) -> None:
        automation = build_automation(
            [
                node("trigger", "trigger-manual"),
                node("c", "logic-condition", condition={"field": "x", "operator": "resembles"}),
                node("a", "logic-noop"),
                node("b", "logic-noop"),
            ],
            [edge("trigger", "c"), edge("c", "a", "true"), edge("c", "b", "false")],
        )
        run = await make_engine().run(automation, {})
        assert run.status is RunStatus.FAILED
        assert run.error == "Unsupported condition operator: resembles"


class TestFailures:
    @pytest.mark.anyio
    async def test_http_timeout_fails_run(self) -> None:
        async def slow(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(2)
            return httpx.Response(200)

        registry = create_default_registry(HTTPRequester(transport=httpx.MockTransport(slow)))
        automation = build_automation(
            [
                node("trigger", "trigger-manual"),
                node(
                    "call-crm",
                    "action-http",
                    method="POST",
                    url="https://crm.example.com/hook",
                    timeoutSeconds=0.05,
                    retryOnFailure=False,
                ),
                node("after", "transform-set-variable", variableName="done", valueExpression="yes"),
            ],
            [edge("trigger", "call-crm"), edge("call-crm", "after")],
        )
        run = await make_engine(registry).run(automation, {})

        assert run.status is RunStatus.FAILED
        assert run.error_node_id == "call-crm"
        assert "timed out" in run.error
        assert outcomes(run) == [("call-crm", StepOutcome.FAILURE)]
        assert "done" not in run.context

    @pytest.mark.anyio
    async def test_failure_stops_walk(self) -> None:
        messages = InMemoryMessageGateway()
        automation = build_automation(
            [
                node("trigger", "trigger-manual"),
                node("email", "action-email", to="{{lead.email}}", subject="Hi", body="Hello"),
                node("note", "transform-set-variable", variableName="x", valueExpression="1"),
            ],
            [edge("trigger", "email"), edge("email", "note")],
        )
        run = await make_engine(create_default_registry(messages=messages)).run(automation, {})
        assert run.status is RunStatus.FAILED
        assert [step.node_id for step in run.steps] == ["email"]
        assert messages.outbox == []

    @pytest.mark.anyio
    async def test_ambiguous_edge_fails_before_execution(self) -> None:
        leads = InMemoryLeadGateway()
        automation = build_automation(
            [
                node("trigger", "trigger-manual"),
                node("create", "action-create-lead", fields={"name": "Ada"}),
                node("a", "logic-noop"),
                node("b", "logic-noop"),
            ],
            [edge("trigger", "create"), edge("create", "a"), edge("create", "b")],
        )
        run = await make_engine(create_default_registry(leads=leads)).run(automation, {})
        assert run.status is RunStatus.FAILED
        assert run.error_node_id == "create"
        assert leads.leads == {}

    @pytest.mark.anyio
    async def test_graph_without_trigger_creates_no_run(self) -> None:
        store = AutomationStore()
        automation = build_automation([node("a", "logic-noop")], [])
        with pytest.raises(AutomationConfigError):
            await make_engine(store=store).run(automation, {})
        assert store.list_runs() == []


class TestModes:
    @pytest.mark.anyio
    async def test_test_mode_simulates_local_effects(self) -> None:
        leads = InMemoryLeadGateway()
        automation = build_automation(
            [
                node("trigger", "trigger-manual"),
                node("create", "action-create-lead", fields={"name": "{{visitor.name}}"}),
            ],
            [edge("trigger", "create")],
        )
        engine = make_engine(create_default_registry(leads=leads))
        run = await engine.run(automation, {"visitor": {"name": "Grace"}}, RunMode.TEST)

        assert run.status is RunStatus.SUCCEEDED
        assert run.mode is RunMode.TEST
        assert run.steps[0].simulated is True
        assert run.context["lead"]["name"] == "Grace"
        assert leads.leads == {}

    @pytest.mark.anyio
    async def test_stop_node_ends_run_successfully(self) -> None:
        automation = build_automation(
            [
                node("trigger", "trigger-manual"),
                node("stop", "logic-stop"),
                node("never", "transform-set-variable", variableName="x", valueExpression="1"),
            ],
            [edge("trigger", "stop"), edge("stop", "never")],
        )
        run = await make_engine().run(automation, {})
        assert run.status is RunStatus.SUCCEEDED
        assert [step.node_id for step in run.steps] == ["stop"]

    @pytest.mark.anyio
    async def test_disabled_node_is_skipped(self) -> None:
        messages = InMemoryMessageGateway()
        automation = build_automation(
            [
                node("trigger", "trigger-manual"),
                {
                    "id": "email",
                    "type": "action-email",
                    "disabled": True,
                    "data": {"to": "a@example.com", "subject": "Hi", "body": "Hello"},
                },
                node("note", "transform-set-variable", variableName="x", valueExpression="1"),
            ],
            [edge("trigger", "email"), edge("email", "note")],
        )
        run = await make_engine(create_default_registry(messages=messages)).run(automation, {})
        assert run.status is RunStatus.SUCCEEDED
        assert outcomes(run) == [("email", StepOutcome.SKIPPED), ("note", StepOutcome.SUCCESS)]
        assert messages.outbox == []

    @pytest.mark.anyio
    async def test_empty_graph_succeeds_without_steps(self) -> None:
        automation = build_automation([node("trigger", "trigger-manual")], [])
        run = await make_engine().run(automation, {"a": 1})
        assert run.status is RunStatus.SUCCEEDED
        assert run.steps == []
        assert run.completed_at is not None


class TestBudgetAndCancellation:
    @pytest.mark.anyio
    async def test_cycle_exhausts_step_budget(self) -> None:
        automation = build_automation(
            [node("trigger", "trigger-manual"), node("a", "logic-noop"), node("b", "logic-noop")],
            [edge("trigger", "a"), edge("a", "b"), edge("b", "a")],
        )
        run = await make_engine(settings=EngineSettings(max_steps=5)).run(automation, {})

        assert run.status is RunStatus.FAILED
        assert len(run.steps) == 5
        assert run.steps[-1].outcome is StepOutcome.FAILURE
        assert "Cycle detected" in run.error
        assert [step.index for step in run.steps] == [0, 1, 2, 3, 4]

    @pytest.mark.anyio
    async def test_loop_through_trigger_is_bounded(self) -> None:
        automation = build_automation(
            [node("trigger", "trigger-manual"), node("a", "logic-noop")],
            [edge("trigger", "a"), edge("a", "trigger")],
        )
        run = await make_engine(settings=EngineSettings(max_steps=4)).run(automation, {})
        assert run.status is RunStatus.FAILED
        assert [step.outcome for step in run.steps[:3]] == [
            StepOutcome.SUCCESS,
            StepOutcome.SKIPPED,
            StepOutcome.SUCCESS,
        ]

    @pytest.mark.anyio
    async def test_cancel_before_next_node(self) -> None:
        cancel = asyncio.Event()

        class CancellingAdapter(BaseNodeAdapter):
            node_type = NodeType.LOGIC_NOOP

            async def execute(
                self,
                config: Mapping[str, Any],
                context: Mapping[str, Any],
                mode: RunMode,
                *,
                tenant_id: str = "default",
            ) -> NodeResult:
                cancel.set()
                return NodeResult.ok({"first": True})

        registry = create_default_registry()
        registry.register(CancellingAdapter())
        automation = build_automation(
            [
                node("trigger", "trigger-manual"),
                node("first", "logic-noop"),
                node("second", "transform-set-variable", variableName="x", valueExpression="1"),
            ],
            [edge("trigger", "first"), edge("first", "second")],
        )
        run = await make_engine(registry).run(automation, {}, cancel=cancel)

        assert run.status is RunStatus.CANCELLED
        assert [step.node_id for step in run.steps] == ["first"]
        assert run.context == {"first": True}

    @pytest.mark.anyio
    async def test_task_cancellation_finalizes_run(self) -> None:
        automation = build_automation(
            [node("trigger", "trigger-manual"), node("wait", "logic-delay", delaySeconds=30)],
            [edge("trigger", "wait")],
        )
        started: list[Run] = []
        task = asyncio.create_task(make_engine().run(automation, {}, on_start=started.append))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert started[0].status is RunStatus.CANCELLED


class TestRecording:
    @pytest.mark.anyio
    async def test_run_is_persisted_and_round_trips(self) -> None:
        store = AutomationStore()
        engine = make_engine(store=store)
        run = await engine.run(
            stage_branch_automation(), {"lead": {"stage": "new"}}, run_id="run-1"
        )

        stored = store.get_run("run-1")
        assert stored is not None
        assert stored == run
        assert Run.model_validate(run.to_document()) == run
        assert run.replay_context() == run.context

    @pytest.mark.anyio
    async def test_automation_is_copied(self) -> None:
        automation = stage_branch_automation()

        def edit_after_start(run: Run) -> None:
            for item in automation.nodes:
                if item.id == "mark-contacted":
                    item.data["valueExpression"] = "edited"

        run = await make_engine().run(
            automation, {"lead": {"stage": "new"}}, on_start=edit_after_start
        )
        assert run.context["stage"] == "contacted"
        assert automation.get_node("mark-contacted").data["valueExpression"] == "edited"

    @pytest.mark.anyio
    async def test_trigger_payload_is_not_mutated(self) -> None:
        payload = {"lead": {"stage": "new"}}
        run = await make_engine().run(stage_branch_automation(), payload)
        assert payload == {"lead": {"stage": "new"}}
        assert run.trigger_payload == payload
