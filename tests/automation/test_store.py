"""Tests for SQLite persistence."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from conftest import build_automation, edge, node, stage_branch_automation

from pilot_automation.automation.models import Run, RunStatus, StepOutcome, StepRecord
from pilot_automation.automation.store import AutomationStore
from pilot_automation.core.exceptions import AutomationNotFoundError, RunStateError

T0 = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    s = AutomationStore()
    yield s
    s.close()


def simple(automation_id: str, name: str, **fields):
    return build_automation(
        [node("t", "trigger-manual"), node("a", "logic-noop")],
        [edge("t", "a")],
        automation_id=automation_id,
        name=name,
        **fields,
    )


def step(index: int) -> StepRecord:
    return StepRecord(
        index=index, node_id=f"n{index}", node_type="logic-noop", outcome=StepOutcome.SUCCESS
    )


class TestAutomations:
    def test_save_and_get(self, store: AutomationStore) -> None:
        automation = stage_branch_automation(tenant_id="acme")
        store.save_automation(automation)

        loaded = store.get_automation("auto-1")
        assert loaded == automation
        assert store.get_automation("missing") is None

    def test_save_replaces_document(self, store: AutomationStore) -> None:
        store.save_automation(simple("a1", "First"))
        store.save_automation(simple("a1", "Renamed", version=2))

        loaded = store.get_automation("a1")
        assert loaded is not None
        assert loaded.name == "Renamed"
        assert loaded.version == 2
        assert len(store.list_automations()) == 1

    def test_list_filters(self, store: AutomationStore) -> None:
        store.save_automation(simple("b", "Bravo", tenant_id="acme"))
        store.save_automation(simple("a", "Alpha", tenant_id="acme", enabled=False))
        store.save_automation(simple("c", "Charlie", tenant_id="other"))

        assert [a.id for a in store.list_automations()] == ["a", "b", "c"]
        assert [a.id for a in store.list_automations("acme")] == ["a", "b"]
        assert [a.id for a in store.list_automations("acme", enabled_only=True)] == ["b"]

    def test_record_execution(self, store: AutomationStore) -> None:
        store.save_automation(simple("a1", "First"))
        store.record_execution("a1", "failed", "boom", T0)
        updated = store.record_execution("a1", "succeeded", None, T0 + timedelta(minutes=1))

        assert updated.execution_count == 2
        assert updated.last_execution_status == "succeeded"
        assert updated.last_error is None
        loaded = store.get_automation("a1")
        assert loaded is not None
        assert loaded.execution_count == 2
        assert loaded.last_executed_at == T0 + timedelta(minutes=1)

    def test_record_execution_unknown(self, store: AutomationStore) -> None:
        with pytest.raises(AutomationNotFoundError):
            store.record_execution("missing", "succeeded", None, T0)

    def test_save_revision_keeps_counters(self, store: AutomationStore) -> None:
        first = store.save_revision(simple("a1", "First"), T0)
        store.record_execution("a1", "failed", "boom", T0)

        revised = store.save_revision(simple("a1", "Second"), T0 + timedelta(hours=1))

        assert revised.version == first.version + 1
        assert revised.created_at == first.created_at
        assert revised.execution_count == 1
        assert revised.last_error == "boom"
        assert store.get_automation("a1") == revised

    def test_set_enabled_keeps_counters(self, store: AutomationStore) -> None:
        store.save_automation(simple("a1", "First"))
        store.record_execution("a1", "succeeded", None, T0)

        disabled = store.set_enabled("a1", False, T0 + timedelta(minutes=5))

        assert disabled.enabled is False
        assert disabled.execution_count == 1
        assert disabled.updated_at == T0 + timedelta(minutes=5)
        with pytest.raises(AutomationNotFoundError):
            store.set_enabled("missing", True, T0)


class TestRuns:
    def test_lifecycle(self, store: AutomationStore) -> None:
        run = Run(automation_id="a1", trigger_payload={"lead": {"id": "L1"}}, started_at=T0)
        store.create_run(run)
        store.append_step(run.id, step(0))
        store.append_step(run.id, step(1))

        assert store.finalize_run(
            run.id, RunStatus.FAILED, {"x": 1}, "boom", "n1", T0 + timedelta(seconds=1), 1000.0
        )

        loaded = store.get_run(run.id)
        assert loaded is not None
        assert loaded.status is RunStatus.FAILED
        assert loaded.context == {"x": 1}
        assert loaded.error_node_id == "n1"
        assert loaded.trigger_payload == {"lead": {"id": "L1"}}
        assert [s.node_id for s in loaded.steps] == ["n0", "n1"]
        assert loaded.duration_ms == 1000.0

    def test_steps_are_closed_after_finalize(self, store: AutomationStore) -> None:
        run = Run(automation_id="a1")
        store.create_run(run)
        store.finalize_run(run.id, RunStatus.SUCCEEDED, {}, None, None, T0, 1.0)

        with pytest.raises(RunStateError):
            store.append_step(run.id, step(0))
        assert not store.finalize_run(run.id, RunStatus.FAILED, {}, "late", None, T0, 2.0)
        loaded = store.get_run(run.id)
        assert loaded is not None
        assert loaded.status is RunStatus.SUCCEEDED

    def test_duplicate_step_index(self, store: AutomationStore) -> None:
        run = Run(automation_id="a1")
        store.create_run(run)
        store.append_step(run.id, step(0))
        with pytest.raises(RunStateError):
            store.append_step(run.id, step(0))

    def test_unknown_run(self, store: AutomationStore) -> None:
        assert store.get_run("missing") is None
        with pytest.raises(RunStateError):
            store.append_step("missing", step(0))

    def test_list_runs_newest_first(self, store: AutomationStore) -> None:
        for offset, automation_id in enumerate(["a1", "a2", "a1"]):
            run = Run(
                id=f"run-{offset}",
                automation_id=automation_id,
                started_at=T0 + timedelta(minutes=offset),
            )
            store.create_run(run)
        store.finalize_run("run-0", RunStatus.SUCCEEDED, {}, None, None, T0, 1.0)

        assert [r.id for r in store.list_runs()] == ["run-2", "run-1", "run-0"]
        assert [r.id for r in store.list_runs("a1")] == ["run-2", "run-0"]
        assert [r.id for r in store.list_runs(limit=1)] == ["run-2"]
        assert [r.id for r in store.list_runs(status=RunStatus.SUCCEEDED)] == ["run-0"]


def test_file_store_persists(tmp_path) -> None:
    path = tmp_path / "automation.db"
    first = AutomationStore(path)
    first.save_automation(simple("a1", "First"))
    first.close()

    second = AutomationStore(path)
    try:
        loaded = second.get_automation("a1")
        assert loaded is not None
        assert loaded.name == "First"
    finally:
        second.close()
