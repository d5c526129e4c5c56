"""Service layer binding the store, trigger matcher and run engine.

The service owns the table of in-flight runs. Each live run started by a
trigger executes as its own asyncio task; cancellation is requested through
the run's event and honoured by the engine before the next node.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..core.config import EngineConfig
from ..core.exceptions import (
    AutomationConfigError,
    AutomationDisabledError,
    AutomationNotFoundError,
    InvalidAutomationError,
    RunNotFoundError,
)
from ..core.logger import get_logger
from .actions import AdapterRegistry, NodeExecutor, create_default_registry
from .engine import RunEngine
from .events import ChangeNotification, stimulus_from_change
from .graph import AutomationGraph, ValidationReport, validate_automation
from .http import HTTPRequester
from .models import (
    Automation,
    NodeType,
    Run,
    RunMode,
    RunStatus,
    StepOutcome,
    TriggerStimulus,
    TriggerType,
    new_id,
    utcnow,
)
from .recorder import RunRecorder
from .scheduling import ScheduleTicker
from .store import AutomationStore
from .triggers import RejectedTrigger, TriggerMatcher

logger = get_logger("automation.service")

EXTERNAL_NODE_TYPES = frozenset(
    {
        NodeType.ACTION_HTTP.value,
        NodeType.AI_GENERATE.value,
        NodeType.AI_CLASSIFY.value,
        NodeType.AI_EXTRACT.value,
    }
)


def external_calls_performed(run: Run) -> bool:
    """True when a run reached a remote service; test runs only simulate local effects."""
    return any(
        step.node_type in EXTERNAL_NODE_TYPES
        and step.outcome is not StepOutcome.SKIPPED
        and not step.simulated
        for step in run.steps
    )


@dataclass
class TriggerResult:
    """Runs started by one stimulus and the automations it was rejected by."""

    runs: list[dict[str, Any]] = field(default_factory=list)
    rejected: list[RejectedTrigger] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "runs": list(self.runs),
            "rejected": [item.to_dict() for item in self.rejected],
        }


@dataclass
class _InFlight:
    automation_id: str
    cancel: asyncio.Event
    task: asyncio.Task[Run] | None = None
    run: Run | None = None


class AutomationService:
    """Entry point for triggers, test runs and automation management."""

    def __init__(
        self,
        config: EngineConfig | None = None,
        store: AutomationStore | None = None,
        registry: AdapterRegistry | None = None,
        matcher: TriggerMatcher | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.store = store or AutomationStore(self.config.store.db_path)
        self.recorder = RunRecorder(self.store)
        if registry is None:
            registry = create_default_registry(HTTPRequester(self.config.http))
        self.engine = RunEngine(
            executor=NodeExecutor(registry, self.config.engine),
            recorder=self.recorder,
            settings=self.config.engine,
        )
        self.matcher = matcher or TriggerMatcher()
        self._in_flight: dict[str, _InFlight] = {}
        self._ticker: ScheduleTicker | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def load_documents(self, documents: Iterable[dict[str, Any]]) -> list[Automation]:
        """Store automation documents as given, without a version bump."""
        loaded = []
        for document in documents:
            automation = Automation.from_document(document)
            self.store.save_automation(automation)
            loaded.append(automation)
        if loaded:
            logger.info("Loaded %d automation(s)", len(loaded))
        return loaded

    def start(self) -> None:
        """Start the schedule ticker on the running event loop."""
        if not self.config.scheduler.enabled or self._ticker is not None:
            return
        self._ticker = ScheduleTicker(self.handle_schedule_tick, self.config.scheduler.timezone)
        self._ticker.start()

    async def shutdown(self, timeout: float | None = 10.0, close_store: bool = True) -> None:
        """Stop ticking, cancel in-flight runs and wait for them to finalize."""
        if self._ticker is not None:
            self._ticker.stop()
            self._ticker = None
        for entry in self._in_flight.values():
            entry.cancel.set()
        await self.wait_for_runs(timeout=timeout)
        if close_store:
            self.store.close()

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------
    async def handle_trigger(self, stimulus: TriggerStimulus) -> TriggerResult:
        """Start a live run for every automation the stimulus matches."""
        result = TriggerResult()
        if stimulus.source_type in (TriggerType.MANUAL, TriggerType.AI_TOOL):
            if not stimulus.automation_id:
                result.rejected.append(
                    RejectedTrigger("", f"{stimulus.source_type.value} trigger requires automationId")
                )
                return result
            automation = await asyncio.to_thread(self.store.get_automation, stimulus.automation_id)
            if automation is None:
                raise AutomationNotFoundError(stimulus.automation_id)
            if not automation.enabled:
                result.rejected.append(RejectedTrigger(automation.id, "Automation is disabled"))
                return result
            candidates = [automation]
        else:
            candidates = await asyncio.to_thread(
                self.store.list_automations, stimulus.tenant_id, True
            )

        match = self.matcher.match(stimulus, candidates)
        result.rejected.extend(match.rejected)
        for item in match.matches:
            try:
                AutomationGraph(item.automation)
            except AutomationConfigError as exc:
                logger.warning("Not starting automation %s: %s", item.automation.id, exc)
                result.rejected.append(RejectedTrigger(item.automation.id, str(exc)))
                continue
            run_id = self._spawn(item.automation, item.trigger_data, stimulus.source_type)
            result.runs.append(
                {
                    "runId": run_id,
                    "automationId": item.automation.id,
                    "status": RunStatus.RUNNING.value,
                }
            )
        return result

    async def handle_change(self, change: ChangeNotification) -> TriggerResult:
        stimulus = stimulus_from_change(change)
        if stimulus is None:
            return TriggerResult()
        return await self.handle_trigger(stimulus)

    async def handle_schedule_tick(self, now: datetime | None = None) -> TriggerResult:
        """Match schedule triggers against one minute tick."""
        stimulus = TriggerStimulus(source_type=TriggerType.SCHEDULE, occurred_at=now or utcnow())
        return await self.handle_trigger(stimulus)

    def _spawn(
        self, automation: Automation, trigger_data: dict[str, Any], trigger_type: TriggerType
    ) -> str:
        run_id = new_id()
        entry = _InFlight(automation_id=automation.id, cancel=asyncio.Event())
        self._in_flight[run_id] = entry
        entry.task = asyncio.create_task(
            self._execute(automation, trigger_data, RunMode.LIVE, run_id, entry, trigger_type),
            name=f"automation-run-{run_id}",
        )
        return run_id

    async def _execute(
        self,
        automation: Automation,
        trigger_data: dict[str, Any],
        mode: RunMode,
        run_id: str,
        entry: _InFlight,
        trigger_type: TriggerType,
    ) -> Run:
        def register(run: Run) -> None:
            entry.run = run

        try:
            run = await self.engine.run(
                automation,
                trigger_data,
                mode,
                run_id=run_id,
                cancel=entry.cancel,
                trigger_type=trigger_type,
                on_start=register,
            )
        finally:
            self._in_flight.pop(run_id, None)

        if mode is RunMode.LIVE:
            await asyncio.to_thread(
                self.store.record_execution,
                automation.id,
                run.status.value,
                run.error,
                run.started_at,
            )
        return run

    # ------------------------------------------------------------------
    # Direct execution
    # ------------------------------------------------------------------
    async def execute(
        self,
        automation_id: str,
        payload: dict[str, Any] | None = None,
        mode: RunMode = RunMode.LIVE,
    ) -> Run:
        """Run an automation to completion, bypassing trigger matching.

        Test runs are allowed on disabled automations and never touch the
        automation's live counters.

        Raises:
            AutomationNotFoundError: If the automation does not exist.
            AutomationDisabledError: If a live run is requested for a disabled automation.
            AutomationConfigError: If the graph has no usable entry point.
        """
        automation = await self.get_automation(automation_id)
        if mode is RunMode.LIVE and not automation.enabled:
            raise AutomationDisabledError(automation_id)

        stimulus = TriggerStimulus(
            source_type=automation.trigger_type,
            automation_id=automation.id,
            tenant_id=automation.tenant_id,
            payload=payload or {},
        )
        trigger_data = self.matcher.build_trigger_data(automation, stimulus)
        run_id = new_id()
        entry = _InFlight(automation_id=automation.id, cancel=asyncio.Event())
        self._in_flight[run_id] = entry
        return await self._execute(
            automation, trigger_data, mode, run_id, entry, automation.trigger_type
        )

    async def run_test(self, automation_id: str, payload: dict[str, Any] | None = None) -> Run:
        return await self.execute(automation_id, payload, RunMode.TEST)

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------
    async def get_run(self, run_id: str) -> Run:
        """Return a run with its ordered step records.

        Raises:
            RunNotFoundError: If the run is unknown.
        """
        entry = self._in_flight.get(run_id)
        if entry is not None and entry.run is not None:
            return entry.run.model_copy(deep=True)
        run = await asyncio.to_thread(self.store.get_run, run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    async def list_runs(self, automation_id: str | None = None, limit: int = 50) -> list[Run]:
        return await asyncio.to_thread(self.store.list_runs, automation_id, limit)

    async def cancel_run(self, run_id: str) -> bool:
        """Request cancellation of an in-flight run.

        Returns:
            True if the request was accepted, False if the run already finished.

        Raises:
            RunNotFoundError: If the run is unknown.
        """
        entry = self._in_flight.get(run_id)
        if entry is not None:
            entry.cancel.set()
            logger.info("Cancellation requested for run %s", run_id)
            return True
        run = await asyncio.to_thread(self.store.get_run, run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return False

    async def wait_for_runs(self, timeout: float | None = None) -> list[Run]:
        """Wait for background runs started by triggers."""
        tasks = [entry.task for entry in self._in_flight.values() if entry.task is not None]
        if not tasks:
            return []
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            logger.warning("%d run(s) still in flight after %.1fs", len(pending), timeout or 0)
        return [task.result() for task in done if not task.cancelled() and task.exception() is None]

    # ------------------------------------------------------------------
    # Automations
    # ------------------------------------------------------------------
    async def get_automation(self, automation_id: str) -> Automation:
        automation = await asyncio.to_thread(self.store.get_automation, automation_id)
        if automation is None:
            raise AutomationNotFoundError(automation_id)
        return automation

    async def list_automations(
        self, tenant_id: str | None = None, enabled_only: bool = False
    ) -> list[Automation]:
        return await asyncio.to_thread(self.store.list_automations, tenant_id, enabled_only)

    async def save_automation(self, automation: Automation) -> tuple[Automation, ValidationReport]:
        """Validate and store a graph, bumping the version of an existing automation.

        Raises:
            InvalidAutomationError: If validation reports errors.
        """
        report = validate_automation(automation)
        if not report.valid:
            raise InvalidAutomationError(
                automation.id, [issue.to_dict() for issue in report.errors]
            )

        saved = await asyncio.to_thread(self.store.save_revision, automation, utcnow())
        logger.info("Saved automation %s (v%d)", saved.id, saved.version)
        return saved, report

    async def set_enabled(self, automation_id: str, enabled: bool) -> Automation:
        """Enable or soft-disable an automation. Disabling cancels its in-flight runs."""
        updated = await asyncio.to_thread(self.store.set_enabled, automation_id, enabled, utcnow())
        if not enabled:
            cancelled = 0
            for entry in self._in_flight.values():
                if entry.automation_id == automation_id and not entry.cancel.is_set():
                    entry.cancel.set()
                    cancelled += 1
            logger.info(
                "Disabled automation %s, %d in-flight run(s) cancelled", automation_id, cancelled
            )
        else:
            logger.info("Enabled automation %s", automation_id)
        return updated

    async def validate(self, automation_id: str) -> ValidationReport:
        automation = await self.get_automation(automation_id)
        return validate_automation(automation)


__all__ = ["AutomationService", "EXTERNAL_NODE_TYPES", "TriggerResult", "external_calls_performed"]
