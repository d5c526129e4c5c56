"""Run engine that walks an automation graph.

This module provides the RunEngine class that owns one run at a time:
- Entry at the trigger node and edge-following through the graph
- Condition branching on the current run context
- Node dispatch through the NodeExecutor (live or simulated)
- Context accumulation and step recording
- Termination on completion, failure, explicit stop, cancellation or step budget
"""

from __future__ import annotations

import asyncio
import copy
import time
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any, NoReturn

from ..core.config import EngineSettings
from ..core.exceptions import (
    AmbiguousEdgeError,
    AutomationConfigError,
    CycleDetectedError,
    DanglingBranchError,
)
from ..core.logger import get_logger
from .actions import NodeExecutor, NodeResult
from .conditions import ConditionEvaluator, condition_from_node_data
from .graph import AutomationGraph
from .models import (
    Automation,
    Node,
    Run,
    RunMode,
    RunStatus,
    StepOutcome,
    StepRecord,
    TriggerType,
    utcnow,
)
from .recorder import RunRecorder

logger = get_logger("automation.engine")


class _Stop(Exception):
    """Internal signal that the walk has finalized the run."""


class RunEngine:
    """Executes automations one run at a time.

    A single engine may drive many concurrent runs; each call to :meth:`run`
    owns its own graph copy and context.
    """

    def __init__(
        self,
        executor: NodeExecutor | None = None,
        recorder: RunRecorder | None = None,
        evaluator: ConditionEvaluator | None = None,
        settings: EngineSettings | None = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.executor = executor or NodeExecutor(settings=self.settings)
        self.recorder = recorder or RunRecorder()
        self.evaluator = evaluator or ConditionEvaluator()

    async def run(
        self,
        automation: Automation,
        trigger_payload: Mapping[str, Any] | None = None,
        mode: RunMode = RunMode.LIVE,
        *,
        run_id: str | None = None,
        cancel: asyncio.Event | None = None,
        trigger_type: TriggerType | None = None,
        on_start: Callable[[Run], None] | None = None,
    ) -> Run:
        """Execute ``automation`` and return its terminal run.

        Args:
            automation: Automation to execute; it is copied, later edits do not
                affect this run
            trigger_payload: Data the run context is seeded with
            mode: Live or test
            run_id: Id to give the run, generated when omitted
            cancel: Event that requests cancellation before the next node
            trigger_type: How the run was started, defaults to the automation's
            on_start: Called with the run once it exists, before the first node

        Returns:
            The run in a terminal state

        Raises:
            AutomationConfigError: If the graph has no usable entry point.
                No run is created in that case.
        """
        automation = automation.model_copy(deep=True)
        graph = AutomationGraph(automation)
        payload = copy.deepcopy(dict(trigger_payload or {}))

        run_kwargs: dict[str, Any] = {}
        if run_id:
            run_kwargs["id"] = run_id
        run = Run(
            automation_id=automation.id,
            automation_version=automation.version,
            tenant_id=automation.tenant_id,
            mode=mode,
            trigger_type=trigger_type or automation.trigger_type,
            trigger_payload=payload,
            context=copy.deepcopy(payload),
            **run_kwargs,
        )
        await self.recorder.start(run)
        if on_start is not None:
            on_start(run)

        logger.info(
            "Run %s started for automation %s (v%d, mode=%s)",
            run.id,
            automation.id,
            automation.version,
            mode.value,
        )

        try:
            await self._walk(run, graph, cancel)
        except _Stop:
            pass
        except asyncio.CancelledError:
            await self.recorder.finalize(run, RunStatus.CANCELLED, error="Run task cancelled")
            raise
        except Exception as exc:
            logger.error("Run %s aborted: %s", run.id, exc, exc_info=True)
            await self.recorder.finalize(run, RunStatus.FAILED, error=f"Run aborted: {exc}")
        return run

    # ------------------------------------------------------------------
    # Walk
    # ------------------------------------------------------------------
    async def _walk(self, run: Run, graph: AutomationGraph, cancel: asyncio.Event | None) -> None:
        budget = self.settings.max_steps
        current = graph.first_target(graph.trigger_node.id)

        while current is not None:
            if cancel is not None and cancel.is_set():
                logger.info("Run %s cancelled before node %s", run.id, current)
                await self.recorder.finalize(run, RunStatus.CANCELLED, error="Run cancelled")
                return

            node = graph.node(current)
            if len(run.steps) >= budget - 1:
                await self._fail(run, node, CycleDetectedError(node.id, budget))

            if node.disabled:
                await self._record(run, node, StepOutcome.SKIPPED, copy.deepcopy(run.context))
                current = graph.first_target(node.id)
                continue

            if node.type.is_condition:
                current = await self._branch(run, graph, node)
                continue

            if node.type.is_trigger:
                # Loop back into the entry point: pass through, still counted.
                await self._record(run, node, StepOutcome.SKIPPED, copy.deepcopy(run.context))
                current = graph.first_target(node.id)
                continue

            try:
                next_id = graph.single_target(node.id)
            except AmbiguousEdgeError as exc:
                await self._fail(run, node, exc)

            snapshot = copy.deepcopy(run.context)
            started_at = utcnow()
            result = await self.executor.execute(node, run.context, run.mode, tenant_id=run.tenant_id)
            await self._record(run, node, result.outcome, snapshot, result=result, started_at=started_at)

            if not result.success:
                logger.warning(
                    "Run %s failed at node %s (%s): %s",
                    run.id,
                    node.id,
                    node.type.value,
                    result.error,
                )
                await self.recorder.finalize(
                    run, RunStatus.FAILED, error=result.error, error_node_id=node.id
                )
                return

            run.context.update(copy.deepcopy(result.output))
            if result.stop:
                logger.info("Run %s stopped at node %s", run.id, node.id)
                break
            current = next_id

        await self.recorder.finalize(run, RunStatus.SUCCEEDED)

    async def _branch(self, run: Run, graph: AutomationGraph, node: Node) -> str:
        snapshot = copy.deepcopy(run.context)
        started_at = utcnow()
        started = time.perf_counter()
        branch: str | None = None
        try:
            condition = condition_from_node_data(node.data)
            branch = "true" if self.evaluator.evaluate(condition, run.context) else "false"
            targets = graph.targets(node.id, branch)
            if len(targets) != 1:
                raise DanglingBranchError(node.id, branch, len(targets))
        except AutomationConfigError as exc:
            await self._fail(run, node, exc, snapshot=snapshot, branch=branch)

        logger.debug("Run %s: condition %s took the '%s' branch", run.id, node.id, branch)
        result = NodeResult.ok({}, duration=time.perf_counter() - started)
        await self._record(
            run,
            node,
            StepOutcome.SUCCESS,
            snapshot,
            result=result,
            branch=branch,
            started_at=started_at,
        )
        return targets[0]

    # ------------------------------------------------------------------
    # Recording helpers
    # ------------------------------------------------------------------
    async def _record(
        self,
        run: Run,
        node: Node,
        outcome: StepOutcome,
        snapshot: dict[str, Any],
        *,
        result: NodeResult | None = None,
        branch: str | None = None,
        error: str | None = None,
        started_at: datetime | None = None,
    ) -> None:
        step = StepRecord(
            index=len(run.steps),
            node_id=node.id,
            node_type=node.type.value,
            input=snapshot,
            output=copy.deepcopy(result.output) if result is not None else {},
            outcome=outcome,
            error=error or (result.error if result is not None else None),
            branch=branch,
            simulated=result.simulated if result is not None else False,
            started_at=started_at or utcnow(),
            duration_ms=round(result.duration * 1000, 3) if result is not None else 0.0,
        )
        await self.recorder.append(run, step)

    async def _fail(
        self,
        run: Run,
        node: Node,
        exc: AutomationConfigError,
        *,
        snapshot: dict[str, Any] | None = None,
        branch: str | None = None,
    ) -> NoReturn:
        """Record ``exc`` as the node's failure, finalize the run and end the walk."""
        message = str(exc)
        logger.warning("Run %s: %s", run.id, message)
        await self._record(
            run,
            node,
            StepOutcome.FAILURE,
            snapshot if snapshot is not None else copy.deepcopy(run.context),
            branch=branch,
            error=message,
        )
        await self.recorder.finalize(run, RunStatus.FAILED, error=message, error_node_id=node.id)
        raise _Stop


__all__ = ["RunEngine"]
