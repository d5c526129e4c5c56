"""Append-only step log and terminal status of runs."""

from __future__ import annotations

import asyncio
import time
from typing import Any

from ..core.exceptions import RunStateError
from ..core.logger import get_logger
from .models import Run, RunStatus, StepRecord, utcnow
from .store import AutomationStore

logger = get_logger("automation.recorder")


class RunRecorder:
    """Persists step records and the single transition out of ``running``.

    Without a store the recorder only maintains the in-memory :class:`Run`.
    Store calls are blocking and run in a worker thread.
    """

    def __init__(self, store: AutomationStore | None = None) -> None:
        self.store = store
        self._locks: dict[str, asyncio.Lock] = {}
        self._clock: dict[str, float] = {}

    def _lock_for(self, run_id: str) -> asyncio.Lock:
        lock = self._locks.get(run_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[run_id] = lock
        return lock

    async def start(self, run: Run) -> None:
        """Register a freshly created run."""
        self._clock[run.id] = time.perf_counter()
        if self.store is not None:
            await asyncio.to_thread(self.store.create_run, run)

    async def append(self, run: Run, step: StepRecord) -> None:
        """Append one step record.

        Raises:
            RunStateError: If the run is terminal or the record is out of order.
        """
        async with self._lock_for(run.id):
            if run.is_terminal:
                raise RunStateError(f"Run {run.id} is {run.status.value}; steps are closed")
            if step.index != len(run.steps):
                raise RunStateError(
                    f"Step index {step.index} does not follow {len(run.steps)} recorded steps"
                )
            if self.store is not None:
                await asyncio.to_thread(self.store.append_step, run.id, step)
            run.steps.append(step)

    async def finalize(
        self,
        run: Run,
        status: RunStatus,
        error: str | None = None,
        error_node_id: str | None = None,
    ) -> bool:
        """Move ``run`` into a terminal state.

        Returns:
            True if this call performed the transition, False if the run was
            already terminal.

        Raises:
            RunStateError: If ``status`` is not terminal.
        """
        if not status.is_terminal:
            raise RunStateError(f"Cannot finalize run {run.id} as {status.value}")

        async with self._lock_for(run.id):
            if run.is_terminal:
                return False
            completed_at = utcnow()
            started = self._clock.pop(run.id, None)
            if started is not None:
                duration_ms = (time.perf_counter() - started) * 1000
            else:
                duration_ms = (completed_at - run.started_at).total_seconds() * 1000

            if self.store is not None:
                applied = await asyncio.to_thread(
                    self.store.finalize_run,
                    run.id,
                    status,
                    run.context,
                    error,
                    error_node_id,
                    completed_at,
                    duration_ms,
                )
                if not applied:
                    logger.warning("Run %s was already finalized in the store", run.id)
                    return False

            run.status = status
            run.error = error
            run.error_node_id = error_node_id
            run.completed_at = completed_at
            run.duration_ms = duration_ms

        self._locks.pop(run.id, None)
        log = logger.info if status is RunStatus.SUCCEEDED else logger.warning
        log(
            "Run %s %s after %d step(s) in %.1fms%s",
            run.id,
            status.value,
            len(run.steps),
            duration_ms,
            f": {error}" if error else "",
        )
        return True

    def summary(self, run: Run) -> dict[str, Any]:
        """Compact status view used by trigger responses."""
        return {
            "runId": run.id,
            "automationId": run.automation_id,
            "status": run.status.value,
            "steps": len(run.steps),
        }


__all__ = ["RunRecorder"]
