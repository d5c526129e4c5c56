"""SQLite persistence for automations and run history."""

from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from ..core.exceptions import AutomationNotFoundError, RunStateError
from ..core.logger import get_logger
from .models import Automation, Run, RunStatus, StepRecord

logger = get_logger("automation.store")


class AutomationStore:
    """SQLite-based storage for automation documents, runs and step records.

    Documents are stored as JSON keyed by id. Step records are insert-only and
    a run row only leaves ``running`` through :meth:`finalize_run`.
    """

    def __init__(self, db_path: str | Path | None = None) -> None:
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file. None for in-memory database.
        """
        self.db_path = str(db_path) if db_path else ":memory:"
        self._lock = threading.RLock()
        self._connection: sqlite3.Connection | None = None
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get the shared database connection.

        One connection is shared by all threads (guarded by a lock) so that an
        in-memory database is visible from worker threads.
        """
        if self._connection is None:
            self._connection = sqlite3.connect(self.db_path, check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
        return self._connection

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        """Context manager for database cursor."""
        with self._lock:
            conn = self._get_connection()
            cursor = conn.cursor()
            try:
                yield cursor
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._cursor() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS automations (
                    id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    enabled INTEGER NOT NULL,
                    trigger_type TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    document TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_automations_tenant
                ON automations(tenant_id, enabled)
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS runs (
                    id TEXT PRIMARY KEY,
                    automation_id TEXT NOT NULL,
                    automation_version INTEGER NOT NULL,
                    tenant_id TEXT NOT NULL,
                    mode TEXT NOT NULL,
                    trigger_type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    trigger_payload TEXT NOT NULL,
                    context TEXT,
                    error TEXT,
                    error_node_id TEXT,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    duration_ms REAL
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_runs_automation
                ON runs(automation_id, started_at DESC)
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS run_steps (
                    run_id TEXT NOT NULL,
                    step_index INTEGER NOT NULL,
                    node_id TEXT NOT NULL,
                    node_type TEXT NOT NULL,
                    outcome TEXT NOT NULL,
                    document TEXT NOT NULL,
                    PRIMARY KEY (run_id, step_index)
                )
            """)
        logger.info("Automation store initialized: %s", self.db_path)

    # ------------------------------------------------------------------
    # Automations
    # ------------------------------------------------------------------
    def save_automation(self, automation: Automation) -> None:
        """Insert or replace an automation document."""
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO automations
                    (id, tenant_id, name, enabled, trigger_type, version, document, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    tenant_id = excluded.tenant_id,
                    name = excluded.name,
                    enabled = excluded.enabled,
                    trigger_type = excluded.trigger_type,
                    version = excluded.version,
                    document = excluded.document,
                    updated_at = excluded.updated_at
                """,
                (
                    automation.id,
                    automation.tenant_id,
                    automation.name,
                    1 if automation.enabled else 0,
                    automation.trigger_type.value,
                    automation.version,
                    json.dumps(automation.to_document()),
                    automation.updated_at.isoformat(),
                ),
            )

    def get_automation(self, automation_id: str) -> Automation | None:
        with self._cursor() as cursor:
            cursor.execute("SELECT document FROM automations WHERE id = ?", (automation_id,))
            row = cursor.fetchone()
        if row is None:
            return None
        return Automation.from_document(json.loads(row["document"]))

    def list_automations(
        self, tenant_id: str | None = None, enabled_only: bool = False
    ) -> list[Automation]:
        query = "SELECT document FROM automations WHERE 1 = 1"
        params: list[Any] = []
        if tenant_id is not None:
            query += " AND tenant_id = ?"
            params.append(tenant_id)
        if enabled_only:
            query += " AND enabled = 1"
        query += " ORDER BY name"
        with self._cursor() as cursor:
            cursor.execute(query, params)
            rows = cursor.fetchall()
        return [Automation.from_document(json.loads(row["document"])) for row in rows]

    def record_execution(
        self,
        automation_id: str,
        status: str,
        error: str | None,
        executed_at: datetime,
    ) -> Automation:
        """Update an automation's live execution counters.

        Raises:
            AutomationNotFoundError: If the automation does not exist.
        """
        with self._lock:
            automation = self.get_automation(automation_id)
            if automation is None:
                raise AutomationNotFoundError(automation_id)
            automation.execution_count += 1
            automation.last_executed_at = executed_at
            automation.last_execution_status = status
            automation.last_error = error
            self.save_automation(automation)
            return automation

    def save_revision(self, automation: Automation, updated_at: datetime) -> Automation:
        """Store a new revision of an automation graph.

        An existing automation keeps its creation time and execution counters
        and has its version bumped.
        """
        with self._lock:
            existing = self.get_automation(automation.id)
            updates: dict[str, Any] = {"updated_at": updated_at}
            if existing is not None:
                updates.update(
                    version=existing.version + 1,
                    created_at=existing.created_at,
                    execution_count=existing.execution_count,
                    last_executed_at=existing.last_executed_at,
                    last_execution_status=existing.last_execution_status,
                    last_error=existing.last_error,
                )
            saved = automation.model_copy(update=updates, deep=True)
            self.save_automation(saved)
            return saved

    def set_enabled(self, automation_id: str, enabled: bool, updated_at: datetime) -> Automation:
        """Flip an automation's enabled flag.

        Raises:
            AutomationNotFoundError: If the automation does not exist.
        """
        with self._lock:
            automation = self.get_automation(automation_id)
            if automation is None:
                raise AutomationNotFoundError(automation_id)
            automation.enabled = enabled
            automation.updated_at = updated_at
            self.save_automation(automation)
            return automation

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------
    def create_run(self, run: Run) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO runs (
                    id, automation_id, automation_version, tenant_id, mode, trigger_type,
                    status, trigger_payload, context, started_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    run.id,
                    run.automation_id,
                    run.automation_version,
                    run.tenant_id,
                    run.mode.value,
                    run.trigger_type.value,
                    run.status.value,
                    json.dumps(run.trigger_payload, default=str),
                    json.dumps(run.context, default=str),
                    run.started_at.isoformat(),
                ),
            )

    def append_step(self, run_id: str, step: StepRecord) -> None:
        """Insert a step record for a running run.

        Raises:
            RunStateError: If the run is not running or the index is already taken.
        """
        document = step.model_dump_json()
        try:
            with self._cursor() as cursor:
                cursor.execute(
                    """
                    INSERT INTO run_steps (run_id, step_index, node_id, node_type, outcome, document)
                    SELECT ?, ?, ?, ?, ?, ?
                    WHERE EXISTS (SELECT 1 FROM runs WHERE id = ? AND status = 'running')
                    """,
                    (
                        run_id,
                        step.index,
                        step.node_id,
                        step.node_type,
                        step.outcome.value,
                        document,
                        run_id,
                    ),
                )
                inserted = cursor.rowcount
        except sqlite3.IntegrityError as exc:
            raise RunStateError(f"Step {step.index} of run {run_id} is already recorded") from exc
        if inserted != 1:
            raise RunStateError(f"Run {run_id} is not running")

    def finalize_run(
        self,
        run_id: str,
        status: RunStatus,
        context: dict[str, Any],
        error: str | None,
        error_node_id: str | None,
        completed_at: datetime,
        duration_ms: float,
    ) -> bool:
        """Move a run out of ``running``. Returns False if it was already terminal."""
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE runs
                SET status = ?, context = ?, error = ?, error_node_id = ?,
                    completed_at = ?, duration_ms = ?
                WHERE id = ? AND status = 'running'
                """,
                (
                    status.value,
                    json.dumps(context, default=str),
                    error,
                    error_node_id,
                    completed_at.isoformat(),
                    duration_ms,
                    run_id,
                ),
            )
            return cursor.rowcount == 1

    def get_run(self, run_id: str) -> Run | None:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM runs WHERE id = ?", (run_id,))
            row = cursor.fetchone()
            if row is None:
                return None
            cursor.execute(
                "SELECT document FROM run_steps WHERE run_id = ? ORDER BY step_index",
                (run_id,),
            )
            step_rows = cursor.fetchall()
        return self._row_to_run(row, step_rows)

    def list_runs(
        self,
        automation_id: str | None = None,
        limit: int = 50,
        status: RunStatus | None = None,
    ) -> list[Run]:
        """Most recent runs first, without their step records."""
        query = "SELECT * FROM runs WHERE 1 = 1"
        params: list[Any] = []
        if automation_id is not None:
            query += " AND automation_id = ?"
            params.append(automation_id)
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY started_at DESC LIMIT ?"
        params.append(limit)
        with self._cursor() as cursor:
            cursor.execute(query, params)
            rows = cursor.fetchall()
        return [self._row_to_run(row, []) for row in rows]

    @staticmethod
    def _row_to_run(row: sqlite3.Row, step_rows: list[sqlite3.Row]) -> Run:
        return Run(
            id=row["id"],
            automation_id=row["automation_id"],
            automation_version=row["automation_version"],
            tenant_id=row["tenant_id"],
            mode=row["mode"],
            trigger_type=row["trigger_type"],
            status=row["status"],
            trigger_payload=json.loads(row["trigger_payload"]),
            context=json.loads(row["context"]) if row["context"] else {},
            error=row["error"],
            error_node_id=row["error_node_id"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            duration_ms=row["duration_ms"],
            steps=[StepRecord.model_validate_json(step["document"]) for step in step_rows],
        )

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None


__all__ = ["AutomationStore"]
