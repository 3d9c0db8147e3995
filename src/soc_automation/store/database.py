"""
Playbook Store Database

SQLite-based storage for playbooks and playbook executions.
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

from soc_automation.store.models import (
    ExecutionStatus,
    Playbook,
    PlaybookExecution,
    PlaybookStep,
    StepResult,
    TriggerSource,
)
from soc_automation.store.repository import PlaybookRepository


# SQL Schema
SCHEMA = """
-- Playbooks table
CREATE TABLE IF NOT EXISTS playbooks (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    trigger_type TEXT NOT NULL,
    trigger_conditions TEXT,
    steps TEXT NOT NULL,
    is_active INTEGER DEFAULT 1,
    organization_id TEXT,
    execution_count INTEGER DEFAULT 0,
    avg_execution_time_ms REAL DEFAULT 0.0
);

-- Executions table
CREATE TABLE IF NOT EXISTS playbook_executions (
    id TEXT PRIMARY KEY,
    playbook_id TEXT NOT NULL,
    organization_id TEXT,
    status TEXT NOT NULL,
    trigger_source TEXT NOT NULL,
    triggered_by TEXT,
    trigger_entity_id TEXT,
    started_at TEXT NOT NULL,
    completed_at TEXT,
    step_results TEXT,
    error TEXT,
    duration_ms REAL DEFAULT 0.0,
    FOREIGN KEY (playbook_id) REFERENCES playbooks(id)
);

-- Indexes for performance
CREATE INDEX IF NOT EXISTS idx_playbooks_trigger ON playbooks(trigger_type, is_active);
CREATE INDEX IF NOT EXISTS idx_executions_playbook ON playbook_executions(playbook_id);
CREATE INDEX IF NOT EXISTS idx_executions_started ON playbook_executions(started_at);
"""


def _dump_id(value: Any) -> Optional[str]:
    return None if value is None else str(value)


class SQLitePlaybookRepository(PlaybookRepository):
    """
    SQLite-backed playbook repository.

    Playbook steps, conditions and step results are stored as JSON columns.
    Callable trigger conditions cannot be persisted and are stored as NULL.
    """

    def __init__(self, db_path: str = "./data/playbooks.db"):
        """
        Initialize the playbook store.

        Args:
            db_path: Path to SQLite database file.
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # Serializes read-modify-write of execution statistics
        self._stats_lock = threading.Lock()
        self._init_db()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.executescript(SCHEMA)
            conn.commit()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    # === Playbook Operations ===

    def save_playbook(self, playbook: Playbook) -> Playbook:
        """Insert or replace a playbook."""
        playbook.validate()
        data = playbook.to_dict()
        with self._get_connection() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO playbooks
                   (id, name, description, trigger_type, trigger_conditions, steps,
                    is_active, organization_id, execution_count, avg_execution_time_ms)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (data["id"], data["name"], data["description"], data["trigger_type"],
                 json.dumps(data["trigger_conditions"]) if data["trigger_conditions"] is not None else None,
                 json.dumps(data["steps"]), int(playbook.is_active),
                 _dump_id(playbook.organization_id), playbook.execution_count,
                 playbook.avg_execution_time_ms)
            )
            conn.commit()
        return playbook

    def get_playbook(self, playbook_id: str) -> Optional[Playbook]:
        """Get playbook by ID."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM playbooks WHERE id = ?", (playbook_id,)
            ).fetchone()
            if row:
                return self._row_to_playbook(row)
        return None

    def list_active_playbooks(
        self,
        trigger_type: Optional[str] = None,
        organization_id: Any = None,
    ) -> list[Playbook]:
        """List active playbooks, optionally for one trigger type and organization."""
        query = "SELECT * FROM playbooks WHERE is_active = 1"
        params: list[Any] = []
        if trigger_type is not None:
            query += " AND trigger_type = ?"
            params.append(trigger_type)
        if organization_id is not None:
            query += " AND (organization_id IS NULL OR organization_id = ?)"
            params.append(str(organization_id))
        query += " ORDER BY id"

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
            return [self._row_to_playbook(row) for row in rows]

    def increment_execution_stats(
        self, playbook_id: str, duration_ms: float
    ) -> Optional[Playbook]:
        """Bump execution count and update the moving-average duration."""
        with self._stats_lock:
            playbook = self.get_playbook(playbook_id)
            if playbook is None:
                return None
            playbook.record_execution(duration_ms)
            with self._get_connection() as conn:
                conn.execute(
                    """UPDATE playbooks
                       SET execution_count = ?, avg_execution_time_ms = ?
                       WHERE id = ?""",
                    (playbook.execution_count, playbook.avg_execution_time_ms, playbook_id)
                )
                conn.commit()
        return playbook

    def _row_to_playbook(self, row: sqlite3.Row) -> Playbook:
        """Convert database row to Playbook object."""
        return Playbook(
            id=row["id"],
            name=row["name"],
            description=row["description"] or "",
            trigger_type=row["trigger_type"],
            trigger_conditions=json.loads(row["trigger_conditions"]) if row["trigger_conditions"] else None,
            steps=[PlaybookStep.from_dict(s) for s in json.loads(row["steps"])],
            is_active=bool(row["is_active"]),
            organization_id=row["organization_id"],
            execution_count=row["execution_count"],
            avg_execution_time_ms=row["avg_execution_time_ms"],
        )

    # === Execution Operations ===

    def create_execution(self, execution: PlaybookExecution) -> PlaybookExecution:
        """Persist a new execution record."""
        data = execution.to_dict()
        with self._get_connection() as conn:
            conn.execute(
                """INSERT INTO playbook_executions
                   (id, playbook_id, organization_id, status, trigger_source,
                    triggered_by, trigger_entity_id, started_at, completed_at,
                    step_results, error, duration_ms)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (data["id"], data["playbook_id"], _dump_id(execution.organization_id),
                 data["status"], data["trigger_source"], data["triggered_by"],
                 _dump_id(execution.trigger_entity_id), data["started_at"],
                 data["completed_at"], json.dumps(data["step_results"]),
                 data["error"], execution.duration_ms)
            )
            conn.commit()
        return execution

    def update_execution(self, execution: PlaybookExecution) -> PlaybookExecution:
        """Persist status, step results and timing of an execution."""
        data = execution.to_dict()
        with self._get_connection() as conn:
            cursor = conn.execute(
                """UPDATE playbook_executions
                   SET status = ?, completed_at = ?, step_results = ?, error = ?,
                       duration_ms = ?
                   WHERE id = ?""",
                (data["status"], data["completed_at"], json.dumps(data["step_results"]),
                 data["error"], execution.duration_ms, data["id"])
            )
            conn.commit()
            if cursor.rowcount == 0:
                raise KeyError(f"Unknown execution: {execution.id}")
        return execution

    def get_execution(self, execution_id: str) -> Optional[PlaybookExecution]:
        """Get execution by ID."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM playbook_executions WHERE id = ?", (execution_id,)
            ).fetchone()
            if row:
                return self._row_to_execution(row)
        return None

    def list_executions(
        self, playbook_id: Optional[str] = None, limit: int = 50
    ) -> list[PlaybookExecution]:
        """List recent executions, newest first."""
        with self._get_connection() as conn:
            if playbook_id:
                rows = conn.execute(
                    """SELECT * FROM playbook_executions WHERE playbook_id = ?
                       ORDER BY started_at DESC LIMIT ?""",
                    (playbook_id, limit)
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM playbook_executions ORDER BY started_at DESC LIMIT ?",
                    (limit,)
                ).fetchall()
            return [self._row_to_execution(row) for row in rows]

    def _row_to_execution(self, row: sqlite3.Row) -> PlaybookExecution:
        """Convert database row to PlaybookExecution object."""
        return PlaybookExecution(
            id=row["id"],
            playbook_id=row["playbook_id"],
            organization_id=row["organization_id"],
            status=ExecutionStatus(row["status"]),
            trigger_source=TriggerSource(row["trigger_source"]),
            triggered_by=row["triggered_by"],
            trigger_entity_id=row["trigger_entity_id"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            step_results=[
                StepResult.from_dict(s) for s in json.loads(row["step_results"] or "[]")
            ],
            error=row["error"],
            duration_ms=row["duration_ms"] or 0.0,
        )
