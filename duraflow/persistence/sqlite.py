"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

from ..codec import SerializedValue
from ..contracts import (
    ActivityOutcome,
    ErrorInfo,
    EventKind,
    WorkflowEvent,
    WorkflowStatus,
    utcnow,
)
from .models import WorkflowInstance
from .repository import WorkflowRepository

_WORKFLOW_COLUMNS = (
    "instance_id, workflow_name, args, status, output, error, created_at, completed_at"
)


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._write_lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                instance_id TEXT PRIMARY KEY,
                workflow_name TEXT NOT NULL,
                args TEXT NOT NULL,
                status TEXT NOT NULL,
                output TEXT,
                error TEXT,
                created_at TEXT NOT NULL,
                completed_at TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_events (
                instance_id TEXT NOT NULL,
                seq INTEGER NOT NULL,
                kind TEXT NOT NULL,
                payload TEXT NOT NULL,
                recorded_at TEXT NOT NULL,
                PRIMARY KEY (instance_id, seq)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS activity_outcomes (
                task_id TEXT NOT NULL,
                attempt INTEGER NOT NULL,
                outcome TEXT NOT NULL,
                PRIMARY KEY (task_id, attempt)
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._write_lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._write_lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._write_lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    def _append_events(
        self, instance_id: str, events: list[tuple[str, dict[str, Any]]], recorded_at: str
    ) -> int:
        """Insert ``events`` in one transaction and return the seq of the first."""
        with self._write_lock:
            cur = self._conn.cursor()
            cur.execute(
                "SELECT COALESCE(MAX(seq) + 1, 0) FROM workflow_events WHERE instance_id = ?",
                (instance_id,),
            )
            first = cur.fetchone()[0]
            try:
                for offset, (kind, payload) in enumerate(events):
                    cur.execute(
                        "INSERT INTO workflow_events (instance_id, seq, kind, payload, recorded_at) VALUES (?, ?, ?, ?, ?)",
                        (instance_id, first + offset, kind, json.dumps(payload), recorded_at),
                    )
            except Exception:
                self._conn.rollback()
                raise
            self._conn.commit()
            return first

    @staticmethod
    def _row_to_instance(row: sqlite3.Row) -> WorkflowInstance:
        return WorkflowInstance(
            instance_id=row["instance_id"],
            workflow_name=row["workflow_name"],
            args=json.loads(row["args"]),
            status=row["status"],
            output=json.loads(row["output"]) if row["output"] else None,
            error=json.loads(row["error"]) if row["error"] else None,
            created_at=datetime.fromisoformat(row["created_at"]),
            completed_at=(
                datetime.fromisoformat(row["completed_at"]) if row["completed_at"] else None
            ),
        )

    # ------------------------------------------------------------------
    # Repository API
    async def create_workflow(self, instance: WorkflowInstance) -> None:
        await asyncio.to_thread(
            self._execute,
            f"INSERT INTO workflows ({_WORKFLOW_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            instance.instance_id,
            instance.workflow_name,
            json.dumps([a.model_dump(mode="json") for a in instance.args]),
            instance.status.value,
            instance.output.model_dump_json() if instance.output else None,
            instance.error.model_dump_json() if instance.error else None,
            instance.created_at.isoformat(),
            instance.completed_at.isoformat() if instance.completed_at else None,
        )

    async def get_workflow(self, instance_id: str) -> WorkflowInstance | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_WORKFLOW_COLUMNS} FROM workflows WHERE instance_id = ?",
            instance_id,
        )
        if not row:
            return None
        return self._row_to_instance(row)

    async def list_workflows(self) -> list[WorkflowInstance]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_WORKFLOW_COLUMNS} FROM workflows ORDER BY created_at",
        )
        return [self._row_to_instance(row) for row in rows]

    async def set_status(
        self,
        instance_id: str,
        status: WorkflowStatus,
        output: SerializedValue | None = None,
        error: ErrorInfo | None = None,
    ) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE workflows
            SET status = ?, output = ?, error = ?, completed_at = ?
            WHERE instance_id = ? AND status = ?
            """,
            status.value,
            output.model_dump_json() if output else None,
            error.model_dump_json() if error else None,
            utcnow().isoformat() if status.is_terminal else None,
            instance_id,
            WorkflowStatus.RUNNING.value,
        )

    async def append_event(
        self, instance_id: str, kind: EventKind, payload: dict[str, Any]
    ) -> WorkflowEvent:
        (event,) = await self.append_events(instance_id, [(kind, payload)])
        return event

    async def append_events(
        self, instance_id: str, events: list[tuple[EventKind, dict[str, Any]]]
    ) -> list[WorkflowEvent]:
        recorded_at = utcnow()
        first = await asyncio.to_thread(
            self._append_events,
            instance_id,
            [(kind.value, payload) for kind, payload in events],
            recorded_at.isoformat(),
        )
        return [
            WorkflowEvent(
                instance_id=instance_id,
                seq=first + offset,
                kind=kind,
                payload=payload,
                recorded_at=recorded_at,
            )
            for offset, (kind, payload) in enumerate(events)
        ]

    async def get_history(self, instance_id: str) -> list[WorkflowEvent]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT instance_id, seq, kind, payload, recorded_at FROM workflow_events WHERE instance_id = ? ORDER BY seq",
            instance_id,
        )
        return [
            WorkflowEvent(
                instance_id=r["instance_id"],
                seq=r["seq"],
                kind=r["kind"],
                payload=json.loads(r["payload"]),
                recorded_at=datetime.fromisoformat(r["recorded_at"]),
            )
            for r in rows
        ]

    async def record_outcome(self, outcome: ActivityOutcome) -> bool:
        inserted = await asyncio.to_thread(
            self._execute,
            "INSERT OR IGNORE INTO activity_outcomes (task_id, attempt, outcome) VALUES (?, ?, ?)",
            outcome.task_id,
            outcome.attempt,
            outcome.model_dump_json(),
        )
        return inserted == 1

    async def get_outcome(self, task_id: str) -> ActivityOutcome | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT outcome FROM activity_outcomes WHERE task_id = ? ORDER BY attempt DESC LIMIT 1",
            task_id,
        )
        if not row:
            return None
        return ActivityOutcome.model_validate_json(row["outcome"])

    async def list_outcomes(self, task_id: str) -> list[ActivityOutcome]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT outcome FROM activity_outcomes WHERE task_id = ? ORDER BY attempt",
            task_id,
        )
        return [ActivityOutcome.model_validate_json(r["outcome"]) for r in rows]

    def close(self) -> None:
        self._conn.close()
