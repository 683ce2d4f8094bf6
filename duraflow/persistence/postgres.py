"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

import json
from typing import Any

import asyncpg

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


def _loads(value: Any) -> Any:
    if value is None:
        return None
    return json.loads(value) if isinstance(value, str) else value


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflow state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                instance_id TEXT PRIMARY KEY,
                workflow_name TEXT NOT NULL,
                args JSONB NOT NULL,
                status TEXT NOT NULL,
                output JSONB,
                error JSONB,
                created_at TIMESTAMPTZ NOT NULL,
                completed_at TIMESTAMPTZ
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_events (
                instance_id TEXT NOT NULL,
                seq INTEGER NOT NULL,
                kind TEXT NOT NULL,
                payload JSONB NOT NULL,
                recorded_at TIMESTAMPTZ NOT NULL,
                PRIMARY KEY (instance_id, seq)
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS activity_outcomes (
                task_id TEXT NOT NULL,
                attempt INTEGER NOT NULL,
                outcome JSONB NOT NULL,
                PRIMARY KEY (task_id, attempt)
            )
            """
        )

    @staticmethod
    def _row_to_instance(row: asyncpg.Record) -> WorkflowInstance:
        return WorkflowInstance(
            instance_id=row["instance_id"],
            workflow_name=row["workflow_name"],
            args=_loads(row["args"]),
            status=row["status"],
            output=_loads(row["output"]),
            error=_loads(row["error"]),
            created_at=row["created_at"],
            completed_at=row["completed_at"],
        )

    # ------------------------------------------------------------------
    async def create_workflow(self, instance: WorkflowInstance) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                f"INSERT INTO workflows ({_WORKFLOW_COLUMNS}) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)",
                instance.instance_id,
                instance.workflow_name,
                json.dumps([a.model_dump(mode="json") for a in instance.args]),
                instance.status.value,
                instance.output.model_dump_json() if instance.output else None,
                instance.error.model_dump_json() if instance.error else None,
                instance.created_at,
                instance.completed_at,
            )
        finally:
            await conn.close()

    async def get_workflow(self, instance_id: str) -> WorkflowInstance | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {_WORKFLOW_COLUMNS} FROM workflows WHERE instance_id = $1",
                instance_id,
            )
        finally:
            await conn.close()
        if not row:
            return None
        return self._row_to_instance(row)

    async def list_workflows(self) -> list[WorkflowInstance]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"SELECT {_WORKFLOW_COLUMNS} FROM workflows ORDER BY created_at"
            )
        finally:
            await conn.close()
        return [self._row_to_instance(r) for r in rows]

    async def set_status(
        self,
        instance_id: str,
        status: WorkflowStatus,
        output: SerializedValue | None = None,
        error: ErrorInfo | None = None,
    ) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                UPDATE workflows
                SET status = $1, output = $2, error = $3, completed_at = $4
                WHERE instance_id = $5 AND status = $6
                """,
                status.value,
                output.model_dump_json() if output else None,
                error.model_dump_json() if error else None,
                utcnow() if status.is_terminal else None,
                instance_id,
                WorkflowStatus.RUNNING.value,
            )
        finally:
            await conn.close()

    async def append_event(
        self, instance_id: str, kind: EventKind, payload: dict[str, Any]
    ) -> WorkflowEvent:
        (event,) = await self.append_events(instance_id, [(kind, payload)])
        return event

    async def append_events(
        self, instance_id: str, events: list[tuple[EventKind, dict[str, Any]]]
    ) -> list[WorkflowEvent]:
        recorded_at = utcnow()
        stored = []
        conn = await self._connect()
        try:
            async with conn.transaction():
                for kind, payload in events:
                    seq = await conn.fetchval(
                        """
                        INSERT INTO workflow_events (instance_id, seq, kind, payload, recorded_at)
                        SELECT $1, COALESCE(MAX(seq) + 1, 0), $2, $3, $4
                        FROM workflow_events WHERE instance_id = $1
                        RETURNING seq
                        """,
                        instance_id,
                        kind.value,
                        json.dumps(payload),
                        recorded_at,
                    )
                    stored.append(
                        WorkflowEvent(
                            instance_id=instance_id,
                            seq=seq,
                            kind=kind,
                            payload=payload,
                            recorded_at=recorded_at,
                        )
                    )
        finally:
            await conn.close()
        return stored

    async def get_history(self, instance_id: str) -> list[WorkflowEvent]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT instance_id, seq, kind, payload, recorded_at FROM workflow_events WHERE instance_id = $1 ORDER BY seq",
                instance_id,
            )
        finally:
            await conn.close()
        return [
            WorkflowEvent(
                instance_id=r["instance_id"],
                seq=r["seq"],
                kind=r["kind"],
                payload=_loads(r["payload"]),
                recorded_at=r["recorded_at"],
            )
            for r in rows
        ]

    async def record_outcome(self, outcome: ActivityOutcome) -> bool:
        conn = await self._connect()
        try:
            status = await conn.execute(
                """
                INSERT INTO activity_outcomes (task_id, attempt, outcome)
                VALUES ($1, $2, $3)
                ON CONFLICT (task_id, attempt) DO NOTHING
                """,
                outcome.task_id,
                outcome.attempt,
                outcome.model_dump_json(),
            )
        finally:
            await conn.close()
        return status.endswith(" 1")

    async def get_outcome(self, task_id: str) -> ActivityOutcome | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT outcome FROM activity_outcomes WHERE task_id = $1 ORDER BY attempt DESC LIMIT 1",
                task_id,
            )
        finally:
            await conn.close()
        if not row:
            return None
        return ActivityOutcome.model_validate(_loads(row["outcome"]))

    async def list_outcomes(self, task_id: str) -> list[ActivityOutcome]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT outcome FROM activity_outcomes WHERE task_id = $1 ORDER BY attempt",
                task_id,
            )
        finally:
            await conn.close()
        return [ActivityOutcome.model_validate(_loads(r["outcome"])) for r in rows]
