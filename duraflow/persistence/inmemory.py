"""In-memory implementation of the workflow repository."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List

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


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._workflows: Dict[str, WorkflowInstance] = {}
        self._events: Dict[str, List[WorkflowEvent]] = {}
        self._outcomes: Dict[str, Dict[int, ActivityOutcome]] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    async def create_workflow(self, instance: WorkflowInstance) -> None:
        async with self._lock:
            if instance.instance_id in self._workflows:
                raise ValueError(f"Workflow {instance.instance_id} already exists")
            self._workflows[instance.instance_id] = instance.model_copy(deep=True)
            self._events[instance.instance_id] = []

    async def get_workflow(self, instance_id: str) -> WorkflowInstance | None:
        wf = self._workflows.get(instance_id)
        return wf.model_copy(deep=True) if wf else None

    async def list_workflows(self) -> list[WorkflowInstance]:
        return [wf.model_copy(deep=True) for wf in self._workflows.values()]

    async def set_status(
        self,
        instance_id: str,
        status: WorkflowStatus,
        output: SerializedValue | None = None,
        error: ErrorInfo | None = None,
    ) -> None:
        async with self._lock:
            wf = self._workflows.get(instance_id)
            if not wf or wf.status.is_terminal:
                return
            wf.status = status
            wf.output = output
            wf.error = error
            if status.is_terminal:
                wf.completed_at = utcnow()

    async def append_event(
        self, instance_id: str, kind: EventKind, payload: dict[str, Any]
    ) -> WorkflowEvent:
        (event,) = await self.append_events(instance_id, [(kind, payload)])
        return event

    async def append_events(
        self, instance_id: str, events: list[tuple[EventKind, dict[str, Any]]]
    ) -> list[WorkflowEvent]:
        async with self._lock:
            history = self._events.setdefault(instance_id, [])
            recorded_at = utcnow()
            new = [
                WorkflowEvent(
                    instance_id=instance_id,
                    seq=len(history) + offset,
                    kind=kind,
                    payload=payload,
                    recorded_at=recorded_at,
                )
                for offset, (kind, payload) in enumerate(events)
            ]
            history.extend(new)
            return [e.model_copy(deep=True) for e in new]

    async def get_history(self, instance_id: str) -> list[WorkflowEvent]:
        return [e.model_copy(deep=True) for e in self._events.get(instance_id, [])]

    async def record_outcome(self, outcome: ActivityOutcome) -> bool:
        async with self._lock:
            attempts = self._outcomes.setdefault(outcome.task_id, {})
            if outcome.attempt in attempts:
                return False
            attempts[outcome.attempt] = outcome.model_copy(deep=True)
            return True

    async def get_outcome(self, task_id: str) -> ActivityOutcome | None:
        attempts = self._outcomes.get(task_id)
        if not attempts:
            return None
        return attempts[max(attempts)].model_copy(deep=True)

    async def list_outcomes(self, task_id: str) -> list[ActivityOutcome]:
        attempts = self._outcomes.get(task_id, {})
        return [attempts[n].model_copy(deep=True) for n in sorted(attempts)]
