"""Repository abstraction for durable workflow state."""

from __future__ import annotations

from typing import Any, Protocol

from ..codec import SerializedValue
from ..contracts import (
    ActivityOutcome,
    ErrorInfo,
    EventKind,
    WorkflowEvent,
    WorkflowStatus,
)
from .models import WorkflowInstance


class WorkflowRepository(Protocol):
    """Protocol for workflow state persistence backends.

    Histories are append-only and outcomes are write-once per
    ``(task_id, attempt)``.
    """

    async def create_workflow(self, instance: WorkflowInstance) -> None:
        """Persist a new instance with an empty history."""

    async def get_workflow(self, instance_id: str) -> WorkflowInstance | None:
        """Retrieve the workflow instance by id."""

    async def list_workflows(self) -> list[WorkflowInstance]:
        """Return all persisted workflows."""

    async def set_status(
        self,
        instance_id: str,
        status: WorkflowStatus,
        output: SerializedValue | None = None,
        error: ErrorInfo | None = None,
    ) -> None:
        """Move a running instance to ``status``; terminal instances are left alone."""

    async def append_event(
        self, instance_id: str, kind: EventKind, payload: dict[str, Any]
    ) -> WorkflowEvent:
        """Append an event to the instance history and return it with its seq."""

    async def append_events(
        self, instance_id: str, events: list[tuple[EventKind, dict[str, Any]]]
    ) -> list[WorkflowEvent]:
        """Append ``events`` in order as one unit: either all are stored or none."""

    async def get_history(self, instance_id: str) -> list[WorkflowEvent]:
        """Return the instance history ordered by seq."""

    async def record_outcome(self, outcome: ActivityOutcome) -> bool:
        """Store ``outcome`` unless one exists for the same attempt.

        Returns ``True`` when the outcome was newly written.
        """

    async def get_outcome(self, task_id: str) -> ActivityOutcome | None:
        """Return the outcome of the latest recorded attempt."""

    async def list_outcomes(self, task_id: str) -> list[ActivityOutcome]:
        """Return all recorded attempts ordered by attempt."""
