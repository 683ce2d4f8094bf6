"""Core message contracts for the duraflow execution system."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .codec import SerializedValue
from .errors import DuraflowError, ErrorKind


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ErrorInfo(BaseModel):
    """Serializable description of an error."""

    kind: ErrorKind
    message: str

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ErrorInfo":
        if isinstance(exc, DuraflowError):
            kind = exc.kind
        else:
            kind = ErrorKind.ACTIVITY_EXECUTION_ERROR
        message = str(exc) or type(exc).__name__
        return cls(kind=kind, message=message)


class QueueMessage(BaseModel):
    """Base for everything exchanged over a transport channel."""

    def to_json(self) -> str:
        """Serialize message to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str | bytes):
        """Deserialize message from JSON."""
        return cls.model_validate_json(data)


class ActivityTask(QueueMessage):
    """One attempt at running an activity on behalf of a workflow instance."""

    task_id: str
    instance_id: str
    activity_name: str
    args: List[SerializedValue] = Field(default_factory=list)
    attempt: int = Field(default=1, ge=1)

    def bump_attempt(self) -> "ActivityTask":
        """Return a copy of this task for the next attempt."""
        return self.model_copy(update={"attempt": self.attempt + 1})


class WorkflowTask(QueueMessage):
    """Request to run one drive pass for an instance.

    ``completed_task_id`` names the activity whose terminal outcome triggered
    the pass; it is ``None`` for starts and manual resumes.
    """

    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    instance_id: str
    completed_task_id: Optional[str] = None


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class ActivityOutcome(BaseModel):
    """Immutable record of one finished attempt."""

    task_id: str
    instance_id: str
    activity_name: str
    status: OutcomeStatus
    result: Optional[SerializedValue] = None
    error: Optional[ErrorInfo] = None
    attempt: int = 1
    terminal: bool = True
    finished_at: datetime = Field(default_factory=utcnow)

    @property
    def succeeded(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS


class WorkflowStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not WorkflowStatus.RUNNING


class EventKind(str, Enum):
    ACTIVITY_SCHEDULED = "activity_scheduled"
    ACTIVITY_COMPLETED = "activity_completed"
    ACTIVITIES_DISPATCHED = "activities_dispatched"
    WORKFLOW_COMPLETED = "workflow_completed"
    WORKFLOW_FAILED = "workflow_failed"


class WorkflowEvent(BaseModel):
    """Append-only entry of an instance's history."""

    instance_id: str
    seq: int
    kind: EventKind
    payload: Dict[str, Any] = Field(default_factory=dict)
    recorded_at: datetime = Field(default_factory=utcnow)


class ScheduledActivity(BaseModel):
    """Payload of an ``ActivityScheduled`` event."""

    task_id: str
    batch: int
    index: int
    activity_name: str
    args: List[SerializedValue] = Field(default_factory=list)

    @staticmethod
    def task_id_for(instance_id: str, batch: int, index: int) -> str:
        return f"{instance_id}:{batch}:{index}"
