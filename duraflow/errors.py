"""Error types raised by the duraflow engines."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Stable identifiers recorded alongside failed outcomes and instances."""

    UNKNOWN_ACTIVITY = "UnknownActivity"
    UNKNOWN_WORKFLOW = "UnknownWorkflow"
    ACTIVITY_TIMEOUT = "ActivityTimeout"
    ACTIVITY_EXECUTION_ERROR = "ActivityExecutionError"
    WORKFLOW_REPLAY_MISMATCH = "WorkflowReplayMismatch"
    NOT_COMPLETED = "NotCompleted"


class DuraflowError(Exception):
    """Base class for all duraflow errors."""

    kind: ErrorKind = ErrorKind.ACTIVITY_EXECUTION_ERROR


class UnknownActivity(DuraflowError, LookupError):
    kind = ErrorKind.UNKNOWN_ACTIVITY


class UnknownWorkflow(DuraflowError, LookupError):
    kind = ErrorKind.UNKNOWN_WORKFLOW


class ActivityExecutionError(DuraflowError):
    """An activity raised, or its terminal outcome surfaced into a workflow."""

    kind = ErrorKind.ACTIVITY_EXECUTION_ERROR

    def __init__(
        self,
        message: str,
        activity_name: Optional[str] = None,
        task_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.activity_name = activity_name
        self.task_id = task_id


class ActivityTimeout(ActivityExecutionError):
    kind = ErrorKind.ACTIVITY_TIMEOUT


class WorkflowReplayMismatch(DuraflowError):
    """History is inconsistent with the current workflow definition."""

    kind = ErrorKind.WORKFLOW_REPLAY_MISMATCH


class NotCompleted(DuraflowError):
    kind = ErrorKind.NOT_COMPLETED


class WorkflowNotFound(DuraflowError, LookupError):
    """No persisted instance exists for the requested id."""


class InvalidUpload(DuraflowError, ValueError):
    """Upload rejected before a workflow was started."""


ERRORS_BY_KIND = {
    ErrorKind.UNKNOWN_ACTIVITY: UnknownActivity,
    ErrorKind.UNKNOWN_WORKFLOW: UnknownWorkflow,
    ErrorKind.ACTIVITY_TIMEOUT: ActivityTimeout,
    ErrorKind.ACTIVITY_EXECUTION_ERROR: ActivityExecutionError,
    ErrorKind.WORKFLOW_REPLAY_MISMATCH: WorkflowReplayMismatch,
    ErrorKind.NOT_COMPLETED: NotCompleted,
}
