"""Deterministic workflow definitions and the replay decision function.

A workflow body is a plain function of its input and of the results of the
activities it has awaited so far. The engine never suspends a running body.
Instead, every drive pass re-runs the body from the top against the persisted
history through :func:`decide`, which returns the next action to take:

* ``ScheduleActivities``: the body awaited a batch that was never scheduled.
* ``Wait``: the body awaited a batch that is scheduled but not complete.
* ``Complete``: the body returned a value.
* ``Fail``: the body raised, or history no longer matches the body.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, ClassVar, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, Field

from .codec import SerializedValue, ValueDeserializer, ValueSerializer
from .contracts import (
    ActivityOutcome,
    ErrorInfo,
    EventKind,
    OutcomeStatus,
    ScheduledActivity,
    WorkflowEvent,
)
from .errors import (
    ERRORS_BY_KIND,
    ActivityExecutionError,
    ActivityTimeout,
    DuraflowError,
    ErrorKind,
    WorkflowReplayMismatch,
)
from .stubs import ActivityStub

logger = logging.getLogger(__name__)


class Workflow:
    """Base class for workflow definitions.

    ``execute`` must be deterministic: no clock reads, randomness or I/O.
    Use ``ctx.started_at`` and ``ctx.now()`` for timestamps and activities for
    everything else.
    """

    name: ClassVar[Optional[str]] = None

    def execute(self, ctx: "WorkflowContext", *args: Any) -> Any:
        raise NotImplementedError

    @classmethod
    def workflow_name(cls) -> str:
        return cls.name or cls.__name__


class ScheduleActivities(BaseModel):
    batch: int
    stubs: List[ActivityStub] = Field(default_factory=list)


class Wait(BaseModel):
    batch: int
    pending: List[str] = Field(default_factory=list)


class Complete(BaseModel):
    value: SerializedValue = Field(default_factory=SerializedValue)


class Fail(BaseModel):
    error: ErrorInfo


NextAction = Union[ScheduleActivities, Wait, Complete, Fail]


class WorkflowSuspended(BaseException):
    """Unwinds a workflow body that cannot proceed yet.

    Derives from ``BaseException`` so ``except Exception`` in a body does not
    intercept it.
    """

    def __init__(self, action: Union[ScheduleActivities, Wait]) -> None:
        super().__init__(action)
        self.action = action


def _outcome_error(outcome: ActivityOutcome) -> DuraflowError:
    if outcome.status is OutcomeStatus.TIMED_OUT:
        error_cls = ActivityTimeout
    elif outcome.error is not None:
        error_cls = ERRORS_BY_KIND.get(outcome.error.kind, ActivityExecutionError)
    else:
        error_cls = ActivityExecutionError
    message = outcome.error.message if outcome.error else outcome.status.value
    message = f"{outcome.activity_name} failed after {outcome.attempt} attempt(s): {message}"
    if issubclass(error_cls, ActivityExecutionError):
        return error_cls(message, activity_name=outcome.activity_name, task_id=outcome.task_id)
    return error_cls(message)


class WorkflowContext:
    """Replay view of one instance's history, handed to ``Workflow.execute``."""

    def __init__(
        self,
        instance_id: str,
        started_at: datetime,
        history: Iterable[WorkflowEvent] = (),
    ) -> None:
        self.instance_id = instance_id
        self.started_at = started_at
        self._clock = started_at
        self._cursor = 0
        self._batches: Dict[int, List[ScheduledActivity]] = {}
        self._completed: Dict[str, tuple[ActivityOutcome, datetime]] = {}
        self.mismatch: Optional[WorkflowReplayMismatch] = None

        for event in history:
            if event.kind is EventKind.ACTIVITY_SCHEDULED:
                scheduled = ScheduledActivity.model_validate(event.payload)
                self._batches.setdefault(scheduled.batch, []).append(scheduled)
            elif event.kind is EventKind.ACTIVITY_COMPLETED:
                outcome = ActivityOutcome.model_validate(event.payload)
                self._completed[outcome.task_id] = (outcome, event.recorded_at)
        for batch in self._batches.values():
            batch.sort(key=lambda s: s.index)

    @property
    def scheduled_batches(self) -> int:
        return len(self._batches)

    @property
    def awaited_batches(self) -> int:
        return self._cursor

    def now(self) -> datetime:
        """Time of the latest completion replayed so far (deterministic)."""
        return self._clock

    def _mismatch(self, message: str) -> WorkflowReplayMismatch:
        error = WorkflowReplayMismatch(message)
        if self.mismatch is None:
            self.mismatch = error
        return error

    def _check_replay(
        self, batch: int, scheduled: List[ScheduledActivity], stubs: List[ActivityStub]
    ) -> None:
        if len(scheduled) != len(stubs):
            raise self._mismatch(
                f"Batch {batch} scheduled {len(scheduled)} activities, "
                f"definition now awaits {len(stubs)}"
            )
        for recorded, current in zip(scheduled, stubs):
            recorded_sig = (
                recorded.activity_name,
                [a.model_dump(mode="json") for a in recorded.args],
            )
            if recorded_sig != current.signature():
                raise self._mismatch(
                    f"Batch {batch} index {recorded.index}: history has "
                    f"{recorded.activity_name}, definition now awaits "
                    f"{current.activity_name} (or different arguments)"
                )

    def await_all(self, stubs: Iterable[ActivityStub]) -> List[Any]:
        """Results of ``stubs`` in the order given, once all have finished.

        Raises the error of the first failed stub (in stub order).
        """
        stubs = list(stubs)
        if not stubs:
            return []

        batch = self._cursor
        self._cursor += 1
        scheduled = self._batches.get(batch)
        if scheduled is None:
            raise WorkflowSuspended(ScheduleActivities(batch=batch, stubs=stubs))

        self._check_replay(batch, scheduled, stubs)

        pending = [s.task_id for s in scheduled if s.task_id not in self._completed]
        if pending:
            raise WorkflowSuspended(Wait(batch=batch, pending=pending))

        completions = [self._completed[s.task_id] for s in scheduled]
        self._clock = max([self._clock] + [recorded_at for _, recorded_at in completions])

        results: List[Any] = []
        for outcome, _ in completions:
            if not outcome.succeeded:
                raise _outcome_error(outcome)
            results.append(
                ValueDeserializer.deserialize(outcome.result) if outcome.result else None
            )
        return results

    def await_one(self, stub: ActivityStub) -> Any:
        return self.await_all([stub])[0]


def decide(
    workflow: Workflow,
    instance_id: str,
    started_at: datetime,
    args: List[SerializedValue],
    history: Iterable[WorkflowEvent],
) -> NextAction:
    """Replay ``history`` through ``workflow`` and return the next action."""

    ctx = WorkflowContext(instance_id, started_at, history)
    try:
        values = ValueDeserializer.deserialize_all(args)
        result = workflow.execute(ctx, *values)
    except WorkflowSuspended as suspended:
        if ctx.mismatch is not None:
            return Fail(error=ErrorInfo.from_exception(ctx.mismatch))
        return suspended.action
    except Exception as e:
        if ctx.mismatch is not None:
            return Fail(error=ErrorInfo.from_exception(ctx.mismatch))
        logger.info(f"Workflow {instance_id} raised {type(e).__name__}: {e}")
        return Fail(error=ErrorInfo.from_exception(e))

    if ctx.mismatch is not None:
        return Fail(error=ErrorInfo.from_exception(ctx.mismatch))
    if ctx.awaited_batches < ctx.scheduled_batches:
        return Fail(
            error=ErrorInfo(
                kind=ErrorKind.WORKFLOW_REPLAY_MISMATCH,
                message=(
                    f"Definition returned after {ctx.awaited_batches} batch(es), "
                    f"history holds {ctx.scheduled_batches}"
                ),
            )
        )

    try:
        return Complete(value=ValueSerializer.serialize(result))
    except ValueError as e:
        return Fail(error=ErrorInfo.from_exception(e))
