"""Activity execution engine for duraflow workflows."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Optional

from .codec import ValueDeserializer, ValueSerializer
from .config import DuraflowConfig, load_config
from .contracts import (
    ActivityOutcome,
    ActivityTask,
    ErrorInfo,
    OutcomeStatus,
    WorkflowTask,
)
from .errors import ActivityTimeout, UnknownActivity
from .persistence import WorkflowRepository, get_repository
from .registry import REGISTRY, ActivityDefinition, Registry
from .transports import BaseTransport

logger = logging.getLogger(__name__)


class ActivityExecutor:
    """Executes activity tasks delivered on the activity channel.

    Each attempt runs under the activity's deadline. Failed or timed-out
    attempts are re-enqueued immediately until ``tries`` is exhausted; the
    terminal outcome re-enqueues the owning workflow.
    """

    def __init__(
        self,
        transport: BaseTransport,
        repository: WorkflowRepository | None = None,
        registry: Registry | None = None,
        config: DuraflowConfig | None = None,
    ) -> None:
        self._transport = transport
        self._repository = repository or get_repository()
        self._registry = registry or REGISTRY
        config = config or load_config()
        self.activity_queue = config.queues.activity
        self.workflow_queue = config.queues.workflow
        self.concurrency = config.workers.activity_concurrency

    @property
    def transport(self) -> BaseTransport:
        return self._transport

    async def execute(self, task: ActivityTask) -> ActivityOutcome:
        """Run one attempt of ``task`` and describe how it ended.

        Raises:
            UnknownActivity: If no activity is registered under the task's name.
        """
        definition = self._registry.activity(task.activity_name)
        status = OutcomeStatus.SUCCESS
        result = None
        error: Optional[ErrorInfo] = None

        try:
            value = await asyncio.wait_for(
                self._invoke(definition, task), timeout=definition.timeout_seconds
            )
            result = ValueSerializer.serialize(value)
        except asyncio.TimeoutError:
            status = OutcomeStatus.TIMED_OUT
            error = ErrorInfo.from_exception(
                ActivityTimeout(
                    f"{task.activity_name} exceeded {definition.timeout_seconds}s",
                    activity_name=task.activity_name,
                    task_id=task.task_id,
                )
            )
        except Exception as e:
            status = OutcomeStatus.FAILED
            error = ErrorInfo.from_exception(e)
            logger.warning(
                f"Activity {task.activity_name} attempt {task.attempt} failed for "
                f"task_id={task.task_id}: {e}"
            )

        terminal = status is OutcomeStatus.SUCCESS or task.attempt >= definition.tries
        return ActivityOutcome(
            task_id=task.task_id,
            instance_id=task.instance_id,
            activity_name=task.activity_name,
            status=status,
            result=result,
            error=error,
            attempt=task.attempt,
            terminal=terminal,
        )

    async def _invoke(self, definition: ActivityDefinition, task: ActivityTask) -> Any:
        activity = definition.create()
        args = ValueDeserializer.deserialize_all(task.args)
        if inspect.iscoroutinefunction(activity.execute):
            return await activity.execute(*args)
        # A timed-out thread keeps running until it returns; its result is discarded.
        return await asyncio.to_thread(activity.execute, *args)

    async def handle_task(self, task: ActivityTask) -> ActivityOutcome:
        """Execute ``task`` once, persist the outcome and schedule the follow-up.

        Redelivered attempts that already have an outcome are not executed
        again; only their follow-up is repeated.
        """
        existing = [
            o for o in await self._repository.list_outcomes(task.task_id)
            if o.attempt == task.attempt
        ]
        if existing:
            outcome = existing[0]
            logger.info(
                f"Attempt {task.attempt} of task_id={task.task_id} already recorded; "
                "skipping execution"
            )
        else:
            try:
                outcome = await self.execute(task)
            except UnknownActivity as e:
                logger.error(f"{e} (task_id={task.task_id})")
                outcome = ActivityOutcome(
                    task_id=task.task_id,
                    instance_id=task.instance_id,
                    activity_name=task.activity_name,
                    status=OutcomeStatus.FAILED,
                    error=ErrorInfo.from_exception(e),
                    attempt=task.attempt,
                    terminal=True,
                )
            await self._repository.record_outcome(outcome)

        if outcome.terminal:
            logger.info(
                f"Activity {task.activity_name} finished with {outcome.status.value} "
                f"after {outcome.attempt} attempt(s) for instance_id={task.instance_id}"
            )
            await self._transport.publish(
                self.workflow_queue,
                WorkflowTask(instance_id=task.instance_id, completed_task_id=task.task_id),
            )
        else:
            logger.info(
                f"Retrying {task.activity_name} for task_id={task.task_id} "
                f"(attempt {task.attempt + 1})"
            )
            await self._transport.publish(self.activity_queue, task.bump_attempt())
        return outcome

    async def start(self, lifespan: Optional[float] = None) -> None:
        """Consume the activity channel, running up to ``concurrency`` tasks at once."""
        self._registry.freeze()
        semaphore = asyncio.Semaphore(self.concurrency)
        running: set[asyncio.Task] = set()

        async def _run(raw_message: Any, task: ActivityTask) -> None:
            try:
                await self.handle_task(task)
            except Exception:
                logger.exception(f"Failed to process task_id={task.task_id}")
                await self._transport.nack(raw_message, requeue=True)
            else:
                await self._transport.ack(raw_message)
            finally:
                semaphore.release()

        try:
            async for raw_message, task in self._transport.subscribe(
                self.activity_queue, ActivityTask, lifespan=lifespan
            ):
                await semaphore.acquire()
                job = asyncio.create_task(_run(raw_message, task))
                running.add(job)
                job.add_done_callback(running.discard)
        finally:
            if running:
                await asyncio.gather(*running, return_exceptions=True)
