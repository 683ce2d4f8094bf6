"""Workflow execution engine: starts instances and drives them through history."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Dict, Optional

from .codec import ValueDeserializer, ValueSerializer
from .config import DuraflowConfig, load_config
from .contracts import (
    ActivityTask,
    ErrorInfo,
    EventKind,
    ScheduledActivity,
    WorkflowEvent,
    WorkflowStatus,
    WorkflowTask,
)
from .errors import ErrorKind, NotCompleted, UnknownWorkflow, WorkflowNotFound
from .persistence import WorkflowInstance, WorkflowRepository, get_repository
from .registry import REGISTRY, Registry
from .transports import BaseTransport, get_transport
from .workflow import (
    Complete,
    Fail,
    NextAction,
    ScheduleActivities,
    Wait,
    decide,
)

logger = logging.getLogger(__name__)


class WorkflowEngine:
    """Owns workflow instances: the only component that mutates their state.

    One drive pass runs per workflow task delivery. Passes for the same
    instance are serialized within this process; across processes the queue
    must not hand out two deliveries for one instance at the same time.
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
        self.workflow_queue = config.queues.workflow
        self.activity_queue = config.queues.activity
        self.concurrency = config.workers.workflow_concurrency
        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def transport(self) -> BaseTransport:
        return self._transport

    @property
    def repository(self) -> WorkflowRepository:
        return self._repository

    @property
    def registry(self) -> Registry:
        return self._registry

    # ------------------------------------------------------------------
    # Client operations
    async def start_workflow(self, workflow: Any, *args: Any) -> str:
        """Create an instance of ``workflow`` and enqueue its first drive pass.

        Raises:
            UnknownWorkflow: If ``workflow`` is not registered.
        """
        definition = self._registry.workflow(workflow)
        instance = WorkflowInstance(
            instance_id=str(uuid.uuid4()),
            workflow_name=definition.name,
            args=ValueSerializer.serialize_all(args),
        )
        await self._repository.create_workflow(instance)
        await self._transport.publish(
            self.workflow_queue, WorkflowTask(instance_id=instance.instance_id)
        )
        logger.info(
            f"Started workflow {definition.name} with instance_id={instance.instance_id}"
        )
        return instance.instance_id

    async def get_instance(self, instance_id: str) -> WorkflowInstance:
        instance = await self._repository.get_workflow(instance_id)
        if instance is None:
            raise WorkflowNotFound(f"Workflow instance {instance_id} not found")
        return instance

    async def status(self, instance_id: str) -> WorkflowStatus:
        return (await self.get_instance(instance_id)).status

    async def output(self, instance_id: str) -> Any:
        """Return the final value of a completed instance.

        Raises:
            NotCompleted: If the instance is still running or has failed.
        """
        instance = await self.get_instance(instance_id)
        if instance.status is not WorkflowStatus.COMPLETED:
            raise NotCompleted(
                f"Workflow instance {instance_id} is {instance.status.value}"
            )
        if instance.output is None:
            return None
        return ValueDeserializer.deserialize(instance.output)

    async def error(self, instance_id: str) -> Optional[ErrorInfo]:
        return (await self.get_instance(instance_id)).error

    async def history(self, instance_id: str) -> list[WorkflowEvent]:
        return await self._repository.get_history(instance_id)

    async def resume(self, instance_id: str) -> None:
        """Enqueue a drive pass that also re-dispatches lost activity tasks."""
        await self.get_instance(instance_id)
        await self._transport.publish(
            self.workflow_queue, WorkflowTask(instance_id=instance_id)
        )

    # ------------------------------------------------------------------
    # Drive loop
    def _lock_for(self, instance_id: str) -> asyncio.Lock:
        return self._locks.setdefault(instance_id, asyncio.Lock())

    async def handle_task(self, task: WorkflowTask) -> Optional[NextAction]:
        async with self._lock_for(task.instance_id):
            action = await self.drive(
                task.instance_id, redispatch=task.completed_task_id is None
            )
        if isinstance(action, (Complete, Fail)):
            self._locks.pop(task.instance_id, None)
        return action

    async def drive(
        self, instance_id: str, redispatch: bool = False
    ) -> Optional[NextAction]:
        """Run one drive pass for ``instance_id``.

        Args:
            instance_id: Instance to advance.
            redispatch: Re-enqueue scheduled activities that have no recorded
                outcome at all, even when their batch is marked dispatched.
                Batches that were never marked are re-sent regardless.

        Returns:
            The action taken, or ``None`` if the instance is missing or finished.
        """
        instance = await self._repository.get_workflow(instance_id)
        if instance is None:
            logger.warning(f"Dropping workflow task for unknown instance_id={instance_id}")
            return None
        if instance.status.is_terminal:
            logger.debug(f"Instance {instance_id} already {instance.status.value}")
            return None

        try:
            definition = self._registry.workflow(instance.workflow_name)
        except UnknownWorkflow as e:
            action = Fail(error=ErrorInfo.from_exception(e))
            await self._fail(instance_id, action)
            return action

        history = await self._record_completions(
            instance_id, await self._repository.get_history(instance_id)
        )
        action = decide(
            definition.create(),
            instance_id,
            instance.created_at,
            instance.args,
            history,
        )

        if isinstance(action, ScheduleActivities):
            await self._schedule(instance_id, action)
        elif isinstance(action, Wait):
            logger.debug(
                f"Instance {instance_id} waiting on {len(action.pending)} activities"
            )
            if redispatch or action.batch not in self._dispatched_batches(history):
                await self._redispatch(instance_id, history, action.pending)
                await self._mark_dispatched(instance_id, history, action.batch)
        elif isinstance(action, Complete):
            await self._repository.append_event(
                instance_id,
                EventKind.WORKFLOW_COMPLETED,
                {"output": action.value.model_dump(mode="json")},
            )
            await self._repository.set_status(
                instance_id, WorkflowStatus.COMPLETED, output=action.value
            )
            logger.info(f"Workflow completed for instance_id={instance_id}")
        elif isinstance(action, Fail):
            await self._fail(instance_id, action)
        return action

    async def _record_completions(
        self, instance_id: str, history: list[WorkflowEvent]
    ) -> list[WorkflowEvent]:
        """Append ``ActivityCompleted`` for every terminal outcome not yet in history."""
        completed = {
            e.payload.get("task_id")
            for e in history
            if e.kind is EventKind.ACTIVITY_COMPLETED
        }
        for event in list(history):
            if event.kind is not EventKind.ACTIVITY_SCHEDULED:
                continue
            task_id = event.payload["task_id"]
            if task_id in completed:
                continue
            outcome = await self._repository.get_outcome(task_id)
            if outcome is None or not outcome.terminal:
                continue
            history.append(
                await self._repository.append_event(
                    instance_id,
                    EventKind.ACTIVITY_COMPLETED,
                    outcome.model_dump(mode="json"),
                )
            )
            completed.add(task_id)
        return history

    async def _schedule(self, instance_id: str, action: ScheduleActivities) -> None:
        """Persist the whole batch in one write, then publish it.

        The batch is marked dispatched only after every task was published, so
        a pass interrupted in between re-sends the batch when it is redelivered.
        """
        batch = [
            ScheduledActivity(
                task_id=ScheduledActivity.task_id_for(instance_id, action.batch, index),
                batch=action.batch,
                index=index,
                activity_name=stub.activity_name,
                args=stub.args,
            )
            for index, stub in enumerate(action.stubs)
        ]
        await self._repository.append_events(
            instance_id,
            [(EventKind.ACTIVITY_SCHEDULED, s.model_dump(mode="json")) for s in batch],
        )

        for scheduled in batch:
            await self._transport.publish(
                self.activity_queue, self._task_for(instance_id, scheduled)
            )
        await self._repository.append_event(
            instance_id, EventKind.ACTIVITIES_DISPATCHED, {"batch": action.batch}
        )
        logger.info(
            f"Scheduled {len(batch)} activities (batch {action.batch}) "
            f"for instance_id={instance_id}"
        )

    @staticmethod
    def _dispatched_batches(history: list[WorkflowEvent]) -> set[int]:
        return {
            e.payload["batch"]
            for e in history
            if e.kind is EventKind.ACTIVITIES_DISPATCHED
        }

    async def _mark_dispatched(
        self, instance_id: str, history: list[WorkflowEvent], batch: int
    ) -> None:
        if batch not in self._dispatched_batches(history):
            await self._repository.append_event(
                instance_id, EventKind.ACTIVITIES_DISPATCHED, {"batch": batch}
            )

    async def _redispatch(
        self, instance_id: str, history: list[WorkflowEvent], pending: list[str]
    ) -> None:
        waiting = set(pending)
        for event in history:
            if event.kind is not EventKind.ACTIVITY_SCHEDULED:
                continue
            scheduled = ScheduledActivity.model_validate(event.payload)
            if scheduled.task_id not in waiting:
                continue
            if await self._repository.get_outcome(scheduled.task_id) is not None:
                continue
            logger.info(f"Re-dispatching task_id={scheduled.task_id}")
            await self._transport.publish(
                self.activity_queue, self._task_for(instance_id, scheduled)
            )

    @staticmethod
    def _task_for(instance_id: str, scheduled: ScheduledActivity) -> ActivityTask:
        return ActivityTask(
            task_id=scheduled.task_id,
            instance_id=instance_id,
            activity_name=scheduled.activity_name,
            args=scheduled.args,
        )

    async def _fail(self, instance_id: str, action: Fail) -> None:
        await self._repository.append_event(
            instance_id,
            EventKind.WORKFLOW_FAILED,
            {"error": action.error.model_dump(mode="json")},
        )
        await self._repository.set_status(
            instance_id, WorkflowStatus.FAILED, error=action.error
        )
        if action.error.kind is ErrorKind.WORKFLOW_REPLAY_MISMATCH:
            logger.error(
                f"Replay mismatch for instance_id={instance_id}: {action.error.message}"
            )
        else:
            logger.info(
                f"Workflow failed for instance_id={instance_id}: "
                f"{action.error.kind.value}: {action.error.message}"
            )

    # ------------------------------------------------------------------
    # Worker
    async def start(self, lifespan: Optional[float] = None) -> None:
        """Consume the workflow channel, driving up to ``concurrency`` instances at once."""
        self._registry.freeze()
        semaphore = asyncio.Semaphore(self.concurrency)
        running: set[asyncio.Task] = set()

        async def _run(raw_message: Any, task: WorkflowTask) -> None:
            try:
                await self.handle_task(task)
            except Exception:
                logger.exception(f"Drive pass failed for instance_id={task.instance_id}")
                await self._transport.nack(raw_message, requeue=True)
            else:
                await self._transport.ack(raw_message)
            finally:
                semaphore.release()

        try:
            async for raw_message, task in self._transport.subscribe(
                self.workflow_queue, WorkflowTask, lifespan=lifespan
            ):
                await semaphore.acquire()
                job = asyncio.create_task(_run(raw_message, task))
                running.add(job)
                job.add_done_callback(running.discard)
        finally:
            if running:
                await asyncio.gather(*running, return_exceptions=True)


_engine_instance: WorkflowEngine | None = None


def get_engine(config: Optional[DuraflowConfig] = None) -> WorkflowEngine:
    """Return a process-wide engine built from configuration."""
    global _engine_instance
    if _engine_instance is None or config is not None:
        config = config or load_config()
        _engine_instance = WorkflowEngine(
            get_transport(config=config),
            repository=get_repository(config=config),
            config=config,
        )
    return _engine_instance
