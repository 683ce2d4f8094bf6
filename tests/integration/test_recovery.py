"""Drive passes interrupted between persisting a batch and publishing it."""

import hashlib
import sqlite3

import pytest

from duraflow.activities import BinaryPayload, ComputeHashActivity, HashResult
from duraflow.contracts import ActivityTask, EventKind, WorkflowStatus, WorkflowTask
from duraflow.persistence import SQLiteWorkflowRepository
from duraflow.stubs import stub
from duraflow.transports.inmemory import InMemoryTransport
from duraflow.workflow import Workflow


class DigestChainWorkflow(Workflow):
    """Hashes the input, then hashes each hex digest again in a second batch."""

    def execute(self, ctx, data):
        payload = BinaryPayload.from_bytes(data.encode())
        first = ctx.await_all(
            [stub(ComputeHashActivity, payload, "md5"), stub(ComputeHashActivity, payload, "sha1")]
        )
        second = ctx.await_all(
            [
                stub(
                    ComputeHashActivity,
                    BinaryPayload.from_bytes(HashResult.model_validate(h).digest.encode()),
                    "sha256",
                )
                for h in first
            ]
        )
        return [HashResult.model_validate(h).digest for h in second]


def _expected(data: str) -> list[str]:
    return [
        hashlib.sha256(hashlib.new(name, data.encode()).hexdigest().encode()).hexdigest()
        for name in ("md5", "sha1")
    ]


class DroppingTransport(InMemoryTransport):
    """Fails once to publish the activity task named by ``drop_task_id``."""

    def __init__(self) -> None:
        super().__init__(poll_interval=0.01)
        self.drop_task_id = None

    async def publish(self, channel, message):
        if isinstance(message, ActivityTask) and message.task_id == self.drop_task_id:
            self.drop_task_id = None
            raise ConnectionError("broker connection lost")
        await super().publish(channel, message)


@pytest.fixture
def transport():
    return DroppingTransport()


@pytest.fixture
def repository(tmp_path):
    repo = SQLiteWorkflowRepository(tmp_path / "wf.db")
    yield repo
    repo.close()


@pytest.fixture
def registry(registry):
    registry.register_workflow(DigestChainWorkflow)
    return registry


async def _work(engine, executor, transport, max_steps=200):
    """Process both channels the way the worker loops do until they are idle.

    Stops at the first delivery whose handler raises, nacks it for redelivery
    and returns the exception.
    """
    for _ in range(max_steps):
        for channel, handle, message_type in (
            (executor.activity_queue, executor.handle_task, ActivityTask),
            (engine.workflow_queue, engine.handle_task, WorkflowTask),
        ):
            delivery = await transport.get(channel)
            if delivery is not None:
                break
        else:
            return None
        try:
            await handle(message_type.from_json(delivery[2]))
        except Exception as e:
            await transport.nack(delivery, requeue=True)
            return e
        await transport.ack(delivery)
    raise AssertionError(f"queues not drained after {max_steps} steps")


def _scheduled(history, batch):
    return [
        e.payload["task_id"]
        for e in history
        if e.kind is EventKind.ACTIVITY_SCHEDULED and e.payload["batch"] == batch
    ]


@pytest.mark.asyncio
async def test_failed_batch_write_is_retried_not_failed(engine, executor, transport, repository):
    instance_id = await engine.start_workflow(DigestChainWorkflow, "abc")
    # Abort the insert of the second activity of batch 1, after the first row went in.
    repository._execute(
        """
        CREATE TRIGGER fail_batch_write BEFORE INSERT ON workflow_events
        WHEN NEW.kind = 'activity_scheduled' AND NEW.payload LIKE '%:1:1"%'
        BEGIN SELECT RAISE(ABORT, 'database is locked'); END
        """
    )

    error = await _work(engine, executor, transport)
    assert isinstance(error, sqlite3.DatabaseError)
    history = await repository.get_history(instance_id)
    assert len(_scheduled(history, 0)) == 2
    assert _scheduled(history, 1) == []
    assert await engine.status(instance_id) is WorkflowStatus.RUNNING

    repository._execute("DROP TRIGGER fail_batch_write")
    assert await _work(engine, executor, transport) is None

    assert await engine.status(instance_id) is WorkflowStatus.COMPLETED
    assert await engine.output(instance_id) == _expected("abc")
    assert len(_scheduled(await repository.get_history(instance_id), 1)) == 2


@pytest.mark.asyncio
async def test_lost_publish_of_later_batch_is_resent(engine, executor, transport, repository):
    instance_id = await engine.start_workflow(DigestChainWorkflow, "abc")
    transport.drop_task_id = f"{instance_id}:1:0"

    error = await _work(engine, executor, transport)
    assert isinstance(error, ConnectionError)
    history = await repository.get_history(instance_id)
    assert len(_scheduled(history, 1)) == 2
    dispatched = [e.payload["batch"] for e in history if e.kind is EventKind.ACTIVITIES_DISPATCHED]
    assert dispatched == [0]

    # The redelivered pass was triggered by a completion, not a start or resume.
    assert await _work(engine, executor, transport) is None

    assert await engine.status(instance_id) is WorkflowStatus.COMPLETED
    assert await engine.output(instance_id) == _expected("abc")
    history = await repository.get_history(instance_id)
    completed = [e.payload["task_id"] for e in history if e.kind is EventKind.ACTIVITY_COMPLETED]
    assert len(completed) == len(set(completed)) == 4


@pytest.mark.asyncio
async def test_completion_pass_does_not_resend_dispatched_batch(
    engine, executor, transport, drive_once, run_activity_once
):
    await engine.start_workflow(DigestChainWorkflow, "abc")
    assert await drive_once()
    assert transport.pending(executor.activity_queue) == 2

    assert await run_activity_once()
    assert await drive_once()
    assert transport.pending(executor.activity_queue) == 1
