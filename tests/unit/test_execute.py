"""Activity execution engine tests: deadlines, retry bound, redelivery."""

import asyncio

import pytest

from duraflow.activities import Activity
from duraflow.codec import ValueSerializer
from duraflow.contracts import ActivityTask, OutcomeStatus, WorkflowTask
from duraflow.errors import ErrorKind, UnknownActivity


class FlakyActivity(Activity):
    tries = 3
    calls = 0

    def execute(self, succeed_on: int):
        FlakyActivity.calls += 1
        if FlakyActivity.calls < succeed_on:
            raise RuntimeError(f"attempt {FlakyActivity.calls} failed")
        return FlakyActivity.calls


class SlowActivity(Activity):
    tries = 2
    timeout = 0.05

    async def execute(self):
        await asyncio.sleep(1)
        return "late"


class AsyncEchoActivity(Activity):
    async def execute(self, value):
        return value


@pytest.fixture(autouse=True)
def _register(registry):
    FlakyActivity.calls = 0
    registry.register_activity(FlakyActivity)
    registry.register_activity(SlowActivity)
    registry.register_activity(AsyncEchoActivity)


def _task(name: str, *args, attempt: int = 1) -> ActivityTask:
    return ActivityTask(
        task_id="wf-1:0:0",
        instance_id="wf-1",
        activity_name=name,
        args=ValueSerializer.serialize_all(args),
        attempt=attempt,
    )


async def _workflow_tasks(transport, queue):
    tasks = []
    while (delivery := await transport.get(queue)) is not None:
        tasks.append(WorkflowTask.from_json(delivery[2]))
        await transport.ack(delivery)
    return tasks


@pytest.mark.asyncio
async def test_execute_success(executor):
    outcome = await executor.execute(_task("AsyncEchoActivity", {"a": 1}))
    assert outcome.status is OutcomeStatus.SUCCESS
    assert outcome.terminal
    assert outcome.result.data == {"a": 1}
    assert outcome.error is None


@pytest.mark.asyncio
async def test_execute_hash_activity_in_thread(executor):
    outcome = await executor.execute(_task("ComputeHashActivity", [97, 98, 99], "sha1"))
    assert outcome.succeeded
    assert outcome.result.type == "HashResult"
    assert outcome.result.data["digest"] == "a9993e364706816aba3e25717850c26c9cd0d89d"


@pytest.mark.asyncio
async def test_execute_unknown_activity_raises(executor):
    with pytest.raises(UnknownActivity):
        await executor.execute(_task("Nope"))


@pytest.mark.asyncio
async def test_retries_stop_after_exact_tries(
    executor, transport, repository, run_activity_once
):
    await transport.publish(executor.activity_queue, _task("FlakyActivity", 99))
    while await run_activity_once():
        pass

    assert FlakyActivity.calls == 3
    outcomes = await repository.list_outcomes("wf-1:0:0")
    assert [o.attempt for o in outcomes] == [1, 2, 3]
    assert [o.terminal for o in outcomes] == [False, False, True]
    assert all(o.status is OutcomeStatus.FAILED for o in outcomes)
    assert outcomes[-1].error.kind is ErrorKind.ACTIVITY_EXECUTION_ERROR

    follow_ups = await _workflow_tasks(transport, executor.workflow_queue)
    assert [(t.instance_id, t.completed_task_id) for t in follow_ups] == [
        ("wf-1", "wf-1:0:0")
    ]


@pytest.mark.asyncio
async def test_retry_succeeds_within_budget(executor, transport, repository, run_activity_once):
    await transport.publish(executor.activity_queue, _task("FlakyActivity", 2))
    while await run_activity_once():
        pass

    assert FlakyActivity.calls == 2
    latest = await repository.get_outcome("wf-1:0:0")
    assert latest.succeeded
    assert latest.attempt == 2
    assert latest.result.data == 2


@pytest.mark.asyncio
async def test_timeout_is_retried_then_terminal(executor, transport, repository, run_activity_once):
    await transport.publish(executor.activity_queue, _task("SlowActivity"))
    while await run_activity_once():
        pass

    outcomes = await repository.list_outcomes("wf-1:0:0")
    assert [o.status for o in outcomes] == [OutcomeStatus.TIMED_OUT, OutcomeStatus.TIMED_OUT]
    assert outcomes[-1].terminal
    assert outcomes[-1].error.kind is ErrorKind.ACTIVITY_TIMEOUT


@pytest.mark.asyncio
async def test_unknown_activity_is_terminal_failure(executor, transport, repository):
    outcome = await executor.handle_task(_task("Nope"))
    assert outcome.terminal
    assert outcome.error.kind is ErrorKind.UNKNOWN_ACTIVITY
    assert (await repository.get_outcome("wf-1:0:0")).error.kind is ErrorKind.UNKNOWN_ACTIVITY
    assert transport.pending(executor.activity_queue) == 0
    assert transport.pending(executor.workflow_queue) == 1


@pytest.mark.asyncio
async def test_redelivered_attempt_is_not_executed_twice(executor, transport, repository):
    task = _task("FlakyActivity", 1)
    first = await executor.handle_task(task)
    second = await executor.handle_task(task)

    assert FlakyActivity.calls == 1
    assert first == second
    assert len(await repository.list_outcomes(task.task_id)) == 1
    # The follow-up is repeated so a lost workflow task is recovered.
    assert len(await _workflow_tasks(transport, executor.workflow_queue)) == 2


@pytest.mark.asyncio
async def test_worker_loop_processes_and_acks(executor, transport, repository):
    await transport.publish(executor.activity_queue, _task("AsyncEchoActivity", "hi"))
    await executor.start(lifespan=0.2)

    assert (await repository.get_outcome("wf-1:0:0")).result.data == "hi"
    assert transport.in_flight() == 0
    assert executor._registry.frozen
