import uuid

import pytest

from duraflow.codec import ValueSerializer
from duraflow.contracts import (
    ActivityOutcome,
    ErrorInfo,
    EventKind,
    OutcomeStatus,
    WorkflowStatus,
)
from duraflow.errors import ErrorKind
from duraflow.persistence import (
    InMemoryWorkflowRepository,
    SQLiteWorkflowRepository,
    WorkflowInstance,
)


@pytest.fixture(params=["inmemory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "sqlite":
        repository = SQLiteWorkflowRepository(tmp_path / "wf.db")
        yield repository
        repository.close()
    else:
        yield InMemoryWorkflowRepository()


def _instance() -> WorkflowInstance:
    return WorkflowInstance(
        instance_id=str(uuid.uuid4()),
        workflow_name="ImageHashWorkflow",
        args=ValueSerializer.serialize_all([{"x": 1}, "file.png"]),
    )


def _outcome(task_id: str, attempt: int, terminal: bool = True) -> ActivityOutcome:
    return ActivityOutcome(
        task_id=task_id,
        instance_id="wf",
        activity_name="ComputeHashActivity",
        status=OutcomeStatus.FAILED if not terminal else OutcomeStatus.SUCCESS,
        result=None if not terminal else ValueSerializer.serialize({"digest": "ab"}),
        attempt=attempt,
        terminal=terminal,
    )


@pytest.mark.asyncio
async def test_repository_crud(repo):
    instance = _instance()
    await repo.create_workflow(instance)

    wf = await repo.get_workflow(instance.instance_id)
    assert wf is not None
    assert wf.workflow_name == "ImageHashWorkflow"
    assert wf.status is WorkflowStatus.RUNNING
    assert [a.data for a in wf.args] == [{"x": 1}, "file.png"]
    assert wf.created_at == instance.created_at

    await repo.set_status(
        instance.instance_id,
        WorkflowStatus.COMPLETED,
        output=ValueSerializer.serialize({"done": True}),
    )
    wf = await repo.get_workflow(instance.instance_id)
    assert wf.status is WorkflowStatus.COMPLETED
    assert wf.output.data == {"done": True}
    assert wf.completed_at is not None

    all_wfs = await repo.list_workflows()
    assert any(w.instance_id == instance.instance_id for w in all_wfs)
    assert await repo.get_workflow("missing") is None


@pytest.mark.asyncio
async def test_terminal_status_is_final(repo):
    instance = _instance()
    await repo.create_workflow(instance)
    error = ErrorInfo(kind=ErrorKind.ACTIVITY_EXECUTION_ERROR, message="boom")
    await repo.set_status(instance.instance_id, WorkflowStatus.FAILED, error=error)
    await repo.set_status(instance.instance_id, WorkflowStatus.COMPLETED)

    wf = await repo.get_workflow(instance.instance_id)
    assert wf.status is WorkflowStatus.FAILED
    assert wf.error == error


@pytest.mark.asyncio
async def test_history_is_append_only_and_ordered(repo):
    instance = _instance()
    await repo.create_workflow(instance)

    first = await repo.append_event(
        instance.instance_id, EventKind.ACTIVITY_SCHEDULED, {"task_id": "a"}
    )
    second = await repo.append_event(
        instance.instance_id, EventKind.ACTIVITY_COMPLETED, {"task_id": "a"}
    )
    assert (first.seq, second.seq) == (0, 1)

    history = await repo.get_history(instance.instance_id)
    assert [e.kind for e in history] == [
        EventKind.ACTIVITY_SCHEDULED,
        EventKind.ACTIVITY_COMPLETED,
    ]
    assert history[0].payload == {"task_id": "a"}
    assert history[0].recorded_at <= history[1].recorded_at
    assert await repo.get_history("missing") == []


@pytest.mark.asyncio
async def test_outcomes_are_write_once_per_attempt(repo):
    assert await repo.record_outcome(_outcome("t", 1, terminal=False))
    assert not await repo.record_outcome(_outcome("t", 1, terminal=True))
    assert await repo.record_outcome(_outcome("t", 2, terminal=True))

    outcomes = await repo.list_outcomes("t")
    assert [(o.attempt, o.terminal) for o in outcomes] == [(1, False), (2, True)]

    latest = await repo.get_outcome("t")
    assert latest.attempt == 2
    assert latest.succeeded
    assert latest.result.data == {"digest": "ab"}
    assert await repo.get_outcome("missing") is None


@pytest.mark.asyncio
async def test_sqlite_survives_reopen(tmp_path):
    path = tmp_path / "wf.db"
    repo = SQLiteWorkflowRepository(path)
    instance = _instance()
    await repo.create_workflow(instance)
    await repo.append_event(instance.instance_id, EventKind.ACTIVITY_SCHEDULED, {"task_id": "a"})
    await repo.record_outcome(_outcome("a", 1))
    repo.close()

    reopened = SQLiteWorkflowRepository(path)
    assert (await reopened.get_workflow(instance.instance_id)).created_at == instance.created_at
    assert len(await reopened.get_history(instance.instance_id)) == 1
    assert (await reopened.get_outcome("a")).attempt == 1
    reopened.close()


@pytest.mark.asyncio
async def test_append_events_stores_a_batch(repo):
    instance = _instance()
    await repo.create_workflow(instance)
    await repo.append_event(instance.instance_id, EventKind.ACTIVITY_SCHEDULED, {"task_id": "a"})

    stored = await repo.append_events(
        instance.instance_id,
        [
            (EventKind.ACTIVITY_SCHEDULED, {"task_id": "b"}),
            (EventKind.ACTIVITY_SCHEDULED, {"task_id": "c"}),
        ],
    )
    assert [e.seq for e in stored] == [1, 2]

    history = await repo.get_history(instance.instance_id)
    assert [e.payload["task_id"] for e in history] == ["a", "b", "c"]
    assert history[1].recorded_at == history[2].recorded_at


@pytest.mark.asyncio
async def test_outcomes_are_kept_apart_per_task(repo):
    for task_id in ("wf:0:0", "wf:0:1", "wf:0:10"):
        await repo.record_outcome(_outcome(task_id, 1, terminal=False))
    await repo.record_outcome(_outcome("wf:0:1", 2))

    assert [o.attempt for o in await repo.list_outcomes("wf:0:1")] == [1, 2]
    assert [o.task_id for o in await repo.list_outcomes("wf:0:10")] == ["wf:0:10"]
    assert (await repo.get_outcome("wf:0:0")).attempt == 1


@pytest.mark.asyncio
async def test_sqlite_failed_batch_leaves_no_events(tmp_path):
    repo = SQLiteWorkflowRepository(tmp_path / "wf.db")
    instance = _instance()
    await repo.create_workflow(instance)

    with pytest.raises(TypeError):
        await repo.append_events(
            instance.instance_id,
            [
                (EventKind.ACTIVITY_SCHEDULED, {"task_id": "a"}),
                (EventKind.ACTIVITY_SCHEDULED, {"task_id": object()}),
            ],
        )
    assert await repo.get_history(instance.instance_id) == []

    event = await repo.append_event(
        instance.instance_id, EventKind.ACTIVITY_SCHEDULED, {"task_id": "a"}
    )
    assert event.seq == 0
    repo.close()
