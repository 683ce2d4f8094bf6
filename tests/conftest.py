"""Shared fixtures: an isolated engine/executor pair over in-memory backends."""

import pytest

from duraflow.config import DuraflowConfig
from duraflow.contracts import ActivityTask, WorkflowTask
from duraflow.execute import ActivityExecutor
from duraflow.persistence import InMemoryWorkflowRepository
from duraflow.registry import Registry
from duraflow.transports.inmemory import InMemoryTransport
from duraflow.workflow_engine import WorkflowEngine
from duraflow.workflows import register_defaults


@pytest.fixture
def config():
    return DuraflowConfig()


@pytest.fixture
def registry():
    return register_defaults(Registry())


@pytest.fixture
def transport():
    return InMemoryTransport(poll_interval=0.01)


@pytest.fixture
def repository():
    return InMemoryWorkflowRepository()


@pytest.fixture
def engine(transport, repository, registry, config):
    return WorkflowEngine(transport, repository, registry=registry, config=config)


@pytest.fixture
def executor(transport, repository, registry, config):
    return ActivityExecutor(transport, repository, registry=registry, config=config)


async def step_workflow(engine, transport):
    """Run one queued drive pass; returns False when the channel is empty."""
    delivery = await transport.get(engine.workflow_queue)
    if delivery is None:
        return False
    await engine.handle_task(WorkflowTask.from_json(delivery[2]))
    await transport.ack(delivery)
    return True


async def step_activity(executor, transport):
    """Run one queued activity attempt; returns False when the channel is empty."""
    delivery = await transport.get(executor.activity_queue)
    if delivery is None:
        return False
    await executor.handle_task(ActivityTask.from_json(delivery[2]))
    await transport.ack(delivery)
    return True


@pytest.fixture
def drain(engine, executor, transport):
    """Process both channels until they are empty."""

    async def _drain(max_steps: int = 500) -> int:
        steps = 0
        while steps < max_steps:
            if await step_activity(executor, transport):
                steps += 1
                continue
            if await step_workflow(engine, transport):
                steps += 1
                continue
            return steps
        raise AssertionError(f"queues not drained after {max_steps} steps")

    return _drain


@pytest.fixture
def drive_once(engine, transport):
    async def _drive_once() -> bool:
        return await step_workflow(engine, transport)

    return _drive_once


@pytest.fixture
def run_activity_once(executor, transport):
    async def _run_activity_once() -> bool:
        return await step_activity(executor, transport)

    return _run_activity_once
