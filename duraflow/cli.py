"""Command line interface for running duraflow workers and inspecting workflows."""

from __future__ import annotations

import asyncio
import json
import logging
import mimetypes
from pathlib import Path
from typing import Optional

import typer

from .api import HashUploadService
from .config import load_config
from .contracts import EventKind, WorkflowStatus
from .errors import InvalidUpload, NotCompleted, WorkflowNotFound
from .execute import ActivityExecutor
from .persistence import get_repository
from .transports import BaseTransport, get_transport
from .workflow_engine import WorkflowEngine
from .workflows import register_defaults

app = typer.Typer(help="CLI for duraflow workflows")

# Command groups
worker_app = typer.Typer(help="Commands for running worker pools")
workflow_app = typer.Typer(help="Commands for managing workflow instances")

app.add_typer(worker_app, name="worker")
app.add_typer(workflow_app, name="workflow")


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="Root logger level"),
) -> None:
    """duraflow CLI entry point."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build(transport: Optional[BaseTransport] = None):
    config = load_config()
    registry = register_defaults()
    transport = transport or get_transport(config=config)
    repository = get_repository(config=config)
    engine = WorkflowEngine(transport, repository, registry=registry, config=config)
    executor = ActivityExecutor(transport, repository, registry=registry, config=config)
    return engine, executor


async def _requeue(transport: BaseTransport, *channels: str) -> None:
    requeue = getattr(transport, "requeue_unacked", None)
    if requeue is None:
        return
    for channel in channels:
        await requeue(channel)


@worker_app.command("activity")
def worker_activity(
    lifespan: Optional[float] = None,
    requeue_unacked: bool = typer.Option(
        False, help="Return deliveries abandoned by crashed workers to the queue first"
    ),
) -> None:
    """
    Run an activity worker pool.

    Example:
        duraflow worker activity --lifespan 300
    """
    _, executor = _build()

    async def _run() -> None:
        if requeue_unacked:
            await _requeue(executor.transport, executor.activity_queue)
        await executor.start(lifespan=lifespan)

    typer.echo(f"Starting activity worker on {executor.activity_queue}")
    asyncio.run(_run())


@worker_app.command("workflow")
def worker_workflow(
    lifespan: Optional[float] = None,
    requeue_unacked: bool = typer.Option(
        False, help="Return deliveries abandoned by crashed workers to the queue first"
    ),
) -> None:
    """
    Run a workflow worker pool (drives instances through their history).

    Example:
        duraflow worker workflow
    """
    engine, _ = _build()

    async def _run() -> None:
        if requeue_unacked:
            await _requeue(engine.transport, engine.workflow_queue)
        await engine.start(lifespan=lifespan)

    typer.echo(f"Starting workflow worker on {engine.workflow_queue}")
    asyncio.run(_run())


@worker_app.command("all")
def worker_all(lifespan: Optional[float] = None) -> None:
    """Run both worker pools in one process sharing a transport."""
    engine, executor = _build()
    typer.echo("Starting activity and workflow workers")

    async def _run() -> None:
        await asyncio.gather(
            engine.start(lifespan=lifespan), executor.start(lifespan=lifespan)
        )

    asyncio.run(_run())


@workflow_app.command("list")
def workflow_list() -> None:
    """
    List all workflow instances with their current status.

    Example:
        duraflow workflow list
        # Output: 3f2c...    ImageHashWorkflow    running
    """
    repo = get_repository(config=load_config())
    workflows = asyncio.run(repo.list_workflows())
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(f"{wf.instance_id}\t{wf.workflow_name}\t{wf.status.value}")


@workflow_app.command("show")
def workflow_show(instance_id: str) -> None:
    """
    Show status, output or error, and the event history of an instance.

    Example:
        duraflow workflow show 3f2c...
    """
    repo = get_repository(config=load_config())

    async def _load():
        return await repo.get_workflow(instance_id), await repo.get_history(instance_id)

    wf, history = asyncio.run(_load())
    if wf is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    typer.echo(f"Workflow {wf.instance_id} ({wf.workflow_name}): {wf.status.value}")
    if wf.output is not None:
        typer.echo(f"Output: {json.dumps(wf.output.data)}")
    if wf.error is not None:
        typer.echo(f"Error: {wf.error.kind.value}: {wf.error.message}")
    for event in history:
        detail = event.payload.get("task_id") or ""
        if event.kind is EventKind.ACTIVITIES_DISPATCHED:
            detail = f"batch {event.payload['batch']}"
        typer.echo(f"- #{event.seq} {event.kind.value} {detail}".rstrip())


@workflow_app.command("submit")
def workflow_submit(
    path: Path,
    mime_type: Optional[str] = typer.Option(
        None, help="Content type (guessed from the file name when omitted)"
    ),
    wait: Optional[float] = typer.Option(
        None, help="Run in-process workers for up to this many seconds and print the result"
    ),
) -> None:
    """
    Start the image hash workflow for a file.

    Example:
        duraflow workflow submit ./photo.png
        duraflow workflow submit ./photo.png --wait 10
    """
    if not path.is_file():
        typer.secho("Specified file does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    mime_type = mime_type or mimetypes.guess_type(path.name)[0] or ""
    engine, executor = _build()
    service = HashUploadService(engine)

    async def _submit():
        accepted = await service.submit(path.read_bytes(), path.name, mime_type)
        if wait is None:
            return accepted, None
        await _drain(engine, executor, accepted["workflowId"], wait)
        return accepted, await service.poll(accepted["workflowId"])

    try:
        accepted, polled = asyncio.run(_submit())
    except InvalidUpload as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    typer.echo(f"Workflow ID: {accepted['workflowId']}")
    if polled is not None:
        _, body = polled
        typer.echo(json.dumps(body, indent=2))


async def _drain(
    engine: WorkflowEngine, executor: ActivityExecutor, instance_id: str, timeout: float
) -> None:
    workers = [
        asyncio.create_task(engine.start()),
        asyncio.create_task(executor.start()),
    ]
    try:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            if (await engine.status(instance_id)).is_terminal:
                break
            await asyncio.sleep(0.05)
    finally:
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)


@workflow_app.command("result")
def workflow_result(instance_id: str) -> None:
    """Print the output of a completed instance as JSON."""
    engine, _ = _build()

    async def _result():
        status = await engine.status(instance_id)
        if status is WorkflowStatus.FAILED:
            return status, await engine.error(instance_id)
        return status, await engine.get_instance(instance_id)

    try:
        status, value = asyncio.run(_result())
    except WorkflowNotFound:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)

    if status is WorkflowStatus.FAILED:
        typer.secho(f"Failed: {value.message}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if status is not WorkflowStatus.COMPLETED:
        typer.echo(str(NotCompleted(f"Workflow {instance_id} is {status.value}")))
        raise typer.Exit(code=2)
    typer.echo(json.dumps(value.output.data if value.output else None, indent=2))


@workflow_app.command("resume")
def workflow_resume(instance_id: str) -> None:
    """Re-enqueue a drive pass that re-dispatches lost activity tasks."""
    engine, _ = _build()
    try:
        asyncio.run(engine.resume(instance_id))
    except WorkflowNotFound:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    typer.echo(f"Resumed {instance_id}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
