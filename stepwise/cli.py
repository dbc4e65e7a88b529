"""Command line interface for stepwise workflows."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Optional

import typer

from stepwise import ExecutionDispatcher, ExecutionEngine, get_repository, get_transport
from stepwise.config import load_config
from stepwise.constants import JobStatus
from stepwise.errors import StepwiseError
from stepwise.execute import ResumeExecutor
from stepwise.graph import NodeGraph
from stepwise.templates import import_template

app = typer.Typer(help="CLI for stepwise workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for managing workflow templates")
execution_app = typer.Typer(help="Commands for running and inspecting executions")
worker_app = typer.Typer(help="Commands for running resume workers")

app.add_typer(workflow_app, name="workflow")
app.add_typer(execution_app, name="execution")
app.add_typer(worker_app, name="worker")


@app.callback()
def main() -> None:
    """stepwise CLI entry point."""
    config = load_config()
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _dispatcher(with_transport: bool = False) -> ExecutionDispatcher:
    config = load_config()
    engine = ExecutionEngine(get_repository(), config=config.engine)
    transport = get_transport(config=config) if with_transport else None
    return ExecutionDispatcher(engine, transport=transport, topic=config.transport.topic)


def _parse_json(value: Optional[str], option: str) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as exc:
        typer.secho(f"Invalid JSON for {option}: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _fail(exc: StepwiseError) -> None:
    typer.secho(str(exc), fg=typer.colors.RED)
    raise typer.Exit(code=1)


@workflow_app.command("import")
def workflow_import(path: Path) -> None:
    """
    Import a workflow template from a YAML file.

    Replaces the nodes of an existing template with the same id.

    Example:
        stepwise workflow import ./templates/review.yaml
    """
    if not path.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    try:
        workflow = asyncio.run(import_template(get_repository(), path))
    except (StepwiseError, ValueError) as exc:
        typer.secho(f"Invalid template {path}: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Imported workflow {workflow.id}: {workflow.title or ''}".rstrip())


@workflow_app.command("show")
def workflow_show(workflow_id: int) -> None:
    """Show the nodes of a workflow template in trunk order."""
    try:
        graph = asyncio.run(NodeGraph.load(get_repository(), workflow_id))
    except StepwiseError as exc:
        _fail(exc)
    typer.echo(f"Workflow {workflow_id}: {len(graph)} nodes")
    for node in graph:
        branch = f" [branch {node.branch_index} of {node.upstream_id}]" if node.branch_index is not None else ""
        typer.echo(f"- {node.id} {node.type}{branch}" + (f" -> {node.downstream_id}" if node.downstream_id else ""))


@execution_app.command("start")
def execution_start(
    workflow_id: int,
    context: Optional[str] = typer.Option(None, help="Initial context as JSON"),
) -> None:
    """
    Create and start an execution of a workflow.

    Example:
        stepwise execution start 1 --context '{"amount": 120}'
        # Output: Execution 7: STARTED
    """
    data = _parse_json(context, "--context")
    try:
        execution = asyncio.run(_dispatcher().trigger(workflow_id, data))
    except StepwiseError as exc:
        _fail(exc)
    typer.echo(f"Execution {execution.id}: {execution.status.name}")


@execution_app.command("list")
def execution_list() -> None:
    """List all executions with their current status."""
    executions = asyncio.run(get_repository().list_executions())
    if not executions:
        typer.echo("No executions found")
        return
    for execution in executions:
        typer.echo(f"{execution.id}\t{execution.workflow_id}\t{execution.status.name}")


@execution_app.command("show")
def execution_show(execution_id: int) -> None:
    """
    Show an execution and the jobs recorded for it.

    Example:
        stepwise execution show 7
        # Output: Execution 7 (workflow 1): STARTED
        #         - job 12 node 3: PENDING {"fields": ["comment"]}
    """
    repo = get_repository()
    execution = asyncio.run(repo.get_execution(execution_id))
    if execution is None:
        typer.echo("Execution not found")
        raise typer.Exit(code=1)
    typer.echo(
        f"Execution {execution.id} (workflow {execution.workflow_id}): {execution.status.name}"
    )
    if execution.context is not None:
        typer.echo(f"Context: {json.dumps(execution.context)}")
    for job in asyncio.run(repo.load_jobs(execution_id)):
        typer.echo(
            f"- job {job.id} node {job.node_id}: {job.status.name} {json.dumps(job.result)}"
        )


@execution_app.command("resume")
def execution_resume(
    execution_id: int,
    job_id: int,
    status: str = typer.Option("resolved", help="New job status"),
    result: Optional[str] = typer.Option(None, help="Job result as JSON"),
) -> None:
    """
    Complete a suspended job and resume its execution.

    Example:
        stepwise execution resume 7 12 --status resolved --result '{"approved": true}'
    """
    try:
        job_status = JobStatus[status.upper()]
    except KeyError:
        typer.secho(f"Unknown job status: {status}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    data = _parse_json(result, "--result")
    try:
        execution = asyncio.run(
            _dispatcher().complete_job(execution_id, job_id, job_status, data)
        )
    except StepwiseError as exc:
        _fail(exc)
    if execution is None:
        typer.echo(f"Job {job_id} is not pending, nothing to resume")
        return
    typer.echo(f"Execution {execution.id}: {execution.status.name}")


@worker_app.command("run")
def worker_run(
    lifespan: Optional[float] = typer.Option(
        None, help="Worker timeout in seconds (default: run indefinitely)"
    ),
) -> None:
    """
    Run a worker applying job updates from the configured transport.

    Example:
        stepwise worker run --lifespan 300
    """
    config = load_config()
    dispatcher = _dispatcher(with_transport=True)
    executor = ResumeExecutor(dispatcher.transport, dispatcher, config=config.worker)
    typer.echo(f"Starting resume worker on {dispatcher.topic}")
    asyncio.run(executor.start(lifespan=lifespan))
    typer.echo(f"Processed {len(executor.processed)} updates, dropped {len(executor.dropped)}")


if __name__ == "__main__":
    app()
