"""Command line interface for running the tickflow orchestrator."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

import typer

from tickflow import Orchestrator, get_executor_backend, get_store, load_config
from tickflow.cli_utils.definitions import load_definitions, register_definitions
from tickflow.contracts import JobStatus
from tickflow.errors import ConfigError, PersistenceError
from tickflow.orchestrator import retry_delay

T = TypeVar("T")

app = typer.Typer(help="CLI for the tickflow orchestrator")

# Command groups
job_app = typer.Typer(help="Commands for submitting and inspecting jobs")
workflow_app = typer.Typer(help="Commands for managing workflow definitions")

app.add_typer(job_app, name="job")
app.add_typer(workflow_app, name="workflow")


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", help="Logging level, e.g. INFO or DEBUG"),
) -> None:
    """tickflow CLI entry point."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_orchestrator() -> Orchestrator:
    try:
        config = load_config()
    except ConfigError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return Orchestrator(get_store(), get_executor_backend(config=config), config)


def _run_and_close(orchestrator: Orchestrator, operation: Callable[[], Awaitable[T]]) -> T:
    async def _run() -> T:
        try:
            return await operation()
        finally:
            await orchestrator.close()

    return asyncio.run(_run())


@app.command("tick")
def tick() -> None:
    """
    Run a single orchestration tick.

    Advances running jobs by one step, starts pending jobs and promotes failed
    jobs whose retry is due. Prints the tick summary as JSON.

    Example:
        tickflow tick
        # Output: {"message": "...", "processedCount": 2, "errorCount": 0, ...}
    """
    orchestrator = _build_orchestrator()
    try:
        summary = _run_and_close(orchestrator, orchestrator.run_tick)
    except PersistenceError as exc:
        typer.secho(f"Tick failed: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(summary.to_json())


@app.command("run")
def run(
    interval: Optional[float] = typer.Option(None, help="Seconds between ticks"),
    max_ticks: Optional[int] = typer.Option(None, help="Stop after this many ticks"),
) -> None:
    """
    Run ticks in a loop until interrupted.

    Example:
        tickflow run --interval 30
    """
    orchestrator = _build_orchestrator()
    try:
        _run_and_close(
            orchestrator,
            lambda: orchestrator.run_forever(interval=interval, max_ticks=max_ticks),
        )
    except KeyboardInterrupt:  # pragma: no cover - interactive stop
        typer.echo("Stopped")


@app.command("retry")
def retry() -> None:
    """Promote failed jobs whose retry is due, without running other phases."""
    orchestrator = _build_orchestrator()
    try:
        summary = _run_and_close(orchestrator, orchestrator.promote_retryable_jobs)
    except PersistenceError as exc:
        typer.secho(f"Retry promotion failed: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(summary.to_json())


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", help="Interface to bind"),
    port: int = typer.Option(8000, help="Port to listen on"),
) -> None:  # pragma: no cover - starts a server
    """Serve the HTTP trigger and job endpoints."""
    import uvicorn

    from tickflow.api import create_app

    try:
        application = create_app()
    except ConfigError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    uvicorn.run(application, host=host, port=port)


@job_app.command("submit")
def job_submit(
    workflow_id: str,
    input_json: Optional[str] = typer.Option(
        None, "--input", help="JSON object used as the job's input data"
    ),
) -> None:
    """
    Create a pending job for a workflow.

    Example:
        tickflow job submit transcribe --input '{"audio_url": "https://..."}'
        # Output: 6d0c...  pending
    """
    try:
        input_data = json.loads(input_json) if input_json else {}
    except json.JSONDecodeError as exc:
        typer.secho(f"Invalid JSON for --input: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if not isinstance(input_data, dict):
        typer.secho("--input must be a JSON object", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    store = get_store()

    async def _submit():
        if await store.read_workflow_definition(workflow_id) is None:
            return None
        return await store.create_job(workflow_id, input_data)

    job = asyncio.run(_submit())
    if job is None:
        typer.echo(f"Workflow '{workflow_id}' not found")
        raise typer.Exit(code=1)
    typer.echo(f"{job.id}\t{job.status.value}")


@job_app.command("list")
def job_list(
    status: Optional[JobStatus] = typer.Option(None, help="Only show jobs in this status"),
) -> None:
    """
    List jobs, newest first.

    Example:
        tickflow job list --status failed
        # Output: abc123  transcribe  failed  awaiting_retry
    """
    jobs = asyncio.run(get_store().list_jobs(status=status))
    if not jobs:
        typer.echo("No jobs found")
        return
    for job in jobs:
        typer.echo(f"{job.id}\t{job.workflow_id}\t{job.status.value}\t{job.state.kind}")


@job_app.command("show")
def job_show(job_id: str) -> None:
    """Show the state, step data and retry schedule of one job."""
    job = asyncio.run(get_store().get_job(job_id))
    if job is None:
        typer.echo("Job not found")
        raise typer.Exit(code=1)
    typer.echo(f"Job {job.id}: {job.status.value} ({job.state.kind})")
    typer.echo(f"Workflow: {job.workflow_id}")
    if job.current_step_id:
        typer.echo(f"Current step: {job.current_step_id}")
    typer.echo(f"Retries: {job.retry_count}")
    delay = retry_delay(job)
    if delay is not None:
        typer.echo(
            f"Next retry at {job.next_retry_at.isoformat()} "
            f"(in {int(delay.total_seconds())}s, step '{job.retry_step_id}')"
        )
    if job.error_message:
        typer.echo(f"Error: {job.error_message}")
    if job.step_data:
        typer.echo(f"Step data: {json.dumps(job.step_data)}")
    if job.final_result is not None:
        typer.echo(f"Result: {json.dumps(job.final_result)}")


@job_app.command("process")
def job_process(job_id: str) -> None:
    """Run whatever action is due for a single job right now."""
    orchestrator = _build_orchestrator()
    result = _run_and_close(orchestrator, lambda: orchestrator.process_job(job_id))
    typer.echo(f"{result.job_id}\t{result.status}\t{result.message}")
    if result.status in ("error", "persistence_error"):
        raise typer.Exit(code=1)


@workflow_app.command("load")
def workflow_load(path: Path) -> None:
    """
    Register transformers and workflows from a YAML file.

    Example:
        tickflow workflow load ./workflows.yaml
        # Output: Loaded 2 transformer(s) and 1 workflow(s)
    """
    try:
        definitions = load_definitions(path)
    except OSError as exc:
        typer.secho(f"Cannot read {path}: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    except ValueError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    asyncio.run(register_definitions(get_store(), definitions))
    typer.echo(
        f"Loaded {len(definitions.transformers)} transformer(s) and "
        f"{len(definitions.workflows)} workflow(s)"
    )


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
