"""Run command for genorun CLI.

``genorun run`` hosts an orchestrator for one input file: it submits the
job, follows it to a terminal state and prints the parsed results.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer

from genorun.core.config import OrchestratorConfig
from genorun.core.errors import GenorunError
from genorun.core.models import AnalysisKind, JobStatus
from genorun.engine.orchestrator import JobOrchestrator
from genorun.engine.types import JobResultView, JobStatusView
from genorun.state import InMemoryInputStore, InMemoryJobStore, JobStore, SqliteJobStore

from ..helpers import (
    LOCAL_OWNER_ID,
    ErrorMessages,
    apply_config_logging,
    load_config_or_exit,
    parse_param_options,
)
from ..output import console, format_duration, format_status, output_error, print_json, print_results

POLL_INTERVAL_SECONDS = 0.5


def run(
    input_file: Path = typer.Argument(
        ...,
        help="Genome FASTA file to analyze",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
    kind: AnalysisKind = typer.Option(
        AnalysisKind.PROPHAGE,
        "--kind",
        "-k",
        help="Analysis to run",
        case_sensitive=False,
    ),
    config_file: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a YAML orchestrator configuration",
        exists=True,
        dir_okay=False,
    ),
    params: list[str] | None = typer.Option(
        None,
        "--param",
        "-p",
        help="Tool parameter as key=value (e.g. min_score=0.7). Repeatable.",
    ),
    output_dir: Path | None = typer.Option(
        None,
        "--output-dir",
        "-o",
        help="Override the base directory for job outputs",
    ),
    db: Path | None = typer.Option(
        None,
        "--db",
        help="Record the job in this SQLite database instead of in memory",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output result as JSON for machine parsing",
    ),
) -> None:
    """Run one analysis job and print its results."""
    config = load_config_or_exit(config_file, console)
    apply_config_logging(config, console)
    if output_dir is not None:
        config = config.model_copy(update={"output_base_dir": output_dir.expanduser()})

    try:
        parameters = parse_param_options(params)
    except ValueError as e:
        output_error(f"{ErrorMessages.INVALID_PARAM}: {e}", json_output=json_output)
        raise typer.Exit(2) from None

    try:
        status, result = asyncio.run(
            _run_single_job(config, input_file, kind, parameters, db, quiet=json_output),
        )
    except GenorunError as e:
        output_error(str(e), json_output=json_output)
        raise typer.Exit(2) from None

    if json_output:
        print_json({
            "status": status.model_dump(mode="json"),
            "result": result.model_dump(mode="json") if result else None,
        })
    else:
        _print_outcome(status, result)

    if status.status != JobStatus.COMPLETED:
        raise typer.Exit(1)


async def _run_single_job(
    config: OrchestratorConfig,
    input_file: Path,
    kind: AnalysisKind,
    parameters: dict[str, object],
    db_path: Path | None,
    *,
    quiet: bool,
) -> tuple[JobStatusView, JobResultView | None]:
    inputs = InMemoryInputStore()
    input_ref = inputs.add(owner_id=LOCAL_OWNER_ID, path=str(input_file.resolve()))

    sqlite_store = SqliteJobStore(db_path) if db_path is not None else None
    job_store: JobStore = sqlite_store or InMemoryJobStore()
    if sqlite_store is not None:
        await sqlite_store.open()
    try:
        async with JobOrchestrator(config, job_store, inputs) as orchestrator:
            summary = await orchestrator.submit_job(
                input_ref.input_id, LOCAL_OWNER_ID, parameters, kind,
            )
            if not quiet:
                console.print(f"Submitted job [cyan]{summary.job_id}[/cyan]: {summary.task_name}")
            status = await _wait_for_terminal(orchestrator, summary.job_id, quiet=quiet)
            result = None
            if status.status == JobStatus.COMPLETED:
                result = await orchestrator.get_job_result(summary.job_id, LOCAL_OWNER_ID)
            return status, result
    finally:
        if sqlite_store is not None:
            await sqlite_store.close()


async def _wait_for_terminal(
    orchestrator: JobOrchestrator,
    job_id: int,
    *,
    quiet: bool,
) -> JobStatusView:
    try:
        if quiet:
            return await _poll(orchestrator, job_id)
        with console.status("Waiting for job...") as spinner:
            return await _poll(orchestrator, job_id, spinner)
    except asyncio.CancelledError:
        # Interrupted: make sure the tool process does not outlive us
        status = await orchestrator.get_job_status(job_id, LOCAL_OWNER_ID)
        if not status.status.is_terminal:
            await orchestrator.cancel_job(job_id, LOCAL_OWNER_ID)
        raise


async def _poll(orchestrator: JobOrchestrator, job_id: int, spinner: object | None = None) -> JobStatusView:
    while True:
        status = await orchestrator.get_job_status(job_id, LOCAL_OWNER_ID)
        if status.status.is_terminal:
            return status
        if spinner is not None:
            spinner.update(  # type: ignore[attr-defined]
                f"Job {job_id} {status.status.value.lower()} ({status.progress}%)"
            )
        await asyncio.sleep(POLL_INTERVAL_SECONDS)


def _print_outcome(status: JobStatusView, result: JobResultView | None) -> None:
    duration = None
    if status.started_at and status.completed_at:
        duration = (status.completed_at - status.started_at).total_seconds()
    console.print(
        f"Job [cyan]{status.job_id}[/cyan] {format_status(status.status)} "
        f"in {format_duration(duration)}"
    )
    if status.error_message:
        output_error(status.error_message)
    if result is not None:
        print_results(result.model_dump(mode="json"))
