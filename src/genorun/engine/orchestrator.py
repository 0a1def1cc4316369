"""Job orchestrator: the state machine around analysis jobs.

Owns every transition of a ``Job`` record::

    PENDING ──> RUNNING ──> COMPLETED
       │           ├──────> FAILED
       └───────────┴──────> CANCELLED

Submission validates the input and creates the record synchronously, then
hands a unit of work to the ``WorkerPool``. The unit builds the tool's
command through the job's ``AnalysisStrategy``, runs it under the
``ProcessSupervisor`` and parses the output directory.

Errors raised while a unit executes are recorded on the job and never
reach the submitter. Record read-modify-write sequences run under one
lock, so a concurrent cancel and a finishing unit cannot both win: the
first terminal state written is final, and a later one is discarded.
"""

from __future__ import annotations

import asyncio
import shutil
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from genorun.core.config import OrchestratorConfig
from genorun.core.errors import (
    AuthorizationError,
    GenorunError,
    InvalidParametersError,
    InvalidStateError,
    NotFoundError,
    ToolExecutionError,
)
from genorun.core.logging import ExecutionContext, get_logger, with_context
from genorun.core.models import AnalysisKind, Job, JobStatus, ParseResult
from genorun.engine.pool import WorkerPool
from genorun.engine.supervisor import ProcessHandle, ProcessSupervisor
from genorun.engine.task_utils import spawn_background
from genorun.engine.types import (
    JobParameters,
    JobResultView,
    JobStatusView,
    JobSummary,
    QueueStatus,
    RegionDetailView,
)
from genorun.parsing.prophage import read_region_sequence
from genorun.state.base import InputStore, JobStore
from genorun.tools import AnalysisStrategy, default_strategies, get_strategy

_logger = get_logger("orchestrator")

# Progress milestones of a running job
PROGRESS_PICKED_UP = 10
PROGRESS_LAUNCHED = 20
PROGRESS_TOOL_FINISHED = 90

_STDERR_TAIL_CHARS = 500


class JobOrchestrator:
    """Submits, tracks, cancels and reports on analysis jobs.

    The pool, supervisor and strategy registry are injected; defaults are
    built from ``config`` when omitted. The host owns the lifecycle::

        async with JobOrchestrator(config, job_store, input_store) as orch:
            summary = await orch.submit_job(input_id=3, owner_id=1)
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        job_store: JobStore,
        input_store: InputStore,
        *,
        pool: WorkerPool | None = None,
        supervisor: ProcessSupervisor | None = None,
        strategies: Mapping[AnalysisKind, AnalysisStrategy] | None = None,
    ) -> None:
        self._config = config
        self._jobs = job_store
        self._inputs = input_store
        self._pool = pool or WorkerPool(config.pool)
        self._supervisor = supervisor or ProcessSupervisor(config.process)
        self._strategies: Mapping[AnalysisKind, AnalysisStrategy] = (
            strategies if strategies is not None else default_strategies()
        )
        self._handles: dict[int, ProcessHandle] = {}
        self._record_lock = asyncio.Lock()
        self._background: set[asyncio.Task[Any]] = set()

    # ─── Lifecycle ────────────────────────────────────────────────────

    async def start(self) -> None:
        """Start the pool and close out records orphaned by a previous process."""
        orphans = await self._jobs.mark_orphans_failed()
        await self._pool.start()
        _logger.info(
            "orchestrator.started",
            output_base_dir=str(self._config.output_base_dir),
            orphans_closed=orphans,
        )

    async def shutdown(self, graceful: bool = True) -> None:
        """Stop admissions, drain for up to the shutdown timeout, then cancel the rest."""
        timeout = self._config.shutdown_timeout_seconds
        _logger.info("orchestrator.shutting_down", graceful=graceful, timeout=timeout)
        dropped = await self._pool.shutdown(graceful=graceful, timeout=timeout)
        for job_id in dropped:
            await self._finish(
                job_id,
                JobStatus.CANCELLED,
                error="Orchestrator shut down before the job started",
            )
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        _logger.info("orchestrator.shutdown_complete")

    async def __aenter__(self) -> JobOrchestrator:
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.shutdown()

    # ─── Submission ───────────────────────────────────────────────────

    async def submit_job(
        self,
        input_id: int,
        owner_id: int,
        params: Mapping[str, Any] | JobParameters | None = None,
        kind: AnalysisKind | str = AnalysisKind.PROPHAGE,
    ) -> JobSummary:
        """Create a PENDING job for ``input_id`` and queue its execution.

        Every call creates a new job, even when another job for the same
        input is still active.

        Raises:
            NotFoundError: The input does not exist.
            AuthorizationError: The input belongs to another owner.
            InvalidParametersError: Unknown kind or invalid parameters.
            InvalidStateError: The orchestrator is shutting down.
        """
        input_ref = await self._inputs.get_by_id(input_id)
        if input_ref is None:
            raise NotFoundError(f"Input {input_id} does not exist")
        if input_ref.owner_id != owner_id:
            raise AuthorizationError(f"Input {input_id} does not belong to owner {owner_id}")

        try:
            strategy = get_strategy(kind, self._strategies)
        except ValueError as exc:
            raise InvalidParametersError(str(exc)) from exc
        parameters = self._validate_parameters(params)

        if self._pool.shutting_down:
            raise InvalidStateError("Orchestrator is shutting down, not accepting jobs")

        job = Job(
            owner_id=owner_id,
            input_id=input_id,
            kind=strategy.kind,
            task_name=strategy.task_name(input_ref.filename),
            parameters=parameters,
        )
        job_id = await self._jobs.insert(job)
        job.output_dir = str(self._config.output_base_dir / f"task_{job_id}")
        await self._jobs.update(job)
        _logger.info(
            "job.submitted",
            job_id=job_id,
            owner_id=owner_id,
            kind=strategy.kind.value,
            task_name=job.task_name,
        )

        accepted = await self._pool.submit(job_id, lambda: self._run_job(job_id))
        if not accepted:
            await self._finish(
                job_id, JobStatus.CANCELLED, error="Worker pool refused the job",
            )

        stored = await self._jobs.get_by_id(job_id)
        return JobSummary.from_job(stored or job)

    @staticmethod
    def _validate_parameters(
        params: Mapping[str, Any] | JobParameters | None,
    ) -> dict[str, Any]:
        if params is None:
            return {}
        if isinstance(params, JobParameters):
            return params.model_dump(exclude_none=True)
        try:
            return JobParameters.model_validate(dict(params)).model_dump(exclude_none=True)
        except ValidationError as exc:
            raise InvalidParametersError(f"Invalid job parameters: {exc}") from exc

    # ─── Queries ──────────────────────────────────────────────────────

    async def get_job_status(self, job_id: int, owner_id: int) -> JobStatusView:
        job = await self._get_owned(job_id, owner_id)
        return JobStatusView.from_job(job)

    async def list_jobs(
        self,
        owner_id: int,
        status: JobStatus | None = None,
    ) -> list[JobSummary]:
        jobs = await self._jobs.find_by_owner(owner_id, status)
        return [JobSummary.from_job(j) for j in jobs]

    def get_queue_status(self) -> QueueStatus:
        pool = self._pool.status()
        return QueueStatus(
            active=pool.active,
            queued=pool.queued,
            completed=pool.completed,
            total_submitted=pool.total_submitted,
            max_concurrent=pool.max_concurrent,
        )

    async def get_job_result(self, job_id: int, owner_id: int) -> JobResultView:
        """Re-derive the structured results from the job's output directory.

        Raises:
            InvalidStateError: The job is not COMPLETED.
            NotFoundError: The output directory no longer exists.
        """
        job = await self._get_completed(job_id, owner_id)
        parsed = await self._parse_output(job)
        return JobResultView(
            job_id=job_id,
            kind=job.kind,
            summary=parsed.summary,
            regions=[r.to_dict(include_genes=False) for r in parsed.regions],
            hits=[h.to_dict() for h in parsed.hits],
        )

    async def get_region_detail(
        self,
        job_id: int,
        owner_id: int,
        region_index: int,
    ) -> RegionDetailView:
        """A region of a completed prophage job with its genes and sequence."""
        job = await self._get_completed(job_id, owner_id)
        strategy = self._strategies[job.kind]
        if not strategy.has_regions:
            raise NotFoundError(f"Job {job_id} ({job.kind.value}) has no regions")

        parsed = await self._parse_output(job)
        region = next((r for r in parsed.regions if r.region_index == region_index), None)
        if region is None:
            raise NotFoundError(
                f"Job {job_id} has no region {region_index} "
                f"({len(parsed.regions)} regions)"
            )
        input_name = await self._input_name(job)
        sequence = await asyncio.to_thread(
            read_region_sequence, Path(job.output_dir or ""), region.seq_name, input_name,
        )
        return RegionDetailView(
            job_id=job_id,
            region=region.to_dict(include_genes=False),
            genes=[g.to_dict() for g in region.genes],
            sequence=sequence,
            sequence_length=len(sequence) if sequence else None,
        )

    # ─── Cancellation and cleanup ─────────────────────────────────────

    async def cancel_job(self, job_id: int, owner_id: int) -> None:
        """Cancel a PENDING or RUNNING job.

        The job is CANCELLED as soon as this returns. A pending unit is
        dropped from the pool without launching anything; a running
        process is terminated in the background.

        Raises:
            InvalidStateError: The job already reached a terminal state.
        """
        async with self._record_lock:
            job = await self._get_owned(job_id, owner_id)
            if job.status.is_terminal:
                raise InvalidStateError(
                    f"Job {job_id} already finished ({job.status.value}), cannot cancel"
                )
            previous = job.status
            job.transition_to(JobStatus.CANCELLED)
            await self._jobs.update(job)

        if previous == JobStatus.PENDING:
            self._pool.cancel(job_id)
        else:
            handle = self._handles.get(job_id)
            if handle is not None:
                spawn_background(
                    self._supervisor.cancel(handle),
                    name=f"cancel-job-{job_id}",
                    logger=_logger,
                    event="job.cancel_failed",
                    registry=self._background,
                )
        _logger.info("job.cancelled", job_id=job_id, previous_status=previous.value)

    async def cleanup_job_output(self, job_id: int, owner_id: int) -> bool:
        """Delete the job's output directory.

        Returns:
            True if a directory was removed.

        Raises:
            InvalidStateError: The job is still PENDING or RUNNING.
        """
        job = await self._get_owned(job_id, owner_id)
        if not job.status.is_terminal:
            raise InvalidStateError(
                f"Job {job_id} is {job.status.value}, cannot remove its output"
            )
        if not job.output_dir:
            return False
        output_dir = Path(job.output_dir)
        if not output_dir.exists():
            return False
        await asyncio.to_thread(shutil.rmtree, output_dir)
        _logger.info("job.output_removed", job_id=job_id, output_dir=str(output_dir))
        return True

    # ─── Execution ────────────────────────────────────────────────────

    async def _run_job(self, job_id: int) -> None:
        """Body of one pool unit. Never raises except on cancellation."""
        ctx = ExecutionContext(job_id=str(job_id), component="orchestrator")
        with with_context(ctx):
            handle = self._supervisor.create_handle(f"job-{job_id}")
            self._handles[job_id] = handle
            try:
                job = await self._begin(job_id)
                if job is None:
                    return
                await self._execute_job(job, handle)
            finally:
                self._handles.pop(job_id, None)

    async def _begin(self, job_id: int) -> Job | None:
        """PENDING -> RUNNING, or None when the job must not run."""
        async with self._record_lock:
            job = await self._jobs.get_by_id(job_id)
            if job is None:
                _logger.error("job.record_missing", job_id=job_id)
                return None
            if job.status != JobStatus.PENDING:
                _logger.info("job.skipped", job_id=job_id, status=job.status.value)
                return None
            job.transition_to(JobStatus.RUNNING)
            job.advance_progress(PROGRESS_PICKED_UP)
            await self._jobs.update(job)
        _logger.info("job.started", job_id=job_id, kind=job.kind.value)
        return job

    async def _execute_job(self, job: Job, handle: ProcessHandle) -> None:
        job_id = job.job_id or 0
        try:
            parsed = await self._run_tool_and_parse(job, handle)

        except asyncio.CancelledError:
            await self._finish(job_id, JobStatus.CANCELLED, error="Execution was cancelled")
            _logger.warning("job.cancelled_during_execution", job_id=job_id)
            raise

        except TimeoutError as exc:
            await self._finish(job_id, JobStatus.FAILED, error=str(exc))
            _logger.error(
                "job.timeout",
                job_id=job_id,
                timeout_seconds=self._config.process.timeout_seconds,
            )

        except (GenorunError, OSError) as exc:
            # Expected execution failures: launch errors, tool exit codes,
            # malformed output, unreadable or unwritable directories.
            await self._finish(job_id, JobStatus.FAILED, error=str(exc))
            _logger.error(
                "job.failed", job_id=job_id, error=str(exc), error_type=type(exc).__name__,
            )

        except Exception as exc:
            await self._finish(
                job_id, JobStatus.FAILED, error=f"Unexpected internal error: {exc}",
            )
            _logger.exception("job.unexpected_error", job_id=job_id)

        else:
            if parsed is None:
                await self._finish(job_id, JobStatus.CANCELLED)
            else:
                await self._finish(job_id, JobStatus.COMPLETED, summary=parsed.summary)

    async def _run_tool_and_parse(
        self,
        job: Job,
        handle: ProcessHandle,
    ) -> ParseResult | None:
        """Launch the tool and parse its output. None means it was cancelled."""
        job_id = job.job_id or 0
        strategy = self._strategies[job.kind]
        input_ref = await self._inputs.get_by_id(job.input_id)
        if input_ref is None:
            raise NotFoundError(f"Input {job.input_id} no longer exists")

        output_dir = Path(job.output_dir or self._config.output_base_dir / f"task_{job_id}")
        output_dir.mkdir(parents=True, exist_ok=True)
        cmd = strategy.build_command(input_ref.path, output_dir, job.parameters, self._config)

        await self._advance(job_id, PROGRESS_LAUNCHED)
        result = await self._supervisor.run(
            cmd,
            timeout_seconds=self._config.process.timeout_seconds,
            handle=handle,
        )
        if result.cancelled:
            _logger.info("job.process_cancelled", job_id=job_id)
            return None
        if not result.succeeded:
            exit_code = result.returncode
            if exit_code is None and result.exit_signal is not None:
                exit_code = -result.exit_signal
            raise ToolExecutionError(
                strategy.display_name, exit_code, result.stderr[-_STDERR_TAIL_CHARS:],
            )

        await self._advance(job_id, PROGRESS_TOOL_FINISHED)
        return await asyncio.to_thread(
            strategy.parse, output_dir, input_ref.filename, self._config.parser,
        )

    async def _advance(self, job_id: int, progress: int) -> None:
        async with self._record_lock:
            job = await self._jobs.get_by_id(job_id)
            if job is None or job.status != JobStatus.RUNNING:
                return
            job.advance_progress(progress)
            await self._jobs.update(job)

    async def _finish(
        self,
        job_id: int,
        status: JobStatus,
        *,
        summary: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        """Move a job to a terminal state unless it already reached one."""
        async with self._record_lock:
            job = await self._jobs.get_by_id(job_id)
            if job is None:
                _logger.error("job.record_missing", job_id=job_id)
                return
            if job.status.is_terminal:
                if job.status != status:
                    _logger.info(
                        "job.outcome_discarded",
                        job_id=job_id,
                        recorded=job.status.value,
                        discarded=status.value,
                    )
                return
            job.transition_to(status)
            if summary is not None:
                job.summary = summary
            if error is not None:
                job.error_message = self._truncate(error)
            await self._jobs.update(job)
        _logger.info(
            "job.finished",
            job_id=job_id,
            status=status.value,
            duration_seconds=job.duration_seconds,
        )

    # ─── Helpers ──────────────────────────────────────────────────────

    def _truncate(self, message: str) -> str:
        limit = self._config.error_message_max_length
        if len(message) <= limit:
            return message
        return message[: limit - 3] + "..."

    async def _get_owned(self, job_id: int, owner_id: int) -> Job:
        job = await self._jobs.get_by_id(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} does not exist")
        if job.owner_id != owner_id:
            raise AuthorizationError(f"Job {job_id} does not belong to owner {owner_id}")
        return job

    async def _get_completed(self, job_id: int, owner_id: int) -> Job:
        job = await self._get_owned(job_id, owner_id)
        if job.status != JobStatus.COMPLETED:
            raise InvalidStateError(
                f"Job {job_id} is {job.status.value}, results are available once COMPLETED"
            )
        return job

    async def _input_name(self, job: Job) -> str | None:
        input_ref = await self._inputs.get_by_id(job.input_id)
        return input_ref.filename if input_ref is not None else None

    async def _parse_output(self, job: Job) -> ParseResult:
        output_dir = Path(job.output_dir or "")
        if not job.output_dir or not output_dir.is_dir():
            raise NotFoundError(f"Output of job {job.job_id} no longer exists")
        strategy = self._strategies[job.kind]
        input_name = await self._input_name(job)
        return await asyncio.to_thread(
            strategy.parse, output_dir, input_name, self._config.parser,
        )


__all__ = ["JobOrchestrator"]
