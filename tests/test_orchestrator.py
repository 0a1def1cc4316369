"""Tests for genorun.engine.orchestrator.

Jobs run real subprocesses through ``sh -c`` in place of the analysis
containers; the files the tool would write are laid out by the test
strategy when the command is built.
"""

from __future__ import annotations

import asyncio
import dataclasses
import threading
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any

import pytest

from genorun.core.config import OrchestratorConfig, ProcessConfig, WorkerPoolConfig
from genorun.core.errors import (
    AuthorizationError,
    InvalidParametersError,
    InvalidStateError,
    NotFoundError,
)
from genorun.core.models import AnalysisKind, JobStatus
from genorun.engine.orchestrator import JobOrchestrator
from genorun.engine.supervisor import ProcessHandle, ProcessResult, ProcessSupervisor
from genorun.engine.types import JobParameters, JobStatusView
from genorun.state import InMemoryInputStore, InMemoryJobStore
from genorun.tools.base import AnalysisStrategy
from helpers import (
    gene_row,
    provirus_row,
    shell_strategy,
    write_prophage_output,
    write_resistance_output,
)

OWNER = 1
OTHER_OWNER = 2
REGION_NAME = "contig_1|provirus_1_40000"


class RecordingSupervisor(ProcessSupervisor):
    """ProcessSupervisor that remembers which handles it launched."""

    def __init__(self, config: ProcessConfig | None = None) -> None:
        super().__init__(config)
        self.launched: list[str] = []

    async def run(
        self,
        cmd: list[str],
        cwd: Path | str | None = None,
        timeout_seconds: float | None = None,
        handle: ProcessHandle | None = None,
    ) -> ProcessResult:
        self.launched.append(handle.label if handle else cmd[0])
        return await super().run(cmd, cwd=cwd, timeout_seconds=timeout_seconds, handle=handle)


def _prophage_files(output_dir: Path) -> None:
    write_prophage_output(
        output_dir,
        provirus_rows=[provirus_row(1, 40000), provirus_row(50000, 60000)],
        gene_rows=[gene_row(REGION_NAME, 1, 10, 900), gene_row(REGION_NAME, 2, 950, 2000)],
        fasta=f">{REGION_NAME}\nACGTACGT\nTTGG\n",
    )


def _strategies(
    script: str = "exit 0",
    prepare: Callable[[Path], object] | None = _prophage_files,
) -> dict[AnalysisKind, AnalysisStrategy]:
    return {
        AnalysisKind.PROPHAGE: shell_strategy(script, prepare=prepare),
        AnalysisKind.RESISTANCE: shell_strategy(
            "exit 0",
            kind=AnalysisKind.RESISTANCE,
            prepare=lambda d: write_resistance_output(
                d, [["seq1", "True", "0.9", "beta-lactam", "0.8", "0.7"]],
            ),
        ),
    }


async def wait_for_terminal(
    orch: JobOrchestrator,
    job_id: int,
    owner_id: int = OWNER,
    timeout: float = 10.0,
) -> JobStatusView:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        status = await orch.get_job_status(job_id, owner_id)
        if status.status.is_terminal:
            return status
        if loop.time() > deadline:
            raise AssertionError(f"job {job_id} still {status.status.value}")
        await asyncio.sleep(0.02)


async def wait_for_status(orch: JobOrchestrator, job_id: int, wanted: JobStatus) -> None:
    for _ in range(500):
        if (await orch.get_job_status(job_id, OWNER)).status == wanted:
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"job {job_id} never reached {wanted.value}")


# ─── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
def inputs(tmp_path: Path) -> InMemoryInputStore:
    store = InMemoryInputStore()
    genome = tmp_path / "genome.fna"
    genome.write_text(">contig_1\nACGT\n")
    store.add(owner_id=OWNER, path=str(genome))
    store.add(owner_id=OTHER_OWNER, path=str(genome))
    return store


@pytest.fixture
def jobs() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
async def make_orchestrator(
    fast_config: OrchestratorConfig,
    jobs: InMemoryJobStore,
    inputs: InMemoryInputStore,
) -> AsyncIterator[Callable[..., Any]]:
    """Factory for started orchestrators; all are shut down at teardown."""
    created: list[JobOrchestrator] = []

    async def _make(
        config: OrchestratorConfig | None = None,
        strategies: dict[AnalysisKind, AnalysisStrategy] | None = None,
        supervisor: ProcessSupervisor | None = None,
    ) -> JobOrchestrator:
        cfg = config or fast_config
        orch = JobOrchestrator(
            cfg,
            jobs,
            inputs,
            supervisor=supervisor or ProcessSupervisor(cfg.process),
            strategies=strategies if strategies is not None else _strategies(),
        )
        await orch.start()
        created.append(orch)
        return orch

    yield _make
    for orch in created:
        await orch.shutdown(graceful=False)


# ─── Submission ───────────────────────────────────────────────────────


class TestSubmitJob:
    @pytest.mark.asyncio
    async def test_creates_pending_job(self, make_orchestrator) -> None:
        orch = await make_orchestrator()
        summary = await orch.submit_job(1, OWNER)
        assert summary.job_id == 1
        assert summary.status == JobStatus.PENDING
        assert summary.progress == 0
        assert summary.kind == AnalysisKind.PROPHAGE
        assert summary.task_name == "Prophage Detection - genome.fna"

    @pytest.mark.asyncio
    async def test_output_dir_is_unique_per_job(self, make_orchestrator, jobs, fast_config) -> None:
        orch = await make_orchestrator()
        first = await orch.submit_job(1, OWNER)
        second = await orch.submit_job(1, OWNER)
        assert first.job_id != second.job_id
        assert jobs.jobs[first.job_id].output_dir == str(fast_config.output_base_dir / "task_1")
        assert jobs.jobs[second.job_id].output_dir == str(fast_config.output_base_dir / "task_2")

    @pytest.mark.asyncio
    async def test_unknown_input(self, make_orchestrator) -> None:
        orch = await make_orchestrator()
        with pytest.raises(NotFoundError):
            await orch.submit_job(99, OWNER)

    @pytest.mark.asyncio
    async def test_input_of_another_owner(self, make_orchestrator, jobs) -> None:
        orch = await make_orchestrator()
        with pytest.raises(AuthorizationError):
            await orch.submit_job(2, OWNER)
        assert jobs.jobs == {}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("params", [{"min_score": 2.0}, {"splits": 0}, {"bogus": 1}])
    async def test_invalid_parameters(self, make_orchestrator, jobs, params) -> None:
        orch = await make_orchestrator()
        with pytest.raises(InvalidParametersError):
            await orch.submit_job(1, OWNER, params)
        assert jobs.jobs == {}

    @pytest.mark.asyncio
    async def test_unknown_kind(self, make_orchestrator) -> None:
        orch = await make_orchestrator()
        with pytest.raises(InvalidParametersError):
            await orch.submit_job(1, OWNER, kind="metagenome")

    @pytest.mark.asyncio
    async def test_parameters_stored_on_job(self, make_orchestrator, jobs) -> None:
        orch = await make_orchestrator()
        summary = await orch.submit_job(1, OWNER, JobParameters(min_score=0.7, splits=4))
        assert jobs.jobs[summary.job_id].parameters == {"min_score": 0.7, "splits": 4}

    @pytest.mark.asyncio
    async def test_rejected_while_shutting_down(self, make_orchestrator) -> None:
        orch = await make_orchestrator()
        await orch.shutdown()
        with pytest.raises(InvalidStateError, match="shutting down"):
            await orch.submit_job(1, OWNER)


# ─── Execution outcomes ───────────────────────────────────────────────


class TestExecution:
    @pytest.mark.asyncio
    async def test_successful_job(self, make_orchestrator, jobs) -> None:
        orch = await make_orchestrator()
        summary = await orch.submit_job(1, OWNER)
        status = await wait_for_terminal(orch, summary.job_id)

        assert status.status == JobStatus.COMPLETED
        assert status.progress == 100
        assert status.error_message is None
        assert status.started_at is not None
        assert status.completed_at is not None
        assert jobs.jobs[summary.job_id].summary["region_count"] == 2

    @pytest.mark.asyncio
    async def test_nonzero_exit_fails_job(self, make_orchestrator) -> None:
        orch = await make_orchestrator(
            strategies=_strategies("echo 'database not found' >&2; exit 3", prepare=None),
        )
        summary = await orch.submit_job(1, OWNER)
        status = await wait_for_terminal(orch, summary.job_id)

        assert status.status == JobStatus.FAILED
        assert "exit code 3" in (status.error_message or "")
        assert "database not found" in (status.error_message or "")
        assert status.progress == 20

    @pytest.mark.asyncio
    async def test_timeout_fails_job(self, make_orchestrator, fast_config) -> None:
        config = fast_config.model_copy(
            update={"process": fast_config.process.model_copy(update={"timeout_seconds": 1.0})},
        )
        orch = await make_orchestrator(config=config, strategies=_strategies("sleep 5", prepare=None))
        summary = await orch.submit_job(1, OWNER)
        status = await wait_for_terminal(orch, summary.job_id, timeout=5.0)

        assert status.status == JobStatus.FAILED
        assert "timed out" in (status.error_message or "")

    @pytest.mark.asyncio
    async def test_launch_error_fails_job(self, make_orchestrator) -> None:
        strategies = _strategies()
        strategies[AnalysisKind.PROPHAGE] = dataclasses.replace(
            strategies[AnalysisKind.PROPHAGE],
            build_command=lambda *args: ["definitely-not-a-real-binary-xyz"],
        )
        orch = await make_orchestrator(strategies=strategies)
        summary = await orch.submit_job(1, OWNER)
        status = await wait_for_terminal(orch, summary.job_id)

        assert status.status == JobStatus.FAILED
        assert "Cannot start" in (status.error_message or "")

    @pytest.mark.asyncio
    async def test_unparsable_output_fails_job(self, make_orchestrator) -> None:
        def _bad_files(output_dir: Path) -> None:
            bad = provirus_row(1, 40000)
            bad[2] = "??"
            write_prophage_output(output_dir, provirus_rows=[bad])

        orch = await make_orchestrator(strategies=_strategies(prepare=_bad_files))
        summary = await orch.submit_job(1, OWNER)
        status = await wait_for_terminal(orch, summary.job_id)

        assert status.status == JobStatus.FAILED
        assert "No parsable rows" in (status.error_message or "")

    @pytest.mark.asyncio
    async def test_error_message_truncated(self, make_orchestrator, fast_config) -> None:
        config = fast_config.model_copy(update={"error_message_max_length": 64})
        script = "i=0; while [ $i -lt 100 ]; do printf 'xxxxxxxxxx' >&2; i=$((i+1)); done; exit 1"
        orch = await make_orchestrator(config=config, strategies=_strategies(script, prepare=None))
        summary = await orch.submit_job(1, OWNER)
        status = await wait_for_terminal(orch, summary.job_id)

        assert status.status == JobStatus.FAILED
        assert len(status.error_message or "") == 64
        assert (status.error_message or "").endswith("...")

    @pytest.mark.asyncio
    async def test_second_job_waits_for_free_slot(self, make_orchestrator) -> None:
        orch = await make_orchestrator(strategies=_strategies("sleep 30", prepare=None))
        first = await orch.submit_job(1, OWNER)
        second = await orch.submit_job(1, OWNER)
        await wait_for_status(orch, first.job_id, JobStatus.RUNNING)

        assert (await orch.get_job_status(second.job_id, OWNER)).status == JobStatus.PENDING
        queue = orch.get_queue_status()
        assert queue.active == 1
        assert queue.queued == 1
        assert queue.max_concurrent == 1

        await orch.cancel_job(first.job_id, OWNER)
        await orch.cancel_job(second.job_id, OWNER)


# ─── Cancellation ─────────────────────────────────────────────────────


class TestCancelJob:
    @pytest.mark.asyncio
    async def test_cancel_pending_job_never_launches(self, make_orchestrator, fast_config) -> None:
        supervisor = RecordingSupervisor(fast_config.process)
        orch = await make_orchestrator(
            strategies=_strategies("sleep 30", prepare=None), supervisor=supervisor,
        )
        first = await orch.submit_job(1, OWNER)
        second = await orch.submit_job(1, OWNER)
        await wait_for_status(orch, first.job_id, JobStatus.RUNNING)

        await orch.cancel_job(second.job_id, OWNER)
        assert (await orch.get_job_status(second.job_id, OWNER)).status == JobStatus.CANCELLED

        await orch.cancel_job(first.job_id, OWNER)
        await asyncio.sleep(0.2)
        assert supervisor.launched == [f"job-{first.job_id}"]

    @pytest.mark.asyncio
    async def test_cancel_running_job_stops_process(self, make_orchestrator) -> None:
        orch = await make_orchestrator(strategies=_strategies("sleep 30", prepare=None))
        summary = await orch.submit_job(1, OWNER)
        await wait_for_status(orch, summary.job_id, JobStatus.RUNNING)

        await orch.cancel_job(summary.job_id, OWNER)
        status = await orch.get_job_status(summary.job_id, OWNER)
        assert status.status == JobStatus.CANCELLED
        assert status.completed_at is not None

        # The unit winds down once the process group is terminated
        for _ in range(300):
            if orch.get_queue_status().active == 0:
                break
            await asyncio.sleep(0.01)
        assert orch.get_queue_status().active == 0
        assert (await orch.get_job_status(summary.job_id, OWNER)).status == JobStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_finished_job_raises(self, make_orchestrator) -> None:
        orch = await make_orchestrator()
        summary = await orch.submit_job(1, OWNER)
        await wait_for_terminal(orch, summary.job_id)
        with pytest.raises(InvalidStateError, match="already finished"):
            await orch.cancel_job(summary.job_id, OWNER)

    @pytest.mark.asyncio
    async def test_cancel_twice_raises(self, make_orchestrator) -> None:
        orch = await make_orchestrator(strategies=_strategies("sleep 30", prepare=None))
        first = await orch.submit_job(1, OWNER)
        second = await orch.submit_job(1, OWNER)
        await orch.cancel_job(second.job_id, OWNER)
        with pytest.raises(InvalidStateError):
            await orch.cancel_job(second.job_id, OWNER)
        await orch.cancel_job(first.job_id, OWNER)

    @pytest.mark.asyncio
    async def test_cancel_requires_owner(self, make_orchestrator) -> None:
        orch = await make_orchestrator(strategies=_strategies("sleep 30", prepare=None))
        summary = await orch.submit_job(1, OWNER)
        with pytest.raises(AuthorizationError):
            await orch.cancel_job(summary.job_id, OTHER_OWNER)
        await orch.cancel_job(summary.job_id, OWNER)

    @pytest.mark.asyncio
    async def test_cancel_while_parsing_discards_results(self, make_orchestrator, jobs) -> None:
        parsing = threading.Event()
        release = threading.Event()
        strategies = _strategies()
        prophage = strategies[AnalysisKind.PROPHAGE]

        def slow_parse(output_dir: Path, input_name: str | None, config: Any) -> Any:
            parsing.set()
            release.wait(timeout=10)
            return prophage.parse(output_dir, input_name, config)

        strategies[AnalysisKind.PROPHAGE] = dataclasses.replace(prophage, parse=slow_parse)
        orch = await make_orchestrator(strategies=strategies)
        summary = await orch.submit_job(1, OWNER)
        try:
            for _ in range(500):
                if parsing.is_set():
                    break
                await asyncio.sleep(0.01)
            assert parsing.is_set()

            await orch.cancel_job(summary.job_id, OWNER)
        finally:
            release.set()

        for _ in range(300):
            if orch.get_queue_status().active == 0:
                break
            await asyncio.sleep(0.01)
        assert orch.get_queue_status().active == 0

        job = jobs.jobs[summary.job_id]
        assert job.status == JobStatus.CANCELLED
        assert job.summary == {}
        with pytest.raises(InvalidStateError):
            await orch.get_job_result(summary.job_id, OWNER)


# ─── Queries ──────────────────────────────────────────────────────────


class TestQueries:
    @pytest.mark.asyncio
    async def test_status_of_unknown_job(self, make_orchestrator) -> None:
        orch = await make_orchestrator()
        with pytest.raises(NotFoundError):
            await orch.get_job_status(42, OWNER)

    @pytest.mark.asyncio
    async def test_status_of_foreign_job(self, make_orchestrator) -> None:
        orch = await make_orchestrator()
        summary = await orch.submit_job(1, OWNER)
        with pytest.raises(AuthorizationError):
            await orch.get_job_status(summary.job_id, OTHER_OWNER)

    @pytest.mark.asyncio
    async def test_list_jobs_newest_first(self, make_orchestrator) -> None:
        orch = await make_orchestrator()
        ids = [(await orch.submit_job(1, OWNER)).job_id for _ in range(3)]
        for job_id in ids:
            await wait_for_terminal(orch, job_id)

        listed = await orch.list_jobs(OWNER)
        assert [j.job_id for j in listed] == list(reversed(ids))
        assert await orch.list_jobs(OWNER, JobStatus.FAILED) == []
        assert len(await orch.list_jobs(OWNER, JobStatus.COMPLETED)) == 3
        assert await orch.list_jobs(OTHER_OWNER) == []

    @pytest.mark.asyncio
    async def test_result_of_completed_job(self, make_orchestrator) -> None:
        orch = await make_orchestrator()
        summary = await orch.submit_job(1, OWNER)
        await wait_for_terminal(orch, summary.job_id)

        result = await orch.get_job_result(summary.job_id, OWNER)
        assert result.kind == AnalysisKind.PROPHAGE
        assert [r["region_index"] for r in result.regions] == [1, 2]
        assert "genes" not in result.regions[0]
        assert result.summary["region_count"] == 2
        assert result.hits == []

    @pytest.mark.asyncio
    async def test_result_requires_completed(self, make_orchestrator) -> None:
        orch = await make_orchestrator(strategies=_strategies("exit 1", prepare=None))
        summary = await orch.submit_job(1, OWNER)
        await wait_for_terminal(orch, summary.job_id)
        with pytest.raises(InvalidStateError, match="results are available once COMPLETED"):
            await orch.get_job_result(summary.job_id, OWNER)

    @pytest.mark.asyncio
    async def test_region_detail(self, make_orchestrator) -> None:
        orch = await make_orchestrator()
        summary = await orch.submit_job(1, OWNER)
        await wait_for_terminal(orch, summary.job_id)

        detail = await orch.get_region_detail(summary.job_id, OWNER, 1)
        assert detail.region["seq_name"] == REGION_NAME
        assert [g["gene_id"] for g in detail.genes] == [f"{REGION_NAME}_1", f"{REGION_NAME}_2"]
        assert detail.sequence == "ACGTACGTTTGG"
        assert detail.sequence_length == 12

        other = await orch.get_region_detail(summary.job_id, OWNER, 2)
        assert other.genes == []
        assert other.sequence is None

        with pytest.raises(NotFoundError):
            await orch.get_region_detail(summary.job_id, OWNER, 99)

    @pytest.mark.asyncio
    async def test_resistance_job(self, make_orchestrator) -> None:
        orch = await make_orchestrator()
        summary = await orch.submit_job(1, OWNER, kind=AnalysisKind.RESISTANCE)
        assert summary.task_name == "ARG Prediction - genome.fna"
        await wait_for_terminal(orch, summary.job_id)

        result = await orch.get_job_result(summary.job_id, OWNER)
        assert result.summary["arg_count"] == 1
        assert result.hits[0]["sequence_id"] == "seq1"
        with pytest.raises(NotFoundError, match="has no regions"):
            await orch.get_region_detail(summary.job_id, OWNER, 1)


# ─── Cleanup ──────────────────────────────────────────────────────────


class TestCleanup:
    @pytest.mark.asyncio
    async def test_removes_output_of_finished_job(self, make_orchestrator, jobs) -> None:
        orch = await make_orchestrator()
        summary = await orch.submit_job(1, OWNER)
        await wait_for_terminal(orch, summary.job_id)
        output_dir = Path(jobs.jobs[summary.job_id].output_dir or "")
        assert output_dir.is_dir()

        assert await orch.cleanup_job_output(summary.job_id, OWNER) is True
        assert not output_dir.exists()
        assert await orch.cleanup_job_output(summary.job_id, OWNER) is False
        with pytest.raises(NotFoundError):
            await orch.get_job_result(summary.job_id, OWNER)

    @pytest.mark.asyncio
    async def test_refused_for_active_job(self, make_orchestrator) -> None:
        orch = await make_orchestrator(strategies=_strategies("sleep 30", prepare=None))
        summary = await orch.submit_job(1, OWNER)
        with pytest.raises(InvalidStateError):
            await orch.cleanup_job_output(summary.job_id, OWNER)
        await orch.cancel_job(summary.job_id, OWNER)


# ─── Lifecycle ────────────────────────────────────────────────────────


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_context_manager_drains_jobs(self, fast_config, jobs, inputs) -> None:
        async with JobOrchestrator(
            fast_config, jobs, inputs, strategies=_strategies(),
        ) as orch:
            summary = await orch.submit_job(1, OWNER)
        assert jobs.jobs[summary.job_id].status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_non_graceful_shutdown_cancels_running(self, fast_config, jobs, inputs) -> None:
        orch = JobOrchestrator(
            fast_config, jobs, inputs, strategies=_strategies("sleep 30", prepare=None),
        )
        await orch.start()
        summary = await orch.submit_job(1, OWNER)
        await wait_for_status(orch, summary.job_id, JobStatus.RUNNING)
        await orch.shutdown(graceful=False)
        assert jobs.jobs[summary.job_id].status == JobStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_non_graceful_shutdown_cancels_queued(self, fast_config, jobs, inputs) -> None:
        orch = JobOrchestrator(
            fast_config, jobs, inputs, strategies=_strategies("sleep 30", prepare=None),
        )
        await orch.start()
        first = await orch.submit_job(1, OWNER)
        second = await orch.submit_job(1, OWNER)
        await wait_for_status(orch, first.job_id, JobStatus.RUNNING)
        await orch.shutdown(graceful=False)

        assert jobs.jobs[first.job_id].status == JobStatus.CANCELLED
        queued = jobs.jobs[second.job_id]
        assert queued.status == JobStatus.CANCELLED
        assert queued.started_at is None
        assert "before the job started" in (queued.error_message or "")

    @pytest.mark.asyncio
    async def test_concurrency_limit_respected(self, fast_config, jobs, inputs) -> None:
        config = fast_config.model_copy(
            update={"pool": WorkerPoolConfig(max_concurrent=2, queue_capacity=10)},
        )
        orch = JobOrchestrator(
            config, jobs, inputs, strategies=_strategies("sleep 0.3", prepare=_prophage_files),
        )
        await orch.start()
        peak = 0
        try:
            ids = [(await orch.submit_job(1, OWNER)).job_id for _ in range(4)]
            while not all(jobs.jobs[i].status.is_terminal for i in ids):
                running = sum(1 for i in ids if jobs.jobs[i].status == JobStatus.RUNNING)
                peak = max(peak, running)
                await asyncio.sleep(0.02)
        finally:
            await orch.shutdown()
        assert peak <= 2
        assert all(jobs.jobs[i].status == JobStatus.COMPLETED for i in ids)
