"""Bounded worker pool for job execution.

A fixed number of worker tasks consume a bounded FIFO queue of work
units keyed by job id. At most one unit per job id is tracked at any
time: a duplicate submission is logged and ignored. When the queue is
full the submitting coroutine runs the unit itself (caller-runs), so
admission is never refused while the pool is accepting work.

Each unit runs in its own child task so that cancelling a running unit
never kills the worker that picked it up.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from genorun.core.config import WorkerPoolConfig
from genorun.core.logging import get_logger
from genorun.engine.task_utils import log_task_exception

_logger = get_logger("pool")

WorkFactory = Callable[[], Awaitable[Any]]


@dataclass
class PoolStatus:
    """Occupancy snapshot of the pool."""

    active: int
    queued: int
    completed: int
    total_submitted: int
    max_concurrent: int
    queue_capacity: int

    def to_dict(self) -> dict[str, int]:
        return {
            "active": self.active,
            "queued": self.queued,
            "completed": self.completed,
            "total_submitted": self.total_submitted,
            "max_concurrent": self.max_concurrent,
            "queue_capacity": self.queue_capacity,
        }


@dataclass
class _WorkUnit:
    job_id: int
    work: WorkFactory
    task: asyncio.Task[Any] | None = field(default=None, repr=False)
    cancelled: bool = False

    @property
    def running(self) -> bool:
        return self.task is not None and not self.task.done()


class WorkerPool:
    """Bounded-concurrency executor keyed by job id.

    Usage::

        pool = WorkerPool(WorkerPoolConfig(max_concurrent=1))
        await pool.start()
        accepted = await pool.submit(42, lambda: run_job(42))
        ...
        await pool.shutdown(timeout=30)
    """

    def __init__(self, config: WorkerPoolConfig | None = None) -> None:
        self._config = config or WorkerPoolConfig()
        self._queue: asyncio.Queue[_WorkUnit] = asyncio.Queue(
            maxsize=self._config.queue_capacity,
        )
        # job id -> unit; only in-flight (queued or running) units live here
        self._units: dict[int, _WorkUnit] = {}
        self._workers: list[asyncio.Task[None]] = []
        self._completed = 0
        self._total_submitted = 0
        self._shutting_down = False

    # ─── Lifecycle ────────────────────────────────────────────────────

    async def start(self) -> None:
        """Spawn the worker tasks. Calling twice is a no-op."""
        if self._workers:
            return
        self._shutting_down = False
        for index in range(self._config.max_concurrent):
            worker = asyncio.create_task(self._worker(index), name=f"pool-worker-{index}")
            worker.add_done_callback(
                lambda t: log_task_exception(t, _logger, "pool.worker_died"),
            )
            self._workers.append(worker)
        _logger.info(
            "pool.started",
            max_concurrent=self._config.max_concurrent,
            queue_capacity=self._config.queue_capacity,
        )

    async def shutdown(self, graceful: bool = True, timeout: float = 60.0) -> list[int]:
        """Stop accepting work and stop the workers.

        With ``graceful`` the queue is given up to ``timeout`` seconds to
        drain. Whatever is still queued or running afterwards is cancelled.

        Returns:
            Job ids of queued units that were dropped without ever starting.
        """
        self._shutting_down = True
        _logger.info(
            "pool.shutting_down",
            graceful=graceful,
            timeout=timeout,
            active=self.active_count,
            queued=self.queued_count,
        )
        if graceful and self._workers:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=timeout)
            except TimeoutError:
                _logger.warning("pool.shutdown_timeout", timeout=timeout)

        running: list[asyncio.Task[Any]] = []
        dropped: list[int] = []
        for unit in list(self._units.values()):
            if unit.task is None and not unit.cancelled:
                dropped.append(unit.job_id)
            unit.cancelled = True
            if unit.running:
                assert unit.task is not None
                unit.task.cancel(msg="pool shutdown")
                running.append(unit.task)

        for worker in self._workers:
            worker.cancel()
        results = await asyncio.gather(*self._workers, *running, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException) and not isinstance(
                result, asyncio.CancelledError,
            ):
                _logger.warning(
                    "pool.shutdown_worker_exception",
                    error=str(result),
                    error_type=type(result).__name__,
                )
        self._workers.clear()
        self._units.clear()
        _logger.info(
            "pool.shutdown_complete", completed=self._completed, dropped=len(dropped),
        )
        return dropped

    # ─── Submission and cancellation ──────────────────────────────────

    async def submit(self, job_id: int, work: WorkFactory) -> bool:
        """Admit a unit of work for ``job_id``.

        ``work`` is a zero-argument callable returning the awaitable to
        run; it is only called once a worker (or the caller) executes it.

        Returns:
            True if the unit was admitted. False if a unit for this id is
            already queued or running, or the pool is shutting down. Neither
            case raises.
        """
        if self._shutting_down:
            _logger.warning("pool.rejected_shutting_down", job_id=job_id)
            return False
        if job_id in self._units:
            _logger.warning("pool.duplicate_rejected", job_id=job_id)
            return False

        unit = _WorkUnit(job_id=job_id, work=work)
        self._units[job_id] = unit
        self._total_submitted += 1
        try:
            self._queue.put_nowait(unit)
        except asyncio.QueueFull:
            # Backpressure: run in the submitter instead of refusing admission
            _logger.warning(
                "pool.caller_runs",
                job_id=job_id,
                queue_capacity=self._config.queue_capacity,
            )
            await self._execute(unit)
            return True

        _logger.debug("pool.enqueued", job_id=job_id, queued=self.queued_count)
        return True

    def cancel(self, job_id: int) -> bool:
        """Signal cancellation of the unit for ``job_id``.

        A queued unit is dropped before it starts; a running unit's task is
        cancelled. Returns immediately.

        Returns:
            True if a queued or running unit existed and was signalled.
        """
        unit = self._units.get(job_id)
        if unit is None or unit.cancelled:
            return False
        unit.cancelled = True
        if unit.running:
            assert unit.task is not None
            unit.task.cancel(msg="cancelled by request")
            _logger.info("pool.running_unit_cancelled", job_id=job_id)
        else:
            self._units.pop(job_id, None)
            _logger.info("pool.queued_unit_cancelled", job_id=job_id)
        return True

    # ─── Introspection ────────────────────────────────────────────────

    def is_tracked(self, job_id: int) -> bool:
        """Whether a unit for ``job_id`` is queued or running."""
        return job_id in self._units

    @property
    def active_count(self) -> int:
        return sum(1 for u in self._units.values() if u.running)

    @property
    def queued_count(self) -> int:
        return sum(1 for u in self._units.values() if u.task is None and not u.cancelled)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def status(self) -> PoolStatus:
        return PoolStatus(
            active=self.active_count,
            queued=self.queued_count,
            completed=self._completed,
            total_submitted=self._total_submitted,
            max_concurrent=self._config.max_concurrent,
            queue_capacity=self._config.queue_capacity,
        )

    # ─── Internals ────────────────────────────────────────────────────

    async def _worker(self, index: int) -> None:
        while True:
            unit = await self._queue.get()
            try:
                if unit.cancelled:
                    _logger.debug("pool.skipping_cancelled", job_id=unit.job_id, worker=index)
                    continue
                await self._execute(unit)
            finally:
                self._queue.task_done()

    async def _execute(self, unit: _WorkUnit) -> None:
        """Run one unit in its own task and untrack it afterwards."""
        unit.task = asyncio.create_task(unit.work(), name=f"job-unit-{unit.job_id}")
        _logger.debug("pool.unit_started", job_id=unit.job_id)
        try:
            await asyncio.wait({unit.task})
            log_task_exception(unit.task, _logger, "pool.unit_failed")
            if unit.task.cancelled():
                _logger.info("pool.unit_cancelled", job_id=unit.job_id)
        finally:
            if not unit.task.done() and not unit.task.cancelling():
                # The worker itself is being cancelled
                unit.task.cancel(msg="worker stopped")
            self._completed += 1
            if self._units.get(unit.job_id) is unit:
                del self._units[unit.job_id]
            _logger.debug("pool.unit_finished", job_id=unit.job_id)


__all__ = ["PoolStatus", "WorkFactory", "WorkerPool"]
