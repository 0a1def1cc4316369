"""Execution engine: worker pool, process supervisor and job orchestrator."""

from genorun.engine.orchestrator import JobOrchestrator
from genorun.engine.pool import PoolStatus, WorkerPool
from genorun.engine.supervisor import ProcessHandle, ProcessResult, ProcessSupervisor
from genorun.engine.types import (
    JobParameters,
    JobResultView,
    JobStatusView,
    JobSummary,
    QueueStatus,
    RegionDetailView,
)

__all__ = [
    "JobOrchestrator",
    "JobParameters",
    "JobResultView",
    "JobStatusView",
    "JobSummary",
    "PoolStatus",
    "ProcessHandle",
    "ProcessResult",
    "ProcessSupervisor",
    "QueueStatus",
    "RegionDetailView",
    "WorkerPool",
]
