"""Request and response models of the orchestrator's public operations.

All models are Pydantic v2 BaseModel so a thin API layer can serialize
them directly.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from genorun.core.models import AnalysisKind, Job, JobStatus


class JobParameters(BaseModel):
    """Tool parameters accepted at submission.

    Unknown keys are rejected so a typo never silently falls back to a
    tool default.
    """

    model_config = ConfigDict(extra="forbid")

    min_score: float | None = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Minimum region score reported by the prophage tool.",
    )
    min_length: int | None = Field(
        default=None,
        ge=0,
        description="Minimum region length in bases.",
    )
    splits: int | None = Field(
        default=None,
        ge=1,
        le=256,
        description="Number of database splits. Higher values lower peak memory.",
    )


class JobSummary(BaseModel):
    """Returned by submission and listing."""

    job_id: int
    task_name: str
    kind: AnalysisKind
    status: JobStatus
    progress: int = Field(ge=0, le=100)
    created_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_job(cls, job: Job) -> JobSummary:
        return cls(
            job_id=job.job_id or 0,
            task_name=job.task_name,
            kind=job.kind,
            status=job.status,
            progress=job.progress,
            created_at=job.created_at,
            completed_at=job.completed_at,
        )


class JobStatusView(BaseModel):
    """Latest known state of one job."""

    job_id: int
    status: JobStatus
    progress: int = Field(ge=0, le=100)
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_job(cls, job: Job) -> JobStatusView:
        return cls(
            job_id=job.job_id or 0,
            status=job.status,
            progress=job.progress,
            error_message=job.error_message,
            started_at=job.started_at,
            completed_at=job.completed_at,
        )


class JobResultView(BaseModel):
    """Structured results of a completed job."""

    job_id: int
    kind: AnalysisKind
    summary: dict[str, Any] = Field(default_factory=dict)
    regions: list[dict[str, Any]] = Field(default_factory=list)
    hits: list[dict[str, Any]] = Field(default_factory=list)


class RegionDetailView(BaseModel):
    """One region with its genes and, when available, its sequence."""

    job_id: int
    region: dict[str, Any]
    genes: list[dict[str, Any]] = Field(default_factory=list)
    sequence: str | None = None
    sequence_length: int | None = None


class QueueStatus(BaseModel):
    """Worker pool occupancy."""

    active: int
    queued: int
    completed: int
    total_submitted: int = 0
    max_concurrent: int = 1


__all__ = [
    "JobParameters",
    "JobResultView",
    "JobStatusView",
    "JobSummary",
    "QueueStatus",
    "RegionDetailView",
]
