"""Domain records for genorun.

``Job`` is the mutable record the orchestrator drives through its state
machine. ``ResultRegion``, ``Gene`` and ``ResistanceHit`` are immutable
records produced by the output parsers from a completed job's files.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from genorun.core.errors import InvalidStateError


class JobStatus(str, Enum):
    """Lifecycle states of an analysis job.

    Inherits from ``str`` so the status serializes directly as a plain
    string in JSON/dict output.
    """

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

# Terminal states are absorbing: they have no outgoing transitions.
_ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.CANCELLED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


class AnalysisKind(str, Enum):
    """Which external analysis a job runs."""

    PROPHAGE = "prophage"
    RESISTANCE = "resistance"

    @classmethod
    def _missing_(cls, value: object) -> AnalysisKind | None:
        # Tool names used by older clients
        aliases = {"genomad": cls.PROPHAGE, "arg": cls.RESISTANCE}
        if isinstance(value, str):
            return aliases.get(value.lower())
        return None


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class Job:
    """A single analysis job record.

    Mutated only by the orchestrator. ``output_dir`` is unique per job and
    created lazily when the job first executes.
    """

    owner_id: int
    input_id: int
    kind: AnalysisKind
    job_id: int | None = None
    task_name: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    created_at: datetime = field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    output_dir: str | None = None
    error_message: str | None = None
    summary: dict[str, Any] = field(default_factory=dict)

    def transition_to(self, new_status: JobStatus) -> None:
        """Move to ``new_status``, enforcing the job state machine.

        Raises:
            InvalidStateError: If the transition is not allowed.
        """
        if new_status not in _ALLOWED_TRANSITIONS[self.status]:
            if self.status.is_terminal:
                raise InvalidStateError(
                    f"Job {self.job_id} already finished ({self.status.value}), "
                    f"cannot move to {new_status.value}"
                )
            raise InvalidStateError(
                f"Job {self.job_id} cannot move from {self.status.value} "
                f"to {new_status.value}"
            )
        self.status = new_status
        if new_status == JobStatus.RUNNING:
            self.started_at = utc_now()
        elif new_status.is_terminal:
            self.completed_at = utc_now()
            if new_status == JobStatus.COMPLETED:
                self.progress = 100

    def advance_progress(self, progress: int) -> None:
        """Raise progress to ``progress``; never lowers it."""
        self.progress = max(self.progress, min(progress, 100))

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses and logging."""
        return {
            "job_id": self.job_id,
            "owner_id": self.owner_id,
            "input_id": self.input_id,
            "kind": self.kind.value,
            "task_name": self.task_name,
            "parameters": dict(self.parameters),
            "status": self.status.value,
            "progress": self.progress,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "output_dir": self.output_dir,
            "error_message": self.error_message,
            "summary": dict(self.summary),
        }


@dataclass(frozen=True)
class InputRef:
    """An input file registered by an owner."""

    input_id: int
    owner_id: int
    path: str

    @property
    def filename(self) -> str:
        return self.path.replace("\\", "/").rsplit("/", 1)[-1]


@dataclass(frozen=True)
class Gene:
    """A gene called inside a prophage region."""

    gene_id: str
    start: int
    end: int
    strand: int
    length: int | None = None
    gc_content: float | None = None
    annotation: str = "unannotated"
    annotation_accessions: str = ""
    taxname: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "gene_id": self.gene_id,
            "start": self.start,
            "end": self.end,
            "strand": self.strand,
            "length": self.length,
            "gc_content": self.gc_content,
            "annotation": self.annotation,
            "annotation_accessions": self.annotation_accessions,
            "taxname": self.taxname,
        }


@dataclass(frozen=True)
class ResultRegion:
    """One region reported by the prophage tool, in file order."""

    region_index: int
    seq_name: str
    source_seq: str
    start: int
    end: int
    length: int
    score: float
    confidence: float
    completeness: str
    gene_count: int
    in_seq_edge: bool = False
    integrases: str = ""
    genes: tuple[Gene, ...] = ()

    @property
    def is_complete(self) -> bool:
        return self.completeness == "complete"

    @property
    def gene_prefix(self) -> str:
        """Identifier prefix shared by the ids of this region's genes."""
        host = self.seq_name.split("|provirus_")[0]
        return f"{host}|provirus_{self.start}_{self.end}"

    def to_dict(self, include_genes: bool = True) -> dict[str, Any]:
        result: dict[str, Any] = {
            "region_index": self.region_index,
            "seq_name": self.seq_name,
            "source_seq": self.source_seq,
            "start": self.start,
            "end": self.end,
            "length": self.length,
            "score": self.score,
            "confidence": self.confidence,
            "completeness": self.completeness,
            "gene_count": self.gene_count,
            "in_seq_edge": self.in_seq_edge,
            "integrases": self.integrases,
        }
        if include_genes:
            result["genes"] = [g.to_dict() for g in self.genes]
        return result


@dataclass(frozen=True)
class ResistanceHit:
    """One prediction row from the resistance gene tool."""

    index: int
    sequence_id: str
    is_arg: bool
    pred_prob: float | None
    arg_class: str
    class_prob: float | None
    prob: float | None
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "sequence_id": self.sequence_id,
            "is_arg": self.is_arg,
            "pred_prob": self.pred_prob,
            "arg_class": self.arg_class,
            "class_prob": self.class_prob,
            "prob": self.prob,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class ParseResult:
    """Structured output of one job: summary metrics plus records."""

    summary: dict[str, Any]
    regions: tuple[ResultRegion, ...] = ()
    hits: tuple[ResistanceHit, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": dict(self.summary),
            "regions": [r.to_dict() for r in self.regions],
            "hits": [h.to_dict() for h in self.hits],
        }


__all__ = [
    "AnalysisKind",
    "Gene",
    "InputRef",
    "Job",
    "JobStatus",
    "ParseResult",
    "ResistanceHit",
    "ResultRegion",
    "utc_now",
]
