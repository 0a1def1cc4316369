"""Abstract stores consumed by the orchestrator.

Job records and input references live outside the orchestration core.
These interfaces are the only way the core reads or writes them.
"""

from abc import ABC, abstractmethod

from genorun.core.models import InputRef, Job, JobStatus


class JobStore(ABC):
    """Persistence for job records.

    Implementations must return snapshots: mutating a returned ``Job``
    never changes the stored record until ``update()`` is called.
    """

    @abstractmethod
    async def get_by_id(self, job_id: int) -> Job | None:
        """Load a job.

        Args:
            job_id: Store-assigned job identifier

        Returns:
            The job if found, None otherwise
        """
        ...

    @abstractmethod
    async def insert(self, job: Job) -> int:
        """Persist a new job and assign its id.

        Args:
            job: Job to insert. ``job.job_id`` is ignored.

        Returns:
            The assigned job id
        """
        ...

    @abstractmethod
    async def update(self, job: Job) -> None:
        """Overwrite the stored record of ``job.job_id``."""
        ...

    @abstractmethod
    async def find_by_owner(
        self,
        owner_id: int,
        status: JobStatus | None = None,
    ) -> list[Job]:
        """Jobs of one owner, newest first, optionally filtered by status."""
        ...

    async def mark_orphans_failed(self) -> int:
        """Close out records left active by a previous process.

        RUNNING records become FAILED and PENDING records CANCELLED. Only
        durable stores can hold such records; the default does nothing.

        Returns:
            Number of jobs marked
        """
        return 0


class InputStore(ABC):
    """Lookup of registered input files."""

    @abstractmethod
    async def get_by_id(self, input_id: int) -> InputRef | None:
        ...
