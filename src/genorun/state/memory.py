"""In-memory stores.

Used by tests and by the CLI, which hosts an orchestrator for a single
run and has no need for durable records.
"""

import copy
import itertools

from genorun.core.models import InputRef, Job, JobStatus
from genorun.state.base import InputStore, JobStore


class InMemoryJobStore(JobStore):
    """Dict-backed job store handing out deep copies."""

    def __init__(self) -> None:
        self.jobs: dict[int, Job] = {}
        self._ids = itertools.count(1)

    async def get_by_id(self, job_id: int) -> Job | None:
        job = self.jobs.get(job_id)
        return copy.deepcopy(job) if job is not None else None

    async def insert(self, job: Job) -> int:
        job_id = next(self._ids)
        stored = copy.deepcopy(job)
        stored.job_id = job_id
        self.jobs[job_id] = stored
        job.job_id = job_id
        return job_id

    async def update(self, job: Job) -> None:
        if job.job_id not in self.jobs:
            raise KeyError(f"Job {job.job_id} does not exist")
        self.jobs[job.job_id] = copy.deepcopy(job)

    async def find_by_owner(
        self,
        owner_id: int,
        status: JobStatus | None = None,
    ) -> list[Job]:
        found = [
            copy.deepcopy(job)
            for job in self.jobs.values()
            if job.owner_id == owner_id and (status is None or job.status == status)
        ]
        return sorted(found, key=lambda j: j.job_id or 0, reverse=True)


class InMemoryInputStore(InputStore):
    """Dict-backed registry of input files."""

    def __init__(self) -> None:
        self.inputs: dict[int, InputRef] = {}
        self._ids = itertools.count(1)

    def add(self, owner_id: int, path: str) -> InputRef:
        ref = InputRef(input_id=next(self._ids), owner_id=owner_id, path=path)
        self.inputs[ref.input_id] = ref
        return ref

    async def get_by_id(self, input_id: int) -> InputRef | None:
        return self.inputs.get(input_id)
