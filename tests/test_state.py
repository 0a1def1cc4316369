"""Tests for the job and input stores.

Covers the in-memory stores and the async SqliteJobStore: CRUD, snapshot
semantics, owner queries and orphan recovery.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

import pytest

from genorun.core.models import AnalysisKind, Job, JobStatus
from genorun.state import InMemoryInputStore, InMemoryJobStore, SqliteJobStore


def _job(owner_id: int = 1, **kwargs: object) -> Job:
    return Job(owner_id=owner_id, input_id=1, kind=AnalysisKind.PROPHAGE, **kwargs)


# ─── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
async def sqlite_store(tmp_path: Path) -> AsyncIterator[SqliteJobStore]:
    store = SqliteJobStore(tmp_path / "jobs.db")
    await store.open()
    yield store
    await store.close()


# ─── In-memory ────────────────────────────────────────────────────────


class TestInMemoryJobStore:
    @pytest.mark.asyncio
    async def test_insert_assigns_increasing_ids(self) -> None:
        store = InMemoryJobStore()
        first, second = _job(), _job()
        assert await store.insert(first) == 1
        assert await store.insert(second) == 2
        assert first.job_id == 1

    @pytest.mark.asyncio
    async def test_returns_snapshots(self) -> None:
        store = InMemoryJobStore()
        job_id = await store.insert(_job())
        loaded = await store.get_by_id(job_id)
        assert loaded is not None
        loaded.transition_to(JobStatus.RUNNING)

        again = await store.get_by_id(job_id)
        assert again is not None
        assert again.status == JobStatus.PENDING

        await store.update(loaded)
        again = await store.get_by_id(job_id)
        assert again is not None
        assert again.status == JobStatus.RUNNING

    @pytest.mark.asyncio
    async def test_update_unknown_job(self) -> None:
        store = InMemoryJobStore()
        with pytest.raises(KeyError):
            await store.update(_job(job_id=5))

    @pytest.mark.asyncio
    async def test_find_by_owner(self) -> None:
        store = InMemoryJobStore()
        for owner in (1, 2, 1):
            await store.insert(_job(owner_id=owner))
        done = await store.get_by_id(3)
        assert done is not None
        done.transition_to(JobStatus.CANCELLED)
        await store.update(done)

        assert [j.job_id for j in await store.find_by_owner(1)] == [3, 1]
        assert [j.job_id for j in await store.find_by_owner(1, JobStatus.PENDING)] == [1]
        assert await store.find_by_owner(3) == []

    @pytest.mark.asyncio
    async def test_no_orphans(self) -> None:
        assert await InMemoryJobStore().mark_orphans_failed() == 0


class TestInMemoryInputStore:
    @pytest.mark.asyncio
    async def test_add_and_get(self) -> None:
        store = InMemoryInputStore()
        ref = store.add(owner_id=4, path="/data/genome.fna")
        assert ref.input_id == 1
        assert await store.get_by_id(1) == ref
        assert await store.get_by_id(2) is None


# ─── SQLite ───────────────────────────────────────────────────────────


class TestSqliteLifecycle:
    @pytest.mark.asyncio
    async def test_open_creates_db_and_parents(self, tmp_path: Path) -> None:
        db_path = tmp_path / "nested" / "dir" / "jobs.db"
        store = SqliteJobStore(db_path)
        await store.open()
        assert db_path.exists()
        await store.close()
        await store.close()  # Should not raise

    @pytest.mark.asyncio
    async def test_use_before_open(self, tmp_path: Path) -> None:
        store = SqliteJobStore(tmp_path / "jobs.db")
        with pytest.raises(RuntimeError, match="not opened"):
            await store.get_by_id(1)

    @pytest.mark.asyncio
    async def test_context_manager(self, tmp_path: Path) -> None:
        async with SqliteJobStore(tmp_path / "jobs.db") as store:
            assert await store.insert(_job()) == 1


class TestSqliteJobStore:
    @pytest.mark.asyncio
    async def test_roundtrip_preserves_fields(self, sqlite_store: SqliteJobStore) -> None:
        job = _job(task_name="Prophage Detection - g.fna", parameters={"splits": 4})
        job_id = await sqlite_store.insert(job)
        job.transition_to(JobStatus.RUNNING)
        job.advance_progress(20)
        job.output_dir = "/out/task_1"
        job.transition_to(JobStatus.COMPLETED)
        job.summary = {"region_count": 2, "source_table": "provirus"}
        await sqlite_store.update(job)

        loaded = await sqlite_store.get_by_id(job_id)
        assert loaded is not None
        assert loaded.status == JobStatus.COMPLETED
        assert loaded.kind == AnalysisKind.PROPHAGE
        assert loaded.progress == 100
        assert loaded.parameters == {"splits": 4}
        assert loaded.summary == {"region_count": 2, "source_table": "provirus"}
        assert loaded.started_at == job.started_at
        assert loaded.completed_at == job.completed_at
        assert loaded.output_dir == "/out/task_1"

    @pytest.mark.asyncio
    async def test_get_missing(self, sqlite_store: SqliteJobStore) -> None:
        assert await sqlite_store.get_by_id(999) is None

    @pytest.mark.asyncio
    async def test_update_missing(self, sqlite_store: SqliteJobStore) -> None:
        with pytest.raises(KeyError):
            await sqlite_store.update(_job(job_id=42))

    @pytest.mark.asyncio
    async def test_find_by_owner(self, sqlite_store: SqliteJobStore) -> None:
        for owner in (1, 1, 2):
            await sqlite_store.insert(_job(owner_id=owner))
        first = await sqlite_store.get_by_id(1)
        assert first is not None
        first.transition_to(JobStatus.CANCELLED)
        await sqlite_store.update(first)

        assert [j.job_id for j in await sqlite_store.find_by_owner(1)] == [2, 1]
        cancelled = await sqlite_store.find_by_owner(1, JobStatus.CANCELLED)
        assert [j.job_id for j in cancelled] == [1]

    @pytest.mark.asyncio
    async def test_mark_orphans_failed(self, sqlite_store: SqliteJobStore) -> None:
        pending = _job()
        running = _job()
        running.transition_to(JobStatus.RUNNING)
        done = _job()
        done.transition_to(JobStatus.CANCELLED)
        for job in (pending, running, done):
            await sqlite_store.insert(job)

        assert await sqlite_store.mark_orphans_failed() == 2

        never_started = await sqlite_store.get_by_id(1)
        assert never_started is not None
        assert never_started.status == JobStatus.CANCELLED
        assert never_started.started_at is None
        assert never_started.completed_at is not None
        assert "before job started" in (never_started.error_message or "")

        interrupted = await sqlite_store.get_by_id(2)
        assert interrupted is not None
        assert interrupted.status == JobStatus.FAILED
        assert interrupted.started_at is not None
        assert interrupted.completed_at is not None
        assert "restarted" in (interrupted.error_message or "")

        untouched = await sqlite_store.get_by_id(3)
        assert untouched is not None
        assert untouched.status == JobStatus.CANCELLED
        assert untouched.error_message is None

    @pytest.mark.asyncio
    async def test_records_survive_reopen(self, tmp_path: Path) -> None:
        db_path = tmp_path / "jobs.db"
        async with SqliteJobStore(db_path) as store:
            await store.insert(_job(task_name="persisted"))
        async with SqliteJobStore(db_path) as store:
            loaded = await store.get_by_id(1)
        assert loaded is not None
        assert loaded.task_name == "persisted"
