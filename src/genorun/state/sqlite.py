"""SQLite-backed job store.

Keeps job records across restarts so job history and status survive the
process hosting the orchestrator. All methods are async (via
``aiosqlite``) so the event loop is never blocked on disk I/O.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from genorun.core.logging import get_logger
from genorun.core.models import AnalysisKind, Job, JobStatus, utc_now
from genorun.state.base import JobStore

_logger = get_logger("state.sqlite")


class SqliteJobStore(JobStore):
    """Async SQLite job store.

    Usage::

        store = SqliteJobStore(db_path)
        await store.open()   # creates tables, sets WAL mode
        ...
        await store.close()

    Or as an async context manager::

        async with SqliteJobStore(db_path) as store:
            job_id = await store.insert(job)
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: aiosqlite.Connection | None = None

    async def open(self) -> None:
        """Open the database connection and create tables."""
        conn = await aiosqlite.connect(str(self._db_path))
        try:
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA journal_mode=WAL")
            await self._create_tables(conn)
        except Exception:
            await conn.close()
            raise
        self._conn = conn
        _logger.info("store.opened", path=str(self._db_path))

    @property
    def _db(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("SqliteJobStore not opened, call open() first")
        return self._conn

    @staticmethod
    async def _create_tables(conn: aiosqlite.Connection) -> None:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS jobs (
                job_id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id INTEGER NOT NULL,
                input_id INTEGER NOT NULL,
                kind TEXT NOT NULL,
                task_name TEXT NOT NULL DEFAULT '',
                parameters TEXT NOT NULL DEFAULT '{}',
                status TEXT NOT NULL DEFAULT 'PENDING',
                progress INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                started_at TEXT,
                completed_at TEXT,
                output_dir TEXT,
                error_message TEXT,
                summary TEXT NOT NULL DEFAULT '{}'
            )
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_jobs_owner_status
            ON jobs (owner_id, status)
        """)
        await conn.commit()

    async def get_by_id(self, job_id: int) -> Job | None:
        cursor = await self._db.execute("SELECT * FROM jobs WHERE job_id = ?", (job_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_job(row)

    async def insert(self, job: Job) -> int:
        cursor = await self._db.execute(
            """
            INSERT INTO jobs
                (owner_id, input_id, kind, task_name, parameters, status, progress,
                 created_at, started_at, completed_at, output_dir, error_message, summary)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                job.owner_id,
                job.input_id,
                job.kind.value,
                job.task_name,
                json.dumps(job.parameters),
                job.status.value,
                job.progress,
                job.created_at.isoformat(),
                _iso(job.started_at),
                _iso(job.completed_at),
                job.output_dir,
                job.error_message,
                json.dumps(job.summary),
            ),
        )
        await self._db.commit()
        job_id = cursor.lastrowid
        if job_id is None:
            raise RuntimeError("SQLite did not return a job id")
        job.job_id = job_id
        return job_id

    async def update(self, job: Job) -> None:
        cursor = await self._db.execute(
            """
            UPDATE jobs SET
                task_name = ?, parameters = ?, status = ?, progress = ?,
                started_at = ?, completed_at = ?, output_dir = ?,
                error_message = ?, summary = ?
            WHERE job_id = ?
            """,
            (
                job.task_name,
                json.dumps(job.parameters),
                job.status.value,
                job.progress,
                _iso(job.started_at),
                _iso(job.completed_at),
                job.output_dir,
                job.error_message,
                json.dumps(job.summary),
                job.job_id,
            ),
        )
        await self._db.commit()
        if cursor.rowcount == 0:
            raise KeyError(f"Job {job.job_id} does not exist")

    async def find_by_owner(
        self,
        owner_id: int,
        status: JobStatus | None = None,
    ) -> list[Job]:
        if status is not None:
            cursor = await self._db.execute(
                "SELECT * FROM jobs WHERE owner_id = ? AND status = ? ORDER BY job_id DESC",
                (owner_id, status.value),
            )
        else:
            cursor = await self._db.execute(
                "SELECT * FROM jobs WHERE owner_id = ? ORDER BY job_id DESC",
                (owner_id,),
            )
        rows = await cursor.fetchall()
        return [self._row_to_job(r) for r in rows]

    async def mark_orphans_failed(self) -> int:
        """Close out jobs left PENDING/RUNNING by a previous process.

        Their execution units died with that process, so nothing will ever
        move them to a terminal state otherwise. RUNNING jobs become FAILED;
        PENDING jobs never started and become CANCELLED.

        Returns the number of jobs marked.
        """
        now = utc_now().isoformat()
        running = await self._db.execute(
            """
            UPDATE jobs SET
                status = ?,
                completed_at = ?,
                error_message = 'Orchestrator restarted while job was running'
            WHERE status = ?
            """,
            (JobStatus.FAILED.value, now, JobStatus.RUNNING.value),
        )
        pending = await self._db.execute(
            """
            UPDATE jobs SET
                status = ?,
                completed_at = ?,
                error_message = 'Orchestrator restarted before job started'
            WHERE status = ?
            """,
            (JobStatus.CANCELLED.value, now, JobStatus.PENDING.value),
        )
        await self._db.commit()
        count = running.rowcount + pending.rowcount
        if count > 0:
            _logger.warning(
                "store.orphans_closed",
                failed=running.rowcount,
                cancelled=pending.rowcount,
            )
        return count

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self) -> SqliteJobStore:
        await self.open()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    @staticmethod
    def _row_to_job(row: aiosqlite.Row) -> Job:
        return Job(
            job_id=row["job_id"],
            owner_id=row["owner_id"],
            input_id=row["input_id"],
            kind=AnalysisKind(row["kind"]),
            task_name=row["task_name"],
            parameters=_load_json(row["parameters"]),
            status=JobStatus(row["status"]),
            progress=row["progress"],
            created_at=datetime.fromisoformat(row["created_at"]),
            started_at=_parse_iso(row["started_at"]),
            completed_at=_parse_iso(row["completed_at"]),
            output_dir=row["output_dir"],
            error_message=row["error_message"],
            summary=_load_json(row["summary"]),
        )


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _load_json(value: str | None) -> dict[str, Any]:
    if not value:
        return {}
    loaded = json.loads(value)
    return loaded if isinstance(loaded, dict) else {}
