"""Durable job queue — SQLite-backed priority queue with atomic claims.

Lifecycle:
    pending → processing → completed
                         → pending      (retry, with backoff)
                         → dead_letter  (retries exhausted)
                         → failed       (retries exhausted, dead-letter off)
    pending → cancelled

A claim is a conditional ``UPDATE ... WHERE status = 'pending'``; when two
workers race for the same row exactly one update touches it and the other
moves on. Completion and failure are guarded by the claiming worker's id,
so a job reclaimed after a stale reset cannot be finished twice. Workers
refresh ``heartbeat_at`` while a handler runs; the stale sweep only
reclaims jobs whose last heartbeat is older than the job timeout.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from pathlib import Path
from typing import Any

from src.engine.retry import RetryPolicy
from src.errors import InvalidStateError, JobNotFoundError
from src.storage import SQLiteStore

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD_LETTER = "dead_letter"
    CANCELLED = "cancelled"


class JobPriority(IntEnum):
    LOW = 0
    NORMAL = 1
    HIGH = 2
    URGENT = 3

    @classmethod
    def parse(cls, value: JobPriority | int | str) -> JobPriority:
        if isinstance(value, str):
            try:
                return cls[value.upper()]
            except KeyError:
                raise ValueError(f"Invalid priority: {value}") from None
        return cls(value)


# ── Models ───────────────────────────────────────────────────────────────────


@dataclass
class Job:
    id: int
    type: str
    payload: dict[str, Any]
    priority: JobPriority
    status: JobStatus
    retry_count: int
    max_retries: int
    execute_at: float
    created_at: float
    updated_at: float
    dedupe_key: str | None = None
    started_at: float | None = None
    heartbeat_at: float | None = None
    completed_at: float | None = None
    failed_at: float | None = None
    worker_id: str | None = None
    last_error: str | None = None
    execution_time: float | None = None
    result: dict[str, Any] | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Job:
        return cls(
            id=row["id"],
            type=row["job_type"],
            payload=json.loads(row["payload"] or "{}"),
            priority=JobPriority(row["priority"]),
            status=JobStatus(row["status"]),
            retry_count=row["retry_count"],
            max_retries=row["max_retries"],
            execute_at=row["execute_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            dedupe_key=row["dedupe_key"],
            started_at=row["started_at"],
            heartbeat_at=row["heartbeat_at"],
            completed_at=row["completed_at"],
            failed_at=row["failed_at"],
            worker_id=row["worker_id"],
            last_error=row["last_error"],
            execution_time=row["execution_time"],
            result=json.loads(row["result"]) if row["result"] else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "payload": self.payload,
            "priority": self.priority.name.lower(),
            "status": self.status.value,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "execute_at": self.execute_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "dedupe_key": self.dedupe_key,
            "started_at": self.started_at,
            "heartbeat_at": self.heartbeat_at,
            "completed_at": self.completed_at,
            "failed_at": self.failed_at,
            "worker_id": self.worker_id,
            "last_error": self.last_error,
            "execution_time": self.execution_time,
            "result": self.result,
        }


@dataclass
class BulkItemResult:
    index: int
    job_id: int | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.job_id is not None


@dataclass
class BulkEnqueueResult:
    items: list[BulkItemResult] = field(default_factory=list)

    @property
    def job_ids(self) -> list[int]:
        return [i.job_id for i in self.items if i.job_id is not None]

    @property
    def enqueued_count(self) -> int:
        return len(self.job_ids)

    @property
    def failed_count(self) -> int:
        return len(self.items) - self.enqueued_count

    @property
    def success(self) -> bool:
        return self.failed_count == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "enqueued_count": self.enqueued_count,
            "failed_count": self.failed_count,
            "results": [
                {"index": i.index, "success": i.success, "job_id": i.job_id, "error": i.error}
                for i in self.items
            ],
        }


# ── Queue ────────────────────────────────────────────────────────────────────

_FINISHED = (JobStatus.COMPLETED.value, JobStatus.CANCELLED.value, JobStatus.FAILED.value)
_ACTIVE = (JobStatus.PENDING.value, JobStatus.PROCESSING.value)


class JobQueue(SQLiteStore):
    """Priority job queue shared by schedulers and any number of workers."""

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS jobs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            job_type TEXT NOT NULL,
            payload TEXT NOT NULL DEFAULT '{}',
            priority INTEGER NOT NULL DEFAULT 1,
            status TEXT NOT NULL DEFAULT 'pending',
            dedupe_key TEXT,
            retry_count INTEGER NOT NULL DEFAULT 0,
            max_retries INTEGER NOT NULL DEFAULT 3,
            execute_at REAL NOT NULL,
            created_at REAL NOT NULL,
            updated_at REAL NOT NULL,
            started_at REAL,
            heartbeat_at REAL,
            completed_at REAL,
            failed_at REAL,
            worker_id TEXT,
            last_error TEXT,
            execution_time REAL,
            result TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_jobs_claim
            ON jobs (status, priority DESC, created_at, id);

        CREATE INDEX IF NOT EXISTS idx_jobs_dedupe
            ON jobs (job_type, dedupe_key, status);
    """

    CLAIM_ATTEMPTS = 5

    def __init__(
        self,
        db_path: Path | str | None = None,
        retry_policy: RetryPolicy | None = None,
        job_timeout: float = 300,
        dead_letter: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.retry_policy = retry_policy or RetryPolicy(max_retries=3, delay=60, backoff="exponential")
        self.job_timeout = job_timeout
        self.dead_letter = dead_letter
        super().__init__(db_path, clock)

    # ── Enqueue ───────────────────────────────────────────────────────────

    def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any] | None = None,
        priority: JobPriority | int | str = JobPriority.NORMAL,
        delay_seconds: float = 0,
        max_retries: int | None = None,
        dedupe_key: str | None = None,
    ) -> int:
        """Insert a pending job and return its id."""
        row = self._prepare(job_type, payload, priority, delay_seconds, max_retries, dedupe_key)
        with self._conn() as conn:
            job_id = self._insert(conn, row)
        self._log("enqueued", job_id=job_id, type=job_type, priority=row["priority"],
                  delay=delay_seconds)
        return job_id

    def enqueue_unique(
        self,
        job_type: str,
        payload: dict[str, Any] | None,
        dedupe_key: str,
        priority: JobPriority | int | str = JobPriority.NORMAL,
        delay_seconds: float = 0,
        max_retries: int | None = None,
    ) -> int | None:
        """Enqueue unless a pending/processing job with the same type and key exists.

        Returns the new job id, or ``None`` when skipped. The check and the
        insert happen under one write lock.
        """
        row = self._prepare(job_type, payload, priority, delay_seconds, max_retries, dedupe_key)
        with self._transaction() as conn:
            existing = conn.execute(
                "SELECT id FROM jobs WHERE job_type = ? AND dedupe_key = ? "
                "AND status IN (?, ?) LIMIT 1",
                (job_type, dedupe_key, *_ACTIVE),
            ).fetchone()
            if existing is not None:
                logger.debug("Skipping %s/%s: job %d still active", job_type, dedupe_key, existing["id"])
                return None
            job_id = self._insert(conn, row)
        self._log("enqueued", job_id=job_id, type=job_type, priority=row["priority"],
                  dedupe_key=dedupe_key, delay=delay_seconds)
        return job_id

    def enqueue_bulk(self, jobs: Iterable[dict[str, Any]]) -> BulkEnqueueResult:
        """Enqueue many jobs; one bad item does not abort the rest.

        Each item is a dict with ``type`` and optional ``payload``,
        ``priority``, ``delay_seconds``, ``max_retries``, ``dedupe_key``.
        """
        result = BulkEnqueueResult()
        for index, entry in enumerate(jobs):
            item = BulkItemResult(index=index)
            try:
                item.job_id = self.enqueue(
                    entry["type"],
                    entry.get("payload"),
                    priority=entry.get("priority", JobPriority.NORMAL),
                    delay_seconds=entry.get("delay_seconds", 0),
                    max_retries=entry.get("max_retries"),
                    dedupe_key=entry.get("dedupe_key"),
                )
            except (KeyError, TypeError, ValueError) as e:
                item.error = str(e) if not isinstance(e, KeyError) else f"Missing field: {e}"
                logger.warning("Bulk enqueue item %d rejected: %s", index, item.error)
            result.items.append(item)
        return result

    def _prepare(
        self,
        job_type: str,
        payload: dict[str, Any] | None,
        priority: JobPriority | int | str,
        delay_seconds: float,
        max_retries: int | None,
        dedupe_key: str | None,
    ) -> dict[str, Any]:
        if not job_type:
            raise ValueError("Job type is required")
        if delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")
        now = self._clock()
        return {
            "job_type": job_type,
            "payload": json.dumps(payload or {}),
            "priority": int(JobPriority.parse(priority)),
            "dedupe_key": dedupe_key,
            "max_retries": self.retry_policy.max_retries if max_retries is None else max_retries,
            "execute_at": now + delay_seconds,
            "created_at": now,
            "updated_at": now,
        }

    @staticmethod
    def _insert(conn: sqlite3.Connection, row: dict[str, Any]) -> int:
        cur = conn.execute(
            "INSERT INTO jobs (job_type, payload, priority, status, dedupe_key, max_retries, "
            "execute_at, created_at, updated_at) "
            "VALUES (:job_type, :payload, :priority, 'pending', :dedupe_key, :max_retries, "
            ":execute_at, :created_at, :updated_at)",
            row,
        )
        return cur.lastrowid

    # ── Claim / complete / fail ───────────────────────────────────────────

    def claim(self, worker_id: str | None = None) -> Job | None:
        """Atomically take the best eligible pending job, or return ``None``.

        Eligible: pending and ``execute_at <= now``. Best: highest priority,
        then oldest ``created_at``.
        """
        worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        with self._conn() as conn:
            for _ in range(self.CLAIM_ATTEMPTS):
                now = self._clock()
                row = conn.execute(
                    "SELECT id FROM jobs WHERE status = 'pending' AND execute_at <= ? "
                    "ORDER BY priority DESC, created_at ASC, id ASC LIMIT 1",
                    (now,),
                ).fetchone()
                if row is None:
                    return None
                cur = conn.execute(
                    "UPDATE jobs SET status = 'processing', worker_id = ?, started_at = ?, "
                    "heartbeat_at = ?, updated_at = ? WHERE id = ? AND status = 'pending'",
                    (worker_id, now, now, now, row["id"]),
                )
                if cur.rowcount == 1:
                    job = self._fetch(conn, row["id"])
                    self._log("claimed", job_id=job.id, type=job.type, worker=worker_id)
                    return job
                logger.debug("Lost claim race for job %d", row["id"])
        return None

    def complete(self, job: Job, result: dict[str, Any] | None = None) -> bool:
        """Mark a claimed job completed. Returns False if this worker no longer owns it."""
        now = self._clock()
        execution_time = now - job.started_at if job.started_at else None
        with self._conn() as conn:
            cur = conn.execute(
                "UPDATE jobs SET status = 'completed', completed_at = ?, updated_at = ?, "
                "execution_time = ?, result = ? "
                "WHERE id = ? AND status = 'processing' AND worker_id = ?",
                (now, now, execution_time, json.dumps(result, default=str) if result is not None else None,
                 job.id, job.worker_id),
            )
        if cur.rowcount != 1:
            logger.warning("Job %d no longer owned by %s, completion ignored", job.id, job.worker_id)
            return False
        self._log("completed", job_id=job.id, type=job.type, execution_time=execution_time)
        return True

    def fail(self, job: Job, error: str) -> JobStatus | None:
        """Record a failed attempt: retry with backoff, or dead-letter.

        Returns the job's new status, or ``None`` if this worker no longer
        owns it.
        """
        now = self._clock()
        if job.retry_count < job.max_retries:
            retry_count = job.retry_count + 1
            delay = self.retry_policy.delay_for(retry_count)
            with self._conn() as conn:
                cur = conn.execute(
                    "UPDATE jobs SET status = 'pending', retry_count = ?, execute_at = ?, "
                    "last_error = ?, worker_id = NULL, started_at = NULL, heartbeat_at = NULL, updated_at = ? "
                    "WHERE id = ? AND status = 'processing' AND worker_id = ?",
                    (retry_count, now + delay, error, now, job.id, job.worker_id),
                )
            new_status = JobStatus.PENDING
            details = {"retry": retry_count, "max_retries": job.max_retries, "delay": delay}
        else:
            new_status = JobStatus.DEAD_LETTER if self.dead_letter else JobStatus.FAILED
            with self._conn() as conn:
                cur = conn.execute(
                    "UPDATE jobs SET status = ?, failed_at = ?, last_error = ?, updated_at = ? "
                    "WHERE id = ? AND status = 'processing' AND worker_id = ?",
                    (new_status.value, now, error, now, job.id, job.worker_id),
                )
            details = {"retries": job.retry_count}
        if cur.rowcount != 1:
            logger.warning("Job %d no longer owned by %s, failure ignored", job.id, job.worker_id)
            return None
        action = "retry_scheduled" if new_status is JobStatus.PENDING else new_status.value
        self._log(action, job_id=job.id, type=job.type, error=error, **details)
        return new_status

    def heartbeat(self, job: Job) -> bool:
        """Mark a claimed job as still alive. Returns False once ownership is lost."""
        now = self._clock()
        with self._conn() as conn:
            cur = conn.execute(
                "UPDATE jobs SET heartbeat_at = ?, updated_at = ? "
                "WHERE id = ? AND status = 'processing' AND worker_id = ?",
                (now, now, job.id, job.worker_id),
            )
        if cur.rowcount != 1:
            return False
        job.heartbeat_at = now
        return True

    # ── Maintenance ───────────────────────────────────────────────────────

    def reset_stale_jobs(self, job_timeout: float | None = None) -> int:
        """Return processing jobs with no heartbeat within the timeout to pending."""
        timeout = self.job_timeout if job_timeout is None else job_timeout
        now = self._clock()
        with self._conn() as conn:
            cur = conn.execute(
                "UPDATE jobs SET status = 'pending', worker_id = NULL, started_at = NULL, "
                "heartbeat_at = NULL, updated_at = ? "
                "WHERE status = 'processing' AND COALESCE(heartbeat_at, started_at) < ?",
                (now, now - timeout),
            )
        if cur.rowcount:
            self._log("stale_reset", count=cur.rowcount, timeout=timeout)
        return cur.rowcount

    def cleanup_completed_jobs(self, retention_seconds: float = 86400, include_dead_letter: bool = False) -> int:
        """Delete finished jobs last touched at least ``retention_seconds`` ago."""
        statuses = list(_FINISHED)
        if include_dead_letter:
            statuses.append(JobStatus.DEAD_LETTER.value)
        placeholders = ", ".join("?" for _ in statuses)
        cutoff = self._clock() - retention_seconds
        with self._conn() as conn:
            cur = conn.execute(
                f"DELETE FROM jobs WHERE status IN ({placeholders}) AND updated_at <= ?",
                (*statuses, cutoff),
            )
        if cur.rowcount:
            self._log("cleanup", deleted=cur.rowcount, retention=retention_seconds)
        return cur.rowcount

    def cancel_job(self, job_id: int) -> Job:
        """Cancel a pending job. Raises ``InvalidStateError`` for any other status."""
        now = self._clock()
        with self._conn() as conn:
            job = self._fetch(conn, job_id)
            if job.status is not JobStatus.PENDING:
                raise InvalidStateError(f"Cannot cancel job {job_id} in status {job.status.value}")
            cur = conn.execute(
                "UPDATE jobs SET status = 'cancelled', updated_at = ? WHERE id = ? AND status = 'pending'",
                (now, job_id),
            )
            if cur.rowcount != 1:
                current = self._fetch(conn, job_id)
                raise InvalidStateError(f"Cannot cancel job {job_id} in status {current.status.value}")
            job = self._fetch(conn, job_id)
        self._log("cancelled", job_id=job_id, type=job.type)
        return job

    def requeue(self, job_id: int) -> Job:
        """Put a dead-lettered or failed job back to pending with a fresh retry budget."""
        now = self._clock()
        with self._conn() as conn:
            job = self._fetch(conn, job_id)
            if job.status not in (JobStatus.DEAD_LETTER, JobStatus.FAILED):
                raise InvalidStateError(f"Cannot requeue job {job_id} in status {job.status.value}")
            cur = conn.execute(
                "UPDATE jobs SET status = 'pending', retry_count = 0, execute_at = ?, "
                "failed_at = NULL, worker_id = NULL, started_at = NULL, heartbeat_at = NULL, updated_at = ? "
                "WHERE id = ? AND status IN ('dead_letter', 'failed')",
                (now, now, job_id),
            )
            if cur.rowcount != 1:
                raise InvalidStateError(f"Job {job_id} changed state during requeue")
            job = self._fetch(conn, job_id)
        self._log("requeued", job_id=job_id, type=job.type)
        return job

    # ── Queries ───────────────────────────────────────────────────────────

    def get(self, job_id: int) -> Job:
        with self._conn() as conn:
            return self._fetch(conn, job_id)

    def list_jobs(
        self,
        status: JobStatus | str | None = None,
        job_type: str | None = None,
        limit: int = 100,
    ) -> list[Job]:
        """Jobs newest-first, optionally filtered."""
        clauses, params = [], []
        if status is not None:
            clauses.append("status = ?")
            params.append(JobStatus(status).value)
        if job_type:
            clauses.append("job_type = ?")
            params.append(job_type)
        where = f"WHERE {' AND '.join(clauses)} " if clauses else ""
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM jobs {where}ORDER BY updated_at DESC, id DESC LIMIT ?",
                (*params, limit),
            ).fetchall()
        return [Job.from_row(r) for r in rows]

    def dead_letters(self, limit: int = 100) -> list[Job]:
        return self.list_jobs(JobStatus.DEAD_LETTER, limit=limit)

    def has_active_job(self, job_type: str, dedupe_key: str) -> bool:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT 1 FROM jobs WHERE job_type = ? AND dedupe_key = ? AND status IN (?, ?) LIMIT 1",
                (job_type, dedupe_key, *_ACTIVE),
            ).fetchone()
        return row is not None

    def statistics(self) -> dict[str, Any]:
        """Queue depth by status and type, plus average execution time."""
        with self._conn() as conn:
            by_status = {
                r["status"]: r["n"]
                for r in conn.execute("SELECT status, COUNT(*) AS n FROM jobs GROUP BY status")
            }
            by_type = {
                r["job_type"]: r["n"]
                for r in conn.execute(
                    "SELECT job_type, COUNT(*) AS n FROM jobs WHERE status IN (?, ?) GROUP BY job_type",
                    _ACTIVE,
                )
            }
            avg = conn.execute(
                "SELECT AVG(execution_time) AS a FROM jobs WHERE status = 'completed'"
            ).fetchone()["a"]
            oldest = conn.execute(
                "SELECT MIN(created_at) AS t FROM jobs WHERE status = 'pending'"
            ).fetchone()["t"]
        return {
            "by_status": {s.value: by_status.get(s.value, 0) for s in JobStatus},
            "active_by_type": by_type,
            "total": sum(by_status.values()),
            "avg_execution_time": round(avg, 3) if avg is not None else None,
            "oldest_pending_age": round(self._clock() - oldest, 1) if oldest is not None else None,
        }

    # ── Helpers ───────────────────────────────────────────────────────────

    @staticmethod
    def _fetch(conn: sqlite3.Connection, job_id: int) -> Job:
        row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        if row is None:
            raise JobNotFoundError(job_id)
        return Job.from_row(row)

    @staticmethod
    def _log(action: str, **context: Any) -> None:
        logger.info("queue.%s %s", action, json.dumps(context, default=str, sort_keys=True))
