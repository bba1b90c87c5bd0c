"""Schedule records — next-run bookkeeping per target."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from src.storage import SQLiteStore

logger = logging.getLogger(__name__)


@dataclass
class ScheduleRecord:
    target_id: str
    next_run_at: float
    interval_days: float
    last_enqueued_at: float | None = None
    last_job_id: int | None = None
    updated_at: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_id": self.target_id,
            "next_run_at": self.next_run_at,
            "interval_days": self.interval_days,
            "last_enqueued_at": self.last_enqueued_at,
            "last_job_id": self.last_job_id,
            "updated_at": self.updated_at,
        }


class ScheduleStore(SQLiteStore):
    SCHEMA = """
        CREATE TABLE IF NOT EXISTS schedules (
            target_id TEXT PRIMARY KEY,
            next_run_at REAL NOT NULL,
            interval_days REAL NOT NULL,
            last_enqueued_at REAL,
            last_job_id INTEGER,
            updated_at REAL NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_schedules_next
            ON schedules (next_run_at);
    """

    def get(self, target_id: str) -> ScheduleRecord | None:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM schedules WHERE target_id = ?", (target_id,)).fetchone()
        return ScheduleRecord(**dict(row)) if row else None

    def ensure(self, target_id: str, interval_days: float, next_run_at: float) -> None:
        """Create the record if missing; keep the interval in sync with config."""
        now = self._clock()
        with self._conn() as conn:
            conn.execute(
                "INSERT INTO schedules (target_id, next_run_at, interval_days, updated_at) "
                "VALUES (?, ?, ?, ?) "
                "ON CONFLICT (target_id) DO UPDATE SET interval_days = excluded.interval_days "
                "WHERE schedules.interval_days != excluded.interval_days",
                (target_id, next_run_at, interval_days, now),
            )

    def due(self, now: float) -> list[ScheduleRecord]:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT * FROM schedules WHERE next_run_at <= ? ORDER BY next_run_at",
                (now,),
            ).fetchall()
        return [ScheduleRecord(**dict(r)) for r in rows]

    def advance(self, target_id: str, expected_next_run_at: float, new_next_run_at: float, job_id: int) -> bool:
        """Compare-and-set the next run time. False if another scheduler moved it first."""
        now = self._clock()
        with self._conn() as conn:
            cur = conn.execute(
                "UPDATE schedules SET next_run_at = ?, last_enqueued_at = ?, last_job_id = ?, "
                "updated_at = ? WHERE target_id = ? AND next_run_at = ?",
                (new_next_run_at, now, job_id, now, target_id, expected_next_run_at),
            )
        return cur.rowcount == 1

    def list_all(self) -> list[ScheduleRecord]:
        with self._conn() as conn:
            rows = conn.execute("SELECT * FROM schedules ORDER BY next_run_at").fetchall()
        return [ScheduleRecord(**dict(r)) for r in rows]

    def remove(self, target_id: str) -> bool:
        with self._conn() as conn:
            cur = conn.execute("DELETE FROM schedules WHERE target_id = ?", (target_id,))
        return cur.rowcount > 0
