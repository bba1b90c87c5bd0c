"""Scan result history — SQLite storage for summaries and per-check outcomes."""

from __future__ import annotations

import json
import logging
from typing import Any

from src.checks.base import CheckOutcome, CheckStatus
from src.engine.aggregator import ScanStatus, ScanSummary
from src.storage import SQLiteStore

logger = logging.getLogger(__name__)


class ResultStore(SQLiteStore):
    """Persists scan summaries; feeds the escalation history queries."""

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS scans (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            target_id TEXT NOT NULL,
            status TEXT NOT NULL,
            total INTEGER NOT NULL DEFAULT 0,
            passed INTEGER NOT NULL DEFAULT 0,
            failed INTEGER NOT NULL DEFAULT 0,
            warnings INTEGER NOT NULL DEFAULT 0,
            errors INTEGER NOT NULL DEFAULT 0,
            average_score REAL,
            duration_ms REAL NOT NULL DEFAULT 0,
            created_at REAL NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_scans_target
            ON scans (target_id, created_at DESC);

        CREATE TABLE IF NOT EXISTS check_outcomes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            scan_id INTEGER NOT NULL REFERENCES scans (id) ON DELETE CASCADE,
            check_name TEXT NOT NULL,
            status TEXT NOT NULL,
            message TEXT NOT NULL DEFAULT '',
            data TEXT NOT NULL DEFAULT '{}',
            score REAL,
            duration_ms REAL NOT NULL DEFAULT 0,
            category TEXT NOT NULL DEFAULT ''
        );

        CREATE INDEX IF NOT EXISTS idx_outcomes_scan
            ON check_outcomes (scan_id);
    """

    def record_scan(self, summary: ScanSummary) -> int:
        """Insert the summary and its outcomes; sets ``summary.scan_id``.

        ``created_at`` is stamped from the store clock so history queries and
        retention share one time source.
        """
        summary.created_at = self._clock()
        with self._transaction() as conn:
            cur = conn.execute(
                "INSERT INTO scans "
                "(target_id, status, total, passed, failed, warnings, errors, "
                "average_score, duration_ms, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    summary.target_id, summary.status.value, summary.total,
                    summary.passed, summary.failed, summary.warnings, summary.errors,
                    summary.average_score, summary.duration_ms, summary.created_at,
                ),
            )
            scan_id = cur.lastrowid
            conn.executemany(
                "INSERT INTO check_outcomes "
                "(scan_id, check_name, status, message, data, score, duration_ms, category) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        scan_id, o.check_name, o.status.value, o.message,
                        json.dumps(o.data, default=str), o.score, o.duration_ms, o.category,
                    )
                    for o in summary.outcomes
                ],
            )
        summary.scan_id = scan_id
        logger.debug("Recorded scan %d for %s (%s)", scan_id, summary.target_id, summary.status.value)
        return scan_id

    def recent_statuses(self, target_id: str, limit: int = 10) -> list[ScanStatus]:
        """Most recent scan statuses for a target, newest first."""
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT status FROM scans WHERE target_id = ? "
                "ORDER BY created_at DESC, id DESC LIMIT ?",
                (target_id, limit),
            ).fetchall()
        return [ScanStatus(r["status"]) for r in rows]

    def count_failed_since(self, target_id: str, since: float) -> int:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM scans "
                "WHERE target_id = ? AND status = ? AND created_at >= ?",
                (target_id, ScanStatus.FAILED.value, since),
            ).fetchone()
        return row["n"]

    def list_scans(self, target_id: str, limit: int = 20) -> list[dict[str, Any]]:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT * FROM scans WHERE target_id = ? "
                "ORDER BY created_at DESC, id DESC LIMIT ?",
                (target_id, limit),
            ).fetchall()
        return [dict(r) for r in rows]

    def get_outcomes(self, scan_id: int) -> list[CheckOutcome]:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT * FROM check_outcomes WHERE scan_id = ? ORDER BY id",
                (scan_id,),
            ).fetchall()
        return [
            CheckOutcome(
                check_name=r["check_name"],
                status=CheckStatus(r["status"]),
                message=r["message"],
                data=json.loads(r["data"] or "{}"),
                score=r["score"],
                duration_ms=r["duration_ms"],
                category=r["category"],
            )
            for r in rows
        ]

    def cleanup_old(self, days: int = 90) -> int:
        """Delete scans (and their outcomes) older than ``days``."""
        cutoff = self._clock() - days * 86400
        with self._transaction() as conn:
            conn.execute(
                "DELETE FROM check_outcomes WHERE scan_id IN "
                "(SELECT id FROM scans WHERE created_at < ?)",
                (cutoff,),
            )
            cur = conn.execute("DELETE FROM scans WHERE created_at < ?", (cutoff,))
        if cur.rowcount:
            logger.info("Cleaned up %d scans older than %d days", cur.rowcount, days)
        return cur.rowcount
