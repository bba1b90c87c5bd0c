"""Escalation records — at most one active escalation per target."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from src.storage import SQLiteStore

logger = logging.getLogger(__name__)


class EscalationState(str, Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"


@dataclass
class Escalation:
    id: int
    target_id: str
    level: int
    trigger_reason: str
    status: EscalationState
    cooldown_until: float
    created_at: float
    updated_at: float
    scan_id: int | None = None
    resolved_at: float | None = None
    resolution_reason: str | None = None
    notifications_sent: bool = False
    notification_results: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Any) -> Escalation:
        return cls(
            id=row["id"],
            target_id=row["target_id"],
            level=row["level"],
            trigger_reason=row["trigger_reason"],
            status=EscalationState(row["status"]),
            cooldown_until=row["cooldown_until"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            scan_id=row["scan_id"],
            resolved_at=row["resolved_at"],
            resolution_reason=row["resolution_reason"],
            notifications_sent=bool(row["notifications_sent"]),
            notification_results=json.loads(row["notification_results"] or "{}"),
        )

    def in_cooldown(self, now: float) -> bool:
        return now < self.cooldown_until

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "target_id": self.target_id,
            "level": self.level,
            "trigger_reason": self.trigger_reason,
            "status": self.status.value,
            "cooldown_until": self.cooldown_until,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "scan_id": self.scan_id,
            "resolved_at": self.resolved_at,
            "resolution_reason": self.resolution_reason,
            "notifications_sent": self.notifications_sent,
            "notification_results": self.notification_results,
        }


class EscalationStore(SQLiteStore):
    SCHEMA = """
        CREATE TABLE IF NOT EXISTS escalations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            target_id TEXT NOT NULL,
            level INTEGER NOT NULL,
            trigger_reason TEXT NOT NULL DEFAULT '',
            status TEXT NOT NULL DEFAULT 'active',
            cooldown_until REAL NOT NULL,
            scan_id INTEGER,
            resolved_at REAL,
            resolution_reason TEXT,
            notifications_sent INTEGER NOT NULL DEFAULT 0,
            notification_results TEXT NOT NULL DEFAULT '{}',
            created_at REAL NOT NULL,
            updated_at REAL NOT NULL
        );

        CREATE UNIQUE INDEX IF NOT EXISTS idx_escalations_one_active
            ON escalations (target_id) WHERE status = 'active';

        CREATE INDEX IF NOT EXISTS idx_escalations_target
            ON escalations (target_id, created_at DESC);
    """

    def get(self, escalation_id: int) -> Escalation | None:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM escalations WHERE id = ?", (escalation_id,)).fetchone()
        return Escalation.from_row(row) if row else None

    def get_active(self, target_id: str) -> Escalation | None:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM escalations WHERE target_id = ? AND status = 'active'",
                (target_id,),
            ).fetchone()
        return Escalation.from_row(row) if row else None

    def create(
        self,
        target_id: str,
        level: int,
        trigger_reason: str,
        cooldown_until: float,
        scan_id: int | None = None,
    ) -> Escalation:
        now = self._clock()
        with self._conn() as conn:
            cur = conn.execute(
                "INSERT INTO escalations "
                "(target_id, level, trigger_reason, status, cooldown_until, scan_id, created_at, updated_at) "
                "VALUES (?, ?, ?, 'active', ?, ?, ?, ?)",
                (target_id, level, trigger_reason, cooldown_until, scan_id, now, now),
            )
            escalation_id = cur.lastrowid
        logger.info("escalation.created id=%d target=%s level=%d reason=%s",
                    escalation_id, target_id, level, trigger_reason)
        return self.get(escalation_id)

    def raise_level(
        self,
        escalation_id: int,
        level: int,
        trigger_reason: str,
        cooldown_until: float,
        scan_id: int | None = None,
    ) -> Escalation:
        now = self._clock()
        with self._conn() as conn:
            conn.execute(
                "UPDATE escalations SET level = ?, trigger_reason = ?, cooldown_until = ?, "
                "scan_id = ?, updated_at = ? WHERE id = ? AND status = 'active'",
                (level, trigger_reason, cooldown_until, scan_id, now, escalation_id),
            )
        logger.info("escalation.raised id=%d level=%d reason=%s", escalation_id, level, trigger_reason)
        return self.get(escalation_id)

    def record_notifications(self, escalation_id: int, results: dict[str, Any]) -> None:
        sent = bool(results) and all(r.get("success") for r in results.values())
        with self._conn() as conn:
            conn.execute(
                "UPDATE escalations SET notification_results = ?, notifications_sent = ?, "
                "updated_at = ? WHERE id = ?",
                (json.dumps(results, default=str), int(sent), self._clock(), escalation_id),
            )

    def resolve(self, target_id: str, reason: str) -> Escalation | None:
        """Resolve the active escalation for ``target_id``; ``None`` if there was none."""
        now = self._clock()
        with self._conn() as conn:
            row = conn.execute(
                "SELECT id FROM escalations WHERE target_id = ? AND status = 'active'",
                (target_id,),
            ).fetchone()
            if row is None:
                return None
            conn.execute(
                "UPDATE escalations SET status = 'resolved', resolved_at = ?, resolution_reason = ?, "
                "updated_at = ? WHERE id = ? AND status = 'active'",
                (now, reason, now, row["id"]),
            )
        logger.info("escalation.resolved id=%d target=%s reason=%s", row["id"], target_id, reason)
        return self.get(row["id"])

    def list_active(self) -> list[Escalation]:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT * FROM escalations WHERE status = 'active' ORDER BY level DESC, created_at"
            ).fetchall()
        return [Escalation.from_row(r) for r in rows]

    def history(self, target_id: str, days: int = 30) -> list[Escalation]:
        since = self._clock() - days * 86400
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT * FROM escalations WHERE target_id = ? AND created_at >= ? "
                "ORDER BY created_at DESC, id DESC",
                (target_id, since),
            ).fetchall()
        return [Escalation.from_row(r) for r in rows]

    def statistics(self, days: int = 7) -> dict[str, Any]:
        since = self._clock() - days * 86400
        with self._conn() as conn:
            total = conn.execute(
                "SELECT COUNT(*) AS n FROM escalations WHERE created_at >= ?", (since,)
            ).fetchone()["n"]
            active = conn.execute(
                "SELECT COUNT(*) AS n FROM escalations WHERE status = 'active'"
            ).fetchone()["n"]
            by_level = {
                r["level"]: r["n"]
                for r in conn.execute(
                    "SELECT level, COUNT(*) AS n FROM escalations WHERE created_at >= ? GROUP BY level",
                    (since,),
                )
            }
            avg = conn.execute(
                "SELECT AVG(resolved_at - created_at) AS a FROM escalations "
                "WHERE status = 'resolved' AND created_at >= ?",
                (since,),
            ).fetchone()["a"]
            targets = conn.execute(
                "SELECT COUNT(DISTINCT target_id) AS n FROM escalations WHERE status = 'active'"
            ).fetchone()["n"]
        return {
            "days": days,
            "total_escalations": total,
            "active_escalations": active,
            "by_level": by_level,
            "avg_resolution_time_hours": round((avg or 0) / 3600, 2),
            "targets_with_escalations": targets,
        }
