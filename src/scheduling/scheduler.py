"""Scan scheduler — enqueues scan jobs for targets whose next run is due.

A target is never enqueued while it still has a pending or processing scan
job, and its next run time only moves forward after a successful enqueue,
so a failed pass is retried on the next tick.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from src.jobs.handlers import SCAN_JOB
from src.jobs.queue import JobPriority, JobQueue
from src.targets.registry import Target, TargetRegistry

from .store import ScheduleRecord, ScheduleStore

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


@dataclass
class SchedulingReport:
    due: int = 0
    enqueued: dict[str, int] = field(default_factory=dict)  # target_id -> job_id
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "due": self.due,
            "enqueued": self.enqueued,
            "skipped": self.skipped,
            "failed": self.failed,
            "duration_ms": self.duration_ms,
        }


class ScanScheduler:
    """Periodic pass over the target registry."""

    def __init__(
        self,
        targets: TargetRegistry,
        schedules: ScheduleStore,
        queue: JobQueue,
        interval_seconds: float = 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.targets = targets
        self.schedules = schedules
        self.queue = queue
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self.last_report: SchedulingReport | None = None

    def find_due_targets(self, now: float | None = None) -> list[Target]:
        """Enabled targets whose next run time has passed, highest priority first."""
        return [t for t, _ in self._due(self._clock() if now is None else now)]

    def _due(self, now: float) -> list[tuple[Target, ScheduleRecord]]:
        enabled = {t.id: t for t in self.targets.enabled()}
        # Targets never scheduled before are due immediately.
        for target in enabled.values():
            self.schedules.ensure(target.id, target.scan_interval_days, now)

        pairs = [(enabled[r.target_id], r) for r in self.schedules.due(now) if r.target_id in enabled]
        pairs.sort(key=lambda p: (-JobPriority.parse(p[0].priority), p[1].next_run_at))
        return pairs

    def run_scheduling_pass(self, now: float | None = None) -> SchedulingReport:
        now = self._clock() if now is None else now
        t0 = time.perf_counter()
        report = SchedulingReport()
        due = self._due(now)
        report.due = len(due)

        for target, record in due:
            try:
                job_id = self.queue.enqueue_unique(
                    SCAN_JOB,
                    {"target_id": target.id},
                    dedupe_key=target.id,
                    priority=target.priority,
                )
                if job_id is None:
                    logger.info("Target %s still has a scan in flight, skipping", target.id)
                    report.skipped.append(target.id)
                    continue

                next_run = now + target.scan_interval_days * SECONDS_PER_DAY
                if not self.schedules.advance(target.id, record.next_run_at, next_run, job_id):
                    logger.warning("Schedule for %s changed concurrently", target.id)
                report.enqueued[target.id] = job_id
            except Exception as e:
                logger.exception("Failed to schedule scan for %s", target.id)
                report.failed[target.id] = str(e)

        report.duration_ms = round((time.perf_counter() - t0) * 1000, 1)
        self.last_report = report
        if report.due:
            logger.info(
                "Scheduling pass: %d due, %d enqueued, %d skipped, %d failed",
                report.due, len(report.enqueued), len(report.skipped), len(report.failed),
            )
        return report

    # ── Background loop ───────────────────────────────────────────────────

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="scan-scheduler")
        logger.info("Scan scheduler started (every %ss)", self.interval_seconds)

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        logger.info("Scan scheduler stopped")

    async def _loop(self) -> None:
        loop = asyncio.get_running_loop()
        while self._running:
            try:
                await loop.run_in_executor(None, self.run_scheduling_pass)
                await asyncio.sleep(self.interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Scheduler loop error")
                await asyncio.sleep(min(self.interval_seconds, 60))

    def status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "interval_seconds": self.interval_seconds,
            "last_report": self.last_report.to_dict() if self.last_report else None,
        }
