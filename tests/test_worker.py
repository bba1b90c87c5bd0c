"""Tests for workers and the scan / notify job handlers."""

from __future__ import annotations

import time

import pytest

from src.jobs.handlers import NOTIFY_JOB, SCAN_JOB, NotifyJobHandler, ScanJobHandler
from src.jobs.queue import JobQueue, JobStatus
from src.jobs.worker import Worker, WorkerPool

from conftest import FakeNotifier


class TestWorker:
    def test_run_once_idle(self, queue) -> None:
        assert Worker(queue, {}).run_once() is None

    def test_successful_job_completes(self, queue) -> None:
        seen = []
        worker = Worker(queue, {"echo": lambda job: seen.append(job.payload) or {"ok": True}}, "w1")
        job_id = queue.enqueue("echo", {"x": 1})
        assert worker.run_once().id == job_id
        job = queue.get(job_id)
        assert job.status is JobStatus.COMPLETED
        assert job.result == {"ok": True}
        assert seen == [{"x": 1}]
        assert worker.processed == 1

    def test_missing_handler_fails_job(self, queue) -> None:
        worker = Worker(queue, {}, "w1")
        job_id = queue.enqueue("mystery")
        worker.run_once()
        job = queue.get(job_id)
        assert job.status is JobStatus.PENDING
        assert job.retry_count == 1
        assert job.last_error == "No handler for job type: mystery"
        assert worker.failures == 1

    def test_handler_exception_fails_job(self, queue) -> None:
        def boom(job):
            raise ValueError("bad payload")

        worker = Worker(queue, {"boom": boom}, "w1")
        job_id = queue.enqueue("boom", max_retries=0)
        worker.run_once()
        job = queue.get(job_id)
        assert job.status is JobStatus.DEAD_LETTER
        assert job.last_error == "ValueError: bad payload"

    def test_default_worker_id_unique(self, queue) -> None:
        assert Worker(queue, {}).worker_id != Worker(queue, {}).worker_id

    def test_heartbeat_keeps_long_handler_from_stale_reset(self, queue, clock) -> None:
        seen = []

        def slow_scan(job):
            clock.advance(4 * 92)
            deadline = time.time() + 5
            while queue.get(job.id).heartbeat_at != clock() and time.time() < deadline:
                time.sleep(0.01)
            seen.append(queue.reset_stale_jobs())
            seen.append(queue.claim("worker-b"))
            return {"ok": True}

        worker = Worker(queue, {"slow": slow_scan}, "worker-a", heartbeat_interval=0.01)
        job_id = queue.enqueue("slow")
        worker.run_once()
        assert seen == [0, None]
        job = queue.get(job_id)
        assert job.status is JobStatus.COMPLETED
        assert job.worker_id == "worker-a"


class TestWorkerPool:
    def test_pool_drains_queue(self, db_path) -> None:
        q = JobQueue(db_path)
        for i in range(6):
            q.enqueue("echo", {"i": i})
        pool = WorkerPool(q, {"echo": lambda job: {"i": job.payload["i"]}}, size=3, poll_interval=0.01)
        pool.start()
        try:
            deadline = time.time() + 10
            while time.time() < deadline and q.statistics()["by_status"]["completed"] < 6:
                time.sleep(0.02)
        finally:
            pool.stop(timeout=5)
        assert q.statistics()["by_status"]["completed"] == 6
        assert not pool.running
        assert sum(w["processed"] for w in pool.status()["workers"]) == 6


class TestScanJobHandler:
    def test_scan_records_and_escalates(self, queue, engine, targets, results, evaluator, notifier) -> None:
        handler = ScanJobHandler(engine, targets, results, evaluator)
        queue.enqueue(SCAN_JOB, {"target_id": "site"})
        job = queue.claim("w")
        out = handler(job)
        assert out["status"] == "failed"
        assert out["passed"] == 1 and out["failed"] == 1
        assert out["escalation"]["action"] == "escalation_triggered"
        assert results.list_scans("site")[0]["id"] == out["scan_id"]
        assert notifier.sent

    def test_unknown_target_raises(self, queue, engine, targets, results) -> None:
        handler = ScanJobHandler(engine, targets, results)
        queue.enqueue(SCAN_JOB, {"target_id": "nope"})
        with pytest.raises(LookupError):
            handler(queue.claim("w"))

    def test_escalation_error_does_not_fail_scan(self, queue, engine, targets, results) -> None:
        class BrokenEvaluator:
            def evaluate(self, target, summary):
                raise RuntimeError("escalation store offline")

        handler = ScanJobHandler(engine, targets, results, BrokenEvaluator())
        queue.enqueue(SCAN_JOB, {"target_id": "site"})
        out = handler(queue.claim("w"))
        assert out["escalation"] is None
        assert out["scan_id"] is not None


class TestNotifyJobHandler:
    def _job(self, queue, channel: str):
        queue.enqueue(NOTIFY_JOB, {
            "channel": channel,
            "recipient": "ops@site.test",
            "template_key": "escalation",
            "data": {"target_id": "site"},
        })
        return queue.claim("w")

    def test_delivers(self, queue) -> None:
        notifier = FakeNotifier()
        out = NotifyJobHandler(notifier)(self._job(queue, "email"))
        assert out["success"] is True
        assert notifier.sent[0]["template_key"] == "escalation"

    def test_failed_delivery_raises(self, queue) -> None:
        notifier = FakeNotifier(fail_channels=("email",))
        with pytest.raises(RuntimeError, match="provider down"):
            NotifyJobHandler(notifier)(self._job(queue, "email"))

    def _escalation_job(self, queue, escalation_id: int):
        queue.enqueue(NOTIFY_JOB, {
            "channel": "sms",
            "recipient": "+15550100",
            "template_key": "escalation",
            "data": {"target_id": "site", "escalation_id": escalation_id, "escalation_level": 2},
        }, delay_seconds=30 * 60)

    def test_skips_resolved_escalation(self, queue, escalation_store, clock) -> None:
        escalation = escalation_store.create("site", 2, "consecutive_failures (3 in a row)", clock() + 4 * 3600)
        self._escalation_job(queue, escalation.id)
        escalation_store.resolve("site", "all_checks_passed")
        clock.advance(30 * 60)
        notifier = FakeNotifier()
        out = NotifyJobHandler(notifier, escalation_store)(queue.claim("w"))
        assert out == {"skipped": "resolved", "escalation_id": escalation.id}
        assert notifier.sent == []

    def test_delivers_for_active_escalation(self, queue, escalation_store, clock) -> None:
        escalation = escalation_store.create("site", 2, "consecutive_failures (3 in a row)", clock() + 4 * 3600)
        self._escalation_job(queue, escalation.id)
        clock.advance(30 * 60)
        notifier = FakeNotifier()
        out = NotifyJobHandler(notifier, escalation_store)(queue.claim("w"))
        assert out["success"] is True
        assert notifier.sent[0]["channel"] == "sms"
