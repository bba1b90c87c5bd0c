"""Tests for the durable job queue."""

from __future__ import annotations

import threading

import pytest

from src.engine.retry import RetryPolicy
from src.errors import InvalidStateError, JobNotFoundError
from src.jobs.queue import JobPriority, JobQueue, JobStatus


class TestEnqueue:
    def test_enqueue_defaults(self, queue, clock) -> None:
        job_id = queue.enqueue("scan", {"target_id": "site"})
        job = queue.get(job_id)
        assert job.type == "scan"
        assert job.payload == {"target_id": "site"}
        assert job.status is JobStatus.PENDING
        assert job.priority is JobPriority.NORMAL
        assert job.max_retries == 3
        assert job.retry_count == 0
        assert job.execute_at == clock()

    def test_priority_parsing(self, queue) -> None:
        assert queue.get(queue.enqueue("scan", priority="urgent")).priority is JobPriority.URGENT
        assert queue.get(queue.enqueue("scan", priority=0)).priority is JobPriority.LOW
        with pytest.raises(ValueError):
            queue.enqueue("scan", priority="critical")

    def test_requires_type(self, queue) -> None:
        with pytest.raises(ValueError):
            queue.enqueue("")

    def test_bulk_partial_failure(self, queue) -> None:
        result = queue.enqueue_bulk([
            {"type": "scan", "payload": {"target_id": "a"}},
            {"payload": {"target_id": "b"}},
            {"type": "scan", "priority": "bogus"},
            {"type": "notify", "priority": "high"},
        ])
        assert result.enqueued_count == 2
        assert result.failed_count == 2
        assert not result.success
        assert [i.success for i in result.items] == [True, False, False, True]
        assert "type" in result.items[1].error
        assert result.to_dict()["results"][0]["job_id"] == result.job_ids[0]

    def test_enqueue_unique_skips_active(self, queue) -> None:
        first = queue.enqueue_unique("scan", {"target_id": "a"}, dedupe_key="a")
        assert first is not None
        assert queue.enqueue_unique("scan", {"target_id": "a"}, dedupe_key="a") is None
        assert queue.enqueue_unique("scan", {"target_id": "b"}, dedupe_key="b") is not None
        assert queue.has_active_job("scan", "a")

    def test_enqueue_unique_after_completion(self, queue) -> None:
        queue.enqueue_unique("scan", {}, dedupe_key="a")
        job = queue.claim("w1")
        queue.complete(job)
        assert not queue.has_active_job("scan", "a")
        assert queue.enqueue_unique("scan", {}, dedupe_key="a") is not None


class TestClaim:
    def test_priority_then_age(self, queue, clock) -> None:
        a = queue.enqueue("scan", {"n": "A"}, priority="normal")
        clock.advance(1)
        b = queue.enqueue("scan", {"n": "B"}, priority="high")
        clock.advance(1)
        c = queue.enqueue("scan", {"n": "C"}, priority="normal")
        assert [queue.claim("w").id for _ in range(3)] == [b, a, c]
        assert queue.claim("w") is None

    def test_delayed_job_not_claimable_yet(self, queue, clock) -> None:
        queue.enqueue("scan", delay_seconds=30)
        assert queue.claim("w") is None
        clock.advance(30)
        assert queue.claim("w") is not None

    def test_claim_sets_processing(self, queue, clock) -> None:
        queue.enqueue("scan")
        job = queue.claim("worker-1")
        assert job.status is JobStatus.PROCESSING
        assert job.worker_id == "worker-1"
        assert job.started_at == clock()

    def test_concurrent_claims_are_exclusive(self, queue) -> None:
        for i in range(20):
            queue.enqueue("scan", {"i": i})
        claimed: list[int] = []
        lock = threading.Lock()

        def drain(worker_id: str) -> None:
            while (job := queue.claim(worker_id)) is not None:
                with lock:
                    claimed.append(job.id)

        threads = [threading.Thread(target=drain, args=(f"w{i}",)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert sorted(claimed) == sorted(set(claimed))
        assert len(claimed) == 20


class TestCompleteAndFail:
    def test_complete(self, queue, clock) -> None:
        queue.enqueue("scan")
        job = queue.claim("w")
        clock.advance(2.5)
        assert queue.complete(job, {"scan_id": 7})
        done = queue.get(job.id)
        assert done.status is JobStatus.COMPLETED
        assert done.execution_time == pytest.approx(2.5)
        assert done.result == {"scan_id": 7}

    def test_complete_requires_ownership(self, queue) -> None:
        queue.enqueue("scan")
        job = queue.claim("w")
        queue.reset_stale_jobs(job_timeout=-1)
        reclaimed = queue.claim("w2")
        assert not queue.complete(job)
        assert queue.get(job.id).worker_id == "w2"
        assert queue.complete(reclaimed)

    def test_fail_schedules_retry_with_backoff(self, queue, clock) -> None:
        queue.enqueue("scan")
        job = queue.claim("w")
        assert queue.fail(job, "boom") is JobStatus.PENDING
        retried = queue.get(job.id)
        assert retried.retry_count == 1
        assert retried.execute_at == clock() + 60
        assert retried.last_error == "boom"
        assert retried.worker_id is None

        clock.advance(60)
        job = queue.claim("w")
        queue.fail(job, "boom again")
        assert queue.get(job.id).execute_at == clock() + 120

    def test_dead_letter_after_retries_exhausted(self, queue, clock) -> None:
        job_id = queue.enqueue("scan", max_retries=2)
        statuses = []
        for _ in range(3):
            clock.advance(10_000)
            job = queue.claim("w")
            statuses.append(queue.fail(job, "always broken"))
        assert statuses == [JobStatus.PENDING, JobStatus.PENDING, JobStatus.DEAD_LETTER]
        dead = queue.get(job_id)
        assert dead.status is JobStatus.DEAD_LETTER
        assert dead.retry_count == 2
        assert dead.failed_at == clock()
        assert [j.id for j in queue.dead_letters()] == [job_id]
        clock.advance(10_000)
        assert queue.claim("w") is None

    def test_failed_status_when_dead_letter_disabled(self, db_path, clock) -> None:
        q = JobQueue(db_path, RetryPolicy(max_retries=0, delay=1), dead_letter=False, clock=clock)
        q.enqueue("scan")
        assert q.fail(q.claim("w"), "nope") is JobStatus.FAILED


class TestMaintenance:
    def test_reset_stale_jobs(self, queue, clock) -> None:
        queue.enqueue("scan")
        job = queue.claim("crashed-worker")
        clock.advance(100)
        assert queue.reset_stale_jobs(job_timeout=300) == 0
        clock.advance(201)
        assert queue.reset_stale_jobs(job_timeout=300) == 1
        reset = queue.get(job.id)
        assert reset.status is JobStatus.PENDING
        assert reset.worker_id is None
        assert reset.started_at is None
        assert queue.claim("w2").id == job.id

    def test_heartbeat_keeps_long_job_claimed(self, queue, clock) -> None:
        queue.enqueue("scan")
        job = queue.claim("worker-a")
        for _ in range(4):
            clock.advance(92)
            assert queue.heartbeat(job)
        assert job.heartbeat_at == clock()
        assert queue.reset_stale_jobs() == 0
        assert queue.claim("worker-b") is None
        assert queue.get(job.id).worker_id == "worker-a"

        clock.advance(301)
        assert queue.reset_stale_jobs() == 1
        assert queue.get(job.id).heartbeat_at is None

    def test_heartbeat_after_reclaim_is_rejected(self, queue, clock) -> None:
        queue.enqueue("scan")
        job = queue.claim("worker-a")
        clock.advance(301)
        queue.reset_stale_jobs()
        queue.claim("worker-b")
        assert not queue.heartbeat(job)

    def test_cancel_pending(self, queue) -> None:
        job_id = queue.enqueue("scan")
        assert queue.cancel_job(job_id).status is JobStatus.CANCELLED

    def test_cancel_processing_rejected(self, queue) -> None:
        queue.enqueue("scan")
        job = queue.claim("w")
        with pytest.raises(InvalidStateError):
            queue.cancel_job(job.id)
        assert queue.get(job.id).status is JobStatus.PROCESSING

    def test_cancel_unknown(self, queue) -> None:
        with pytest.raises(JobNotFoundError):
            queue.cancel_job(999)

    def test_cleanup(self, queue, clock) -> None:
        done = queue.enqueue("scan")
        queue.complete(queue.claim("w"))
        cancelled = queue.enqueue("scan")
        queue.cancel_job(cancelled)
        dead = queue.enqueue("scan", max_retries=0)
        queue.fail(queue.claim("w"), "x")
        pending = queue.enqueue("scan", delay_seconds=3600)
        queue.enqueue("scan")
        processing = queue.claim("w").id

        assert queue.cleanup_completed_jobs(retention_seconds=0) == 2
        remaining = {j.id for j in queue.list_jobs()}
        assert done not in remaining and cancelled not in remaining
        assert {dead, pending, processing} <= remaining

        assert queue.cleanup_completed_jobs(retention_seconds=0, include_dead_letter=True) == 1

    def test_cleanup_respects_retention(self, queue, clock) -> None:
        queue.enqueue("scan")
        queue.complete(queue.claim("w"))
        assert queue.cleanup_completed_jobs(retention_seconds=3600) == 0
        clock.advance(3600)
        assert queue.cleanup_completed_jobs(retention_seconds=3600) == 1

    def test_requeue_dead_letter(self, queue, clock) -> None:
        job_id = queue.enqueue("scan", max_retries=0)
        queue.fail(queue.claim("w"), "x")
        job = queue.requeue(job_id)
        assert job.status is JobStatus.PENDING
        assert job.retry_count == 0
        assert queue.claim("w").id == job_id

    def test_requeue_pending_rejected(self, queue) -> None:
        with pytest.raises(InvalidStateError):
            queue.requeue(queue.enqueue("scan"))


class TestQueries:
    def test_list_jobs_filters(self, queue) -> None:
        queue.enqueue("scan")
        queue.enqueue("notify")
        assert [j.type for j in queue.list_jobs(job_type="notify")] == ["notify"]
        assert len(queue.list_jobs(status="pending")) == 2
        assert queue.list_jobs(status=JobStatus.COMPLETED) == []

    def test_statistics(self, queue, clock) -> None:
        queue.enqueue("scan")
        queue.enqueue("scan")
        queue.enqueue("notify")
        job = queue.claim("w")
        clock.advance(4)
        queue.complete(job)
        stats = queue.statistics()
        assert stats["by_status"]["pending"] == 2
        assert stats["by_status"]["completed"] == 1
        assert stats["by_status"]["dead_letter"] == 0
        assert stats["total"] == 3
        assert stats["avg_execution_time"] == 4.0
        assert stats["oldest_pending_age"] == 4.0

    def test_job_to_dict(self, queue) -> None:
        d = queue.get(queue.enqueue("scan", {"target_id": "x"}, priority="high")).to_dict()
        assert d["priority"] == "high"
        assert d["status"] == "pending"
        assert d["payload"] == {"target_id": "x"}
