"""Queue workers — claim jobs, dispatch to handlers, report back.

Each worker is a thread with its own id. While a handler runs, a
heartbeat thread keeps the claimed job fresh. A separate sweeper thread
periodically returns stale ``processing`` jobs (from crashed workers) to
``pending``.
"""

from __future__ import annotations

import logging
import os
import socket
import threading
import time
import uuid
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from .queue import Job, JobQueue, JobStatus

logger = logging.getLogger(__name__)

JobHandler = Callable[[Job], "dict[str, Any] | None"]


class Worker:
    """Single claim → handle → complete/fail loop."""

    def __init__(
        self,
        queue: JobQueue,
        handlers: Mapping[str, JobHandler],
        worker_id: str | None = None,
        heartbeat_interval: float | None = None,
    ) -> None:
        self.queue = queue
        self.handlers = handlers
        self.worker_id = worker_id or f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:6]}"
        self.heartbeat_interval = heartbeat_interval or max(queue.job_timeout / 3, 0.05)
        self.processed = 0
        self.failures = 0

    def run_once(self) -> Job | None:
        """Claim and process one job. Returns the job, or ``None`` if the queue was idle."""
        job = self.queue.claim(self.worker_id)
        if job is None:
            return None
        self.process(job)
        return job

    def process(self, job: Job) -> JobStatus | None:
        handler = self.handlers.get(job.type)
        if handler is None:
            self.failures += 1
            return self.queue.fail(job, f"No handler for job type: {job.type}")

        t0 = time.perf_counter()
        try:
            with self._heartbeat(job):
                result = handler(job)
        except Exception as e:
            self.failures += 1
            logger.warning(
                "Job %d (%s) failed on attempt %d: %s",
                job.id, job.type, job.retry_count + 1, e,
            )
            return self.queue.fail(job, f"{type(e).__name__}: {e}")

        self.processed += 1
        logger.debug("Job %d (%s) handled in %.0fms", job.id, job.type, (time.perf_counter() - t0) * 1000)
        return JobStatus.COMPLETED if self.queue.complete(job, result) else None

    @contextmanager
    def _heartbeat(self, job: Job) -> Iterator[None]:
        done = threading.Event()

        def beat() -> None:
            while not done.wait(self.heartbeat_interval):
                try:
                    alive = self.queue.heartbeat(job)
                except Exception:
                    logger.exception("Heartbeat for job %d failed", job.id)
                    continue
                if not alive:
                    logger.warning("Job %d no longer owned by %s", job.id, self.worker_id)
                    return

        thread = threading.Thread(target=beat, name=f"heartbeat-{job.id}", daemon=True)
        thread.start()
        try:
            yield
        finally:
            done.set()
            thread.join()

    def run_forever(self, stop: threading.Event, poll_interval: float = 5.0) -> None:
        logger.info("Worker %s started", self.worker_id)
        while not stop.is_set():
            try:
                job = self.run_once()
            except Exception:
                logger.exception("Worker %s loop error", self.worker_id)
                stop.wait(poll_interval)
                continue
            if job is None:
                stop.wait(poll_interval)
        logger.info("Worker %s stopped (%d processed, %d failed)", self.worker_id, self.processed, self.failures)


class WorkerPool:
    """Runs ``size`` workers plus the stale-job sweeper in daemon threads."""

    def __init__(
        self,
        queue: JobQueue,
        handlers: Mapping[str, JobHandler],
        size: int = 4,
        poll_interval: float = 5.0,
        stale_sweep_interval: float = 60.0,
    ) -> None:
        self.queue = queue
        self.poll_interval = poll_interval
        self.stale_sweep_interval = stale_sweep_interval
        self.workers = [Worker(queue, handlers) for _ in range(max(1, size))]
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self.queue.reset_stale_jobs()

        for worker in self.workers:
            thread = threading.Thread(
                target=worker.run_forever,
                args=(self._stop, self.poll_interval),
                name=f"worker-{worker.worker_id}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)

        sweeper = threading.Thread(target=self._sweep_loop, name="stale-sweeper", daemon=True)
        sweeper.start()
        self._threads.append(sweeper)
        logger.info("Worker pool started: %d workers", len(self.workers))

    def stop(self, timeout: float = 30.0) -> None:
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads.clear()
        logger.info("Worker pool stopped")

    def wait(self) -> None:
        """Block until ``stop()`` is called (used by the CLI)."""
        while not self._stop.wait(1.0):
            pass

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self.stale_sweep_interval):
            try:
                self.queue.reset_stale_jobs()
            except Exception:
                logger.exception("Stale job sweep failed")

    def status(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "workers": [
                {"id": w.worker_id, "processed": w.processed, "failures": w.failures}
                for w in self.workers
            ],
        }
