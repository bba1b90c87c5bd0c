"""Durable job queue and the workers that drain it."""

from .handlers import NOTIFY_JOB, SCAN_JOB, NotifyJobHandler, ScanJobHandler
from .queue import BulkEnqueueResult, Job, JobPriority, JobQueue, JobStatus
from .worker import JobHandler, Worker, WorkerPool
