"""Service wiring — builds every component from the settings object.

Components take plain values; this module and the CLI are the only
places that read ``Settings``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from src.checks.builtin import default_registry
from src.checks.registry import CheckRegistry
from src.config import Settings, settings
from src.engine.executor import ExecutionEngine
from src.engine.results import ResultStore
from src.engine.retry import RetryPolicy
from src.engine.timeout import TimeoutGuard
from src.escalation.evaluator import EscalationEvaluator, EscalationPolicy
from src.escalation.store import EscalationStore
from src.jobs.handlers import NOTIFY_JOB, SCAN_JOB, NotifyJobHandler, ScanJobHandler
from src.jobs.queue import JobQueue
from src.jobs.worker import JobHandler, WorkerPool
from src.notifications import NotificationManager, build_notifier
from src.scheduling.scheduler import ScanScheduler
from src.scheduling.store import ScheduleStore
from src.targets.registry import TargetRegistry

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    registry: CheckRegistry
    targets: TargetRegistry
    engine: ExecutionEngine
    results: ResultStore
    queue: JobQueue
    schedules: ScheduleStore
    scheduler: ScanScheduler
    escalations: EscalationStore
    evaluator: EscalationEvaluator
    notifier: NotificationManager

    @property
    def handlers(self) -> dict[str, JobHandler]:
        return {
            SCAN_JOB: ScanJobHandler(self.engine, self.targets, self.results, self.evaluator),
            NOTIFY_JOB: NotifyJobHandler(self.notifier, self.escalations),
        }

    def worker_pool(self, size: int | None = None) -> WorkerPool:
        return WorkerPool(
            self.queue,
            self.handlers,
            size=size or self.settings.worker_count,
            poll_interval=self.settings.queue_poll_interval,
            stale_sweep_interval=self.settings.stale_sweep_interval,
        )


def build_services(
    cfg: Settings | None = None,
    registry: CheckRegistry | None = None,
    notifier: NotificationManager | None = None,
) -> Services:
    cfg = cfg or settings
    registry = registry or default_registry()
    targets = TargetRegistry(cfg.targets_file)

    engine = ExecutionEngine(
        registry,
        timeout_guard=TimeoutGuard(
            default_timeout=cfg.check_timeout_seconds,
            min_timeout=cfg.check_min_timeout,
            max_timeout=cfg.check_max_timeout,
            poll_interval=cfg.check_poll_interval,
        ),
        retry_policy=RetryPolicy(
            max_retries=cfg.check_max_retries,
            delay=cfg.check_retry_delay,
            backoff=cfg.check_retry_backoff,
        ),
        parallelism=cfg.battery_parallelism,
    )
    results = ResultStore(cfg.db_path)
    queue = JobQueue(
        cfg.db_path,
        retry_policy=RetryPolicy(
            max_retries=cfg.queue_max_retries,
            delay=cfg.queue_retry_delay,
            backoff=cfg.queue_retry_backoff,
        ),
        job_timeout=cfg.queue_job_timeout,
        dead_letter=cfg.queue_dead_letter,
    )
    schedules = ScheduleStore(cfg.db_path)
    scheduler = ScanScheduler(targets, schedules, queue, interval_seconds=cfg.scheduler_interval_seconds)

    notifier = notifier or build_notifier(
        slack_webhook_url=cfg.slack_webhook_url,
        telegram_bot_token=cfg.telegram_bot_token,
        timeout=cfg.notification_timeout,
    )
    escalations = EscalationStore(cfg.db_path)
    evaluator = EscalationEvaluator(
        escalations,
        results,
        notifier,
        EscalationPolicy(
            consecutive_failure_threshold=cfg.escalation_consecutive_failures,
            failures_in_period_threshold=cfg.escalation_failures_in_period,
            period_hours=cfg.escalation_period_hours,
            cooldown_hours=cfg.escalation_cooldown_hours,
            critical_categories=tuple(cfg.escalation_critical_categories),
            level_channels=dict(cfg.escalation_level_channels),
            level_delay_minutes=dict(cfg.escalation_level_delay_minutes),
            notify_on_resolve=cfg.escalation_notify_on_resolve,
        ),
        queue=queue,
    )

    logger.info(
        "Services ready: %d checks, db=%s, targets=%s",
        len(registry), cfg.db_path, cfg.targets_file,
    )
    return Services(
        settings=cfg,
        registry=registry,
        targets=targets,
        engine=engine,
        results=results,
        queue=queue,
        schedules=schedules,
        scheduler=scheduler,
        escalations=escalations,
        evaluator=evaluator,
        notifier=notifier,
    )
