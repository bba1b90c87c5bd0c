from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Storage
    db_path: str = "data/scanwatch.db"
    targets_file: str = "targets.yaml"

    # Check execution
    check_timeout_seconds: float = 30.0
    check_min_timeout: float = 0.1
    check_max_timeout: float = 300.0
    check_poll_interval: float = 0.05  # how often the timeout guard checks the clock
    check_max_retries: int = 2
    check_retry_delay: float = 1.0
    check_retry_backoff: str = "fixed"  # "fixed" | "exponential"
    battery_parallelism: int = 1  # 1 = run a battery sequentially

    # Job queue
    queue_max_retries: int = 3
    queue_retry_delay: float = 60.0
    queue_retry_backoff: str = "exponential"
    queue_job_timeout: int = 300  # no worker heartbeat for this long = stale
    queue_poll_interval: float = 5.0
    queue_dead_letter: bool = True  # False = exhausted jobs end as "failed"
    queue_cleanup_after: int = 86_400
    scan_retention_days: int = 90
    worker_count: int = 4
    stale_sweep_interval: int = 60

    # Scheduler
    scheduler_interval_seconds: int = 60

    # Escalation
    escalation_consecutive_failures: int = 3
    escalation_failures_in_period: int = 5
    escalation_period_hours: int = 24
    escalation_cooldown_hours: float = 4.0
    escalation_critical_categories: list[str] = ["critical", "security"]
    escalation_level_channels: dict[int, list[str]] = {
        1: ["email"],
        2: ["email", "sms"],
        3: ["email", "sms", "webhook"],
    }
    escalation_level_delay_minutes: dict[int, int] = {1: 0, 2: 30, 3: 120}
    escalation_notify_on_resolve: bool = False

    # Notifications (optional — Slack / Telegram / generic webhook)
    slack_webhook_url: str = ""
    telegram_bot_token: str = ""
    notification_timeout: float = 10.0

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Logging
    log_level: str = "INFO"


settings = Settings()
