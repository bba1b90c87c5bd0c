"""Retry policy shared by the check-level retry wrapper and the job queue."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, replace

from src.checks.base import CheckOutcome, CheckStatus

logger = logging.getLogger(__name__)

BACKOFF_MODES = ("fixed", "exponential")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to retry and how long to wait in between.

    ``delay_for(n)`` gives the wait before retry number ``n`` (1-based):
    ``delay`` for fixed backoff, ``delay * multiplier ** (n - 1)`` for
    exponential, capped at ``max_delay`` and optionally jittered upward by
    up to ``jitter`` (a fraction of the delay).
    """

    max_retries: int = 2
    delay: float = 1.0
    backoff: str = "fixed"
    multiplier: float = 2.0
    max_delay: float = 3600.0
    jitter: float = 0.0

    def __post_init__(self) -> None:
        if self.backoff not in BACKOFF_MODES:
            raise ValueError(f"Invalid backoff: {self.backoff}. Must be one of {BACKOFF_MODES}")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")

    def delay_for(self, retry_number: int) -> float:
        delay = self.delay
        if self.backoff == "exponential":
            delay = self.delay * self.multiplier ** max(0, retry_number - 1)
        delay = min(delay, self.max_delay)
        if self.jitter > 0:
            delay += random.uniform(0, delay * self.jitter)
        return delay

    def with_max_retries(self, max_retries: int) -> RetryPolicy:
        return replace(self, max_retries=max_retries)


def run_with_retry(
    call: Callable[[], CheckOutcome],
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
) -> CheckOutcome:
    """Invoke ``call`` until it returns something other than ``error``.

    ``fail`` and ``warning`` mean the check ran and reached a conclusion, so
    they are returned immediately. The final outcome carries ``retry_count``
    and ``attempts`` in its data.
    """
    statuses: list[str] = []
    outcome = call()
    statuses.append(outcome.status.value)

    while outcome.status is CheckStatus.ERROR and len(statuses) <= policy.max_retries:
        retry_number = len(statuses)
        delay = policy.delay_for(retry_number)
        logger.info(
            "Check %s errored (%s), retry %d/%d in %.2fs",
            outcome.check_name, outcome.message, retry_number, policy.max_retries, delay,
        )
        if delay > 0:
            sleep(delay)
        outcome = call()
        statuses.append(outcome.status.value)

    retry_count = len(statuses) - 1
    data = {**outcome.data, "retry_count": retry_count, "attempts": len(statuses)}
    message = outcome.message
    if retry_count:
        data["attempt_statuses"] = statuses
        if outcome.status is CheckStatus.ERROR:
            message = f"{message} (gave up after {len(statuses)} attempts)"
        else:
            message = f"{message} (after {len(statuses)} attempts)"
    return replace(outcome, data=data, message=message)
