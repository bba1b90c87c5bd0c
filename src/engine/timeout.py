"""Timeout guard — bounds one check invocation without OS signals.

The plugin runs in its own daemon thread while the caller polls the clock.
When the deadline passes the context is cancelled (plugins that call
``context.checkpoint()`` or ``context.sleep()`` stop promptly) and the
caller returns an ``error`` outcome straight away; it never joins the
abandoned thread.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, wait
from dataclasses import replace
from typing import Any

from src.checks.base import CheckContext, CheckOutcome, CheckPlugin, CheckStatus
from src.errors import CheckTimeoutError

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "timeout exceeded"


class TimeoutGuard:
    """Runs ``plugin.run`` with a hard wall-clock bound."""

    def __init__(
        self,
        default_timeout: float = 30.0,
        min_timeout: float = 0.1,
        max_timeout: float = 300.0,
        poll_interval: float = 0.05,
    ) -> None:
        self.default_timeout = default_timeout
        self.min_timeout = min_timeout
        self.max_timeout = max_timeout
        self.poll_interval = poll_interval

    def clamp(self, timeout: float | None) -> float:
        value = self.default_timeout if timeout is None else float(timeout)
        return min(max(value, self.min_timeout), self.max_timeout)

    def run(
        self,
        plugin: CheckPlugin,
        target: Any,
        context: CheckContext,
        timeout: float | None = None,
    ) -> CheckOutcome:
        limit = self.clamp(timeout)
        started = time.monotonic()
        deadline = started + limit
        ctx = context.derive(deadline)
        future: Future[CheckOutcome] = Future()

        def _invoke() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(plugin.run(target, ctx))
            except BaseException as exc:  # handed to the polling caller
                future.set_exception(exc)

        thread = threading.Thread(target=_invoke, name=f"check-{plugin.name}", daemon=True)
        thread.start()

        while not future.done():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                ctx.cancel()
                elapsed = time.monotonic() - started
                logger.warning(
                    "Check %s on %s exceeded %.2fs, abandoning",
                    plugin.name, getattr(target, "id", target), limit,
                )
                return self._timeout_outcome(plugin, limit, elapsed)
            wait([future], timeout=min(self.poll_interval, remaining))

        elapsed = time.monotonic() - started
        exc = future.exception()
        if isinstance(exc, CheckTimeoutError):
            return self._timeout_outcome(plugin, limit, elapsed)
        if exc is not None:
            logger.warning("Check %s raised %s: %s", plugin.name, type(exc).__name__, exc)
            return CheckOutcome(
                check_name=plugin.name,
                status=CheckStatus.ERROR,
                message=f"Check raised {type(exc).__name__}: {exc}",
                data={"exception": type(exc).__name__},
                duration_ms=round(elapsed * 1000, 1),
                category=plugin.category,
            )

        outcome = future.result()
        if not isinstance(outcome, CheckOutcome):
            return CheckOutcome(
                check_name=plugin.name,
                status=CheckStatus.ERROR,
                message=f"Check returned {type(outcome).__name__}, expected CheckOutcome",
                duration_ms=round(elapsed * 1000, 1),
                category=plugin.category,
            )
        return replace(
            outcome,
            check_name=plugin.name,
            duration_ms=round(elapsed * 1000, 1),
            category=outcome.category or plugin.category,
        )

    @staticmethod
    def _timeout_outcome(plugin: CheckPlugin, limit: float, elapsed: float) -> CheckOutcome:
        return CheckOutcome(
            check_name=plugin.name,
            status=CheckStatus.ERROR,
            message=f"{TIMEOUT_MESSAGE} after {elapsed:.2f}s (limit: {limit:.2f}s)",
            data={
                "timeout_limit": limit,
                "actual_execution_time": round(elapsed, 3),
                "timeout_type": "polling",
            },
            duration_ms=round(elapsed * 1000, 1),
            category=plugin.category,
        )
