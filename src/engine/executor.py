"""Execution engine — runs checks with timeout, retry and inversion.

Composition per check is fixed: the retry wrapper calls the timeout guard,
and inversion is applied once to the final outcome.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from src.checks.base import CheckContext, CheckOutcome, CheckStatus
from src.checks.registry import CheckRegistry
from src.engine.aggregator import ScanSummary, summarize
from src.engine.inversion import apply_inversion
from src.engine.retry import RetryPolicy, run_with_retry
from src.engine.timeout import TimeoutGuard
from src.errors import UnknownCheckError
from src.targets.registry import Target

logger = logging.getLogger(__name__)


@dataclass
class CheckOptions:
    """Per-invocation overrides; ``None`` means use the engine default."""

    timeout_seconds: float | None = None
    max_retries: int | None = None
    inverted: bool = False


class ExecutionEngine:
    """Runs single checks and whole batteries against targets."""

    def __init__(
        self,
        registry: CheckRegistry,
        timeout_guard: TimeoutGuard | None = None,
        retry_policy: RetryPolicy | None = None,
        parallelism: int = 1,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.registry = registry
        self.timeout_guard = timeout_guard or TimeoutGuard()
        self.retry_policy = retry_policy or RetryPolicy()
        self.parallelism = max(1, parallelism)
        self._sleep = sleep

    def execute_check(
        self,
        name: str,
        target: Target,
        context: CheckContext | None = None,
        options: CheckOptions | None = None,
    ) -> CheckOutcome:
        """Run one check. Raises ``UnknownCheckError`` for unregistered names."""
        plugin = self.registry.get(name)
        options = options or CheckOptions()
        context = context or CheckContext()

        policy = self.retry_policy
        if options.max_retries is not None:
            policy = policy.with_max_retries(options.max_retries)

        outcome = run_with_retry(
            lambda: self.timeout_guard.run(plugin, target, context, options.timeout_seconds),
            policy,
            sleep=self._sleep,
        )
        if options.inverted:
            outcome = apply_inversion(outcome)

        logger.debug(
            "Check %s on %s: %s (%.0fms)",
            name, target.id, outcome.status.value, outcome.duration_ms,
        )
        return outcome

    @staticmethod
    def options_for(target: Target, name: str) -> CheckOptions:
        cfg = target.check_config(name)
        return CheckOptions(
            timeout_seconds=cfg.timeout_override,
            max_retries=cfg.max_retries,
            inverted=cfg.inverted,
        )

    def execute_battery(
        self,
        target: Target,
        check_names: Iterable[str] | None = None,
        context: CheckContext | None = None,
    ) -> ScanSummary:
        """Run every configured check for ``target`` and aggregate the outcomes.

        Disabled checks are skipped. Unknown check names and engine faults
        become ``error`` outcomes so the rest of the battery still runs.
        """
        names = list(check_names) if check_names is not None else target.check_names
        runnable = []
        for name in names:
            if name in self.registry and not self.registry.is_enabled(name):
                logger.info("Skipping disabled check %s for %s", name, target.id)
                continue
            runnable.append(name)

        context = context or CheckContext()
        t0 = time.perf_counter()
        if self.parallelism > 1 and len(runnable) > 1:
            workers = min(self.parallelism, len(runnable))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="battery") as pool:
                outcomes = list(pool.map(lambda n: self._run_in_battery(n, target, context), runnable))
        else:
            outcomes = [self._run_in_battery(n, target, context) for n in runnable]
        elapsed_ms = (time.perf_counter() - t0) * 1000

        summary = summarize(target.id, outcomes, elapsed_ms)
        logger.info(
            "Battery %s: %s (%d passed, %d failed, %d warnings, %d errors) in %.0fms",
            target.id, summary.status.value, summary.passed, summary.failed,
            summary.warnings, summary.errors, elapsed_ms,
        )
        return summary

    def _run_in_battery(self, name: str, target: Target, context: CheckContext) -> CheckOutcome:
        try:
            return self.execute_check(name, target, context, self.options_for(target, name))
        except UnknownCheckError as e:
            logger.warning("Target %s references %s", target.id, e)
            return CheckOutcome(
                check_name=name,
                status=CheckStatus.ERROR,
                message=str(e),
                data={"error_type": "unknown_check"},
            )
        except Exception as e:
            logger.exception("Engine error running %s on %s", name, target.id)
            return CheckOutcome(
                check_name=name,
                status=CheckStatus.ERROR,
                message=f"Engine error: {e}",
                data={"error_type": "engine_error"},
            )
