"""Shared test fixtures."""

from __future__ import annotations

import threading
import time
from typing import Any

import pytest

from src.checks.base import CheckContext, CheckOutcome, CheckPlugin, CheckStatus
from src.checks.registry import CheckRegistry
from src.engine.executor import ExecutionEngine
from src.engine.results import ResultStore
from src.engine.retry import RetryPolicy
from src.engine.timeout import TimeoutGuard
from src.escalation.evaluator import EscalationEvaluator, EscalationPolicy
from src.escalation.store import EscalationStore
from src.jobs.queue import JobQueue
from src.notifications import DeliveryResult
from src.targets.registry import Target, TargetCheck, TargetRegistry


# ── Fake plugins ─────────────────────────────────────────────────────────────


class StaticCheck(CheckPlugin):
    """Always returns the same status."""

    def __init__(self, name: str, status: CheckStatus, category: str = "general") -> None:
        self.name = name
        self.category = category
        self.status = status
        self.calls = 0

    def run(self, target: Any, context: CheckContext) -> CheckOutcome:
        self.calls += 1
        return CheckOutcome(self.name, self.status, f"static {self.status.value}")


class SleepyCheck(CheckPlugin):
    """Sleeps cooperatively (wakes on cancellation)."""

    name = "sleepy_check"

    def __init__(self, seconds: float = 5.0) -> None:
        self.seconds = seconds
        self.started = threading.Event()

    def run(self, target: Any, context: CheckContext) -> CheckOutcome:
        self.started.set()
        context.sleep(self.seconds)
        return self.passed("woke up")


class StubbornCheck(CheckPlugin):
    """Sleeps without ever checking the context."""

    name = "stubborn_check"

    def __init__(self, seconds: float = 5.0) -> None:
        self.seconds = seconds

    def run(self, target: Any, context: CheckContext) -> CheckOutcome:
        time.sleep(self.seconds)
        return self.passed("finally")


class FlakyCheck(CheckPlugin):
    """Errors for the first ``failures`` calls, then passes."""

    name = "flaky_check"

    def __init__(self, failures: int = 1) -> None:
        self.failures = failures
        self.calls = 0

    def run(self, target: Any, context: CheckContext) -> CheckOutcome:
        self.calls += 1
        if self.calls <= self.failures:
            return self.error(f"transient problem #{self.calls}")
        return self.passed("recovered")


class RaisingCheck(CheckPlugin):
    name = "raising_check"

    def __init__(self) -> None:
        self.calls = 0

    def run(self, target: Any, context: CheckContext) -> CheckOutcome:
        self.calls += 1
        raise RuntimeError("plugin blew up")


# ── Fakes ────────────────────────────────────────────────────────────────────


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float | None = None) -> None:
        self.now = time.time() if start is None else start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeNotifier:
    """Records every send; ``fail_channels`` simulate delivery failures."""

    def __init__(self, fail_channels: tuple[str, ...] = ()) -> None:
        self.sent: list[dict[str, Any]] = []
        self.fail_channels = fail_channels

    def send(self, channel: str, recipient: str, template_key: str, data: dict[str, Any]) -> DeliveryResult:
        self.sent.append({"channel": channel, "recipient": recipient, "template_key": template_key, "data": data})
        if channel in self.fail_channels:
            return DeliveryResult(False, channel, recipient, "provider down")
        return DeliveryResult(True, channel, recipient)


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "scanwatch.db"


@pytest.fixture
def registry() -> CheckRegistry:
    return CheckRegistry([
        StaticCheck("pass_check", CheckStatus.PASS),
        StaticCheck("fail_check", CheckStatus.FAIL),
        StaticCheck("warn_check", CheckStatus.WARNING),
        StaticCheck("error_check", CheckStatus.ERROR),
        StaticCheck("critical_check", CheckStatus.FAIL, category="critical"),
    ])


@pytest.fixture
def engine(registry) -> ExecutionEngine:
    return ExecutionEngine(
        registry,
        timeout_guard=TimeoutGuard(default_timeout=2.0, poll_interval=0.01),
        retry_policy=RetryPolicy(max_retries=2, delay=0),
        sleep=lambda s: None,
    )


@pytest.fixture
def target() -> Target:
    return Target(
        id="site",
        url="https://site.test",
        name="Site",
        checks=[TargetCheck("pass_check"), TargetCheck("fail_check")],
        notification_channels={
            "email": "ops@site.test",
            "sms": "+15550100",
            "webhook": "https://hooks.site.test/alerts",
        },
    )


@pytest.fixture
def targets(target) -> TargetRegistry:
    other = Target(id="other", url="https://other.test", priority="high", checks=[TargetCheck("pass_check")])
    return TargetRegistry(targets=[target, other])


@pytest.fixture
def queue(db_path, clock) -> JobQueue:
    return JobQueue(
        db_path,
        retry_policy=RetryPolicy(max_retries=3, delay=60, backoff="exponential"),
        job_timeout=300,
        clock=clock,
    )


@pytest.fixture
def results(db_path, clock) -> ResultStore:
    return ResultStore(db_path, clock=clock)


@pytest.fixture
def escalation_store(db_path, clock) -> EscalationStore:
    return EscalationStore(db_path, clock=clock)


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def evaluator(escalation_store, results, notifier, clock) -> EscalationEvaluator:
    policy = EscalationPolicy(
        consecutive_failure_threshold=2,
        failures_in_period_threshold=5,
        period_hours=24,
        cooldown_hours=4,
        level_delay_minutes={1: 0, 2: 0, 3: 0},
    )
    return EscalationEvaluator(escalation_store, results, notifier, policy, clock=clock)
