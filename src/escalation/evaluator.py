"""Escalation evaluator — graduated alerting from scan history.

Levels:
    0  no failed checks
    1  at least one failed check
    2  repeated failures (consecutive, or frequent within a period)
    3  a failed check in a critical category

One active escalation per target. A new escalation notifies the channels
for its level; while its cooldown runs further failures are absorbed, and
after it expires only a higher level triggers another round.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from src.engine.aggregator import ScanStatus, ScanSummary
from src.engine.results import ResultStore
from src.jobs.handlers import NOTIFY_JOB
from src.targets.registry import Target

from .store import Escalation, EscalationStore

if TYPE_CHECKING:
    from src.jobs.queue import JobQueue
    from src.notifications import NotificationSender

logger = logging.getLogger(__name__)

LEVEL_TEXT = {1: "Low", 2: "Medium", 3: "Critical"}
URGENCY = {1: "medium", 2: "high", 3: "critical"}


class EscalationAction(str, Enum):
    NO_ESCALATION_NEEDED = "no_escalation_needed"
    IN_COOLDOWN = "in_cooldown"
    NO_ESCALATION_INCREASE_NEEDED = "no_escalation_increase_needed"
    ESCALATION_TRIGGERED = "escalation_triggered"
    ESCALATION_INCREASED = "escalation_increased"


@dataclass
class EscalationPolicy:
    consecutive_failure_threshold: int = 3
    failures_in_period_threshold: int = 5
    period_hours: float = 24
    cooldown_hours: float = 4
    critical_categories: tuple[str, ...] = ("critical", "security")
    level_channels: dict[int, list[str]] = field(
        default_factory=lambda: {1: ["email"], 2: ["email", "sms"], 3: ["email", "sms", "webhook"]}
    )
    level_delay_minutes: dict[int, float] = field(default_factory=lambda: {1: 0, 2: 30, 3: 120})
    history_limit: int = 50
    notify_on_resolve: bool = False


@dataclass
class EscalationDecision:
    action: EscalationAction
    level: int
    escalation_id: int | None = None
    trigger_reason: str = ""
    cooldown_until: float | None = None
    notifications: dict[str, dict[str, Any]] = field(default_factory=dict)
    resolved: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "level": self.level,
            "escalation_id": self.escalation_id,
            "trigger_reason": self.trigger_reason,
            "cooldown_until": self.cooldown_until,
            "notifications": self.notifications,
            "resolved": self.resolved,
        }


class EscalationEvaluator:
    """Turns a scan summary plus history into an escalation decision."""

    def __init__(
        self,
        store: EscalationStore,
        history: ResultStore,
        notifier: NotificationSender | None = None,
        policy: EscalationPolicy | None = None,
        queue: JobQueue | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.history = history
        self.notifier = notifier
        self.policy = policy or EscalationPolicy()
        self.queue = queue
        self._clock = clock

    # ── Level determination ───────────────────────────────────────────────

    def determine_level(self, target_id: str, summary: ScanSummary) -> tuple[int, str]:
        """Return ``(level, trigger_reason)``; the highest applicable level wins."""
        failed = summary.failed_outcomes
        if not failed:
            return 0, ""

        critical = [o for o in failed if o.category in self.policy.critical_categories]
        if critical:
            names = ", ".join(o.check_name for o in critical)
            return 3, f"critical_check_failure ({len(critical)} critical checks failed: {names})"

        consecutive = self.consecutive_failures(target_id, summary)
        if consecutive >= self.policy.consecutive_failure_threshold:
            return 2, f"consecutive_failures ({consecutive} in a row)"

        recent = self.failures_in_period(target_id, summary)
        if recent >= self.policy.failures_in_period_threshold:
            return 2, f"frequent_failures ({recent} in {self.policy.period_hours:g} hours)"

        return 1, f"check_failure ({len(failed)} checks failed)"

    def consecutive_failures(self, target_id: str, summary: ScanSummary) -> int:
        """Length of the newest run of scans with no passed scan in between.

        Error and warning scans extend the run; only a passed scan ends it.
        """
        statuses = self.history.recent_statuses(target_id, limit=self.policy.history_limit)
        if summary.scan_id is None:
            statuses.insert(0, summary.status)
        count = 0
        for status in statuses:
            if status is ScanStatus.PASSED:
                break
            count += 1
        return count

    def failures_in_period(self, target_id: str, summary: ScanSummary) -> int:
        since = self._clock() - self.policy.period_hours * 3600
        count = self.history.count_failed_since(target_id, since)
        if summary.scan_id is None and summary.status is ScanStatus.FAILED:
            count += 1
        return count

    # ── Evaluation ────────────────────────────────────────────────────────

    def evaluate(self, target: Target, summary: ScanSummary) -> EscalationDecision:
        now = self._clock()
        level, reason = self.determine_level(target.id, summary)
        active = self.store.get_active(target.id)

        if level == 0:
            decision = EscalationDecision(EscalationAction.NO_ESCALATION_NEEDED, 0)
            if active is not None and summary.fully_passed:
                self.resolve_escalation(target.id, "tests_passing", target=target)
                decision.escalation_id = active.id
                decision.resolved = True
            return decision

        if active is not None and active.in_cooldown(now):
            logger.debug("Escalation %d for %s in cooldown", active.id, target.id)
            return EscalationDecision(
                EscalationAction.IN_COOLDOWN, level, active.id, reason, active.cooldown_until,
            )

        if active is not None and level <= active.level:
            return EscalationDecision(
                EscalationAction.NO_ESCALATION_INCREASE_NEEDED, level, active.id, reason,
                active.cooldown_until,
            )

        cooldown_until = now + self.policy.cooldown_hours * 3600
        if active is not None:
            escalation = self.store.raise_level(active.id, level, reason, cooldown_until, summary.scan_id)
            action = EscalationAction.ESCALATION_INCREASED
        else:
            escalation = self.store.create(target.id, level, reason, cooldown_until, summary.scan_id)
            action = EscalationAction.ESCALATION_TRIGGERED

        results = self._dispatch(target, summary, escalation)
        self.store.record_notifications(escalation.id, results)
        logger.info(
            "%s: target=%s level=%d (%s), %d/%d notifications ok",
            action.value, target.id, level, reason,
            sum(1 for r in results.values() if r.get("success")), len(results),
        )
        return EscalationDecision(action, level, escalation.id, reason, cooldown_until, results)

    def resolve_escalation(
        self, target_id: str, reason: str = "tests_passing", target: Target | None = None,
    ) -> Escalation | None:
        """Resolve the active escalation; a no-op returning ``None`` when there is none."""
        escalation = self.store.resolve(target_id, reason)
        if escalation is not None and target is not None and self.policy.notify_on_resolve:
            data = {
                "target_id": target.id,
                "target_name": target.name,
                "target_url": target.url,
                "escalation_id": escalation.id,
                "escalation_level": escalation.level,
                "resolution_reason": reason,
            }
            for channel in self.policy.level_channels.get(1, []):
                recipient = target.notification_channels.get(channel)
                if recipient:
                    self._send(channel, recipient, "escalation_resolved", data)
        return escalation

    def list_active(self) -> list[Escalation]:
        return self.store.list_active()

    def history_for(self, target_id: str, days: int = 30) -> list[Escalation]:
        return self.store.history(target_id, days)

    def statistics(self, days: int = 7) -> dict[str, Any]:
        return self.store.statistics(days)

    # ── Notification dispatch ─────────────────────────────────────────────

    def _dispatch(self, target: Target, summary: ScanSummary, escalation: Escalation) -> dict[str, dict[str, Any]]:
        level = escalation.level
        delay = self.policy.level_delay_minutes.get(level, 0) * 60
        data = self._notification_data(target, summary, escalation)
        results: dict[str, dict[str, Any]] = {}

        for channel in self.policy.level_channels.get(level, []):
            recipient = target.notification_channels.get(channel)
            if not recipient:
                results[channel] = {"success": False, "error": f"No {channel} configured"}
                continue

            if delay > 0 and self.queue is not None:
                try:
                    job_id = self.queue.enqueue(
                        NOTIFY_JOB,
                        {"channel": channel, "recipient": recipient, "template_key": "escalation", "data": data},
                        priority="high",
                        delay_seconds=delay,
                    )
                    results[channel] = {"success": True, "scheduled": True, "job_id": job_id,
                                        "deliver_at": self._clock() + delay}
                except Exception as e:
                    logger.exception("Failed to schedule %s notification for %s", channel, target.id)
                    results[channel] = {"success": False, "error": str(e)}
                continue

            results[channel] = self._send(channel, recipient, "escalation", data)
        return results

    def _send(self, channel: str, recipient: str, template_key: str, data: dict[str, Any]) -> dict[str, Any]:
        if self.notifier is None:
            return {"success": False, "error": "No notification sender configured"}
        try:
            result = self.notifier.send(channel, recipient, template_key, data).to_dict()
        except Exception as e:
            logger.exception("Notification via %s raised", channel)
            return {"success": False, "error": str(e)}
        if not result.get("success"):
            logger.warning("Notification via %s to %s failed: %s", channel, recipient, result.get("error"))
        return result

    @staticmethod
    def _notification_data(target: Target, summary: ScanSummary, escalation: Escalation) -> dict[str, Any]:
        failed = summary.failed_outcomes
        return {
            "target_id": target.id,
            "target_name": target.name,
            "target_url": target.url,
            "escalation_id": escalation.id,
            "escalation_level": escalation.level,
            "escalation_level_text": LEVEL_TEXT.get(escalation.level, "Unknown"),
            "urgency": URGENCY.get(escalation.level, "medium"),
            "trigger_reason": escalation.trigger_reason,
            "scan_id": summary.scan_id,
            "scan_status": summary.status.value,
            "total_checks": summary.total,
            "failed_count": len(failed),
            "failed_checks": [
                {"check_name": o.check_name, "message": o.message, "category": o.category}
                for o in failed
            ],
        }
