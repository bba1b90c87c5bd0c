"""Job handlers for the two job types the system enqueues.

``scan``   — run a target's battery, persist it, evaluate escalation.
``notify`` — deliver a delayed escalation notification, unless the
             escalation was resolved while the job waited.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from src.engine.executor import ExecutionEngine
from src.engine.results import ResultStore
from src.targets.registry import TargetRegistry

from .queue import Job

if TYPE_CHECKING:
    from src.escalation.evaluator import EscalationEvaluator
    from src.escalation.store import EscalationStore
    from src.notifications import NotificationSender

logger = logging.getLogger(__name__)

SCAN_JOB = "scan"
NOTIFY_JOB = "notify"


class ScanJobHandler:
    def __init__(
        self,
        engine: ExecutionEngine,
        targets: TargetRegistry,
        results: ResultStore,
        evaluator: EscalationEvaluator | None = None,
    ) -> None:
        self.engine = engine
        self.targets = targets
        self.results = results
        self.evaluator = evaluator

    def __call__(self, job: Job) -> dict[str, Any]:
        target_id = job.payload.get("target_id")
        target = self.targets.get(target_id) if target_id else None
        if target is None:
            raise LookupError(f"Unknown target: {target_id}")

        summary = self.engine.execute_battery(target, job.payload.get("check_names"))
        scan_id = self.results.record_scan(summary)

        escalation = None
        if self.evaluator is not None:
            # Escalation errors never fail the scan job.
            try:
                escalation = self.evaluator.evaluate(target, summary).to_dict()
            except Exception:
                logger.exception("Escalation evaluation failed for %s (scan %d)", target.id, scan_id)

        return {
            "scan_id": scan_id,
            "target_id": target.id,
            "status": summary.status.value,
            "passed": summary.passed,
            "failed": summary.failed,
            "warnings": summary.warnings,
            "errors": summary.errors,
            "escalation": escalation,
        }


class NotifyJobHandler:
    def __init__(self, notifier: NotificationSender, escalations: EscalationStore | None = None) -> None:
        self.notifier = notifier
        self.escalations = escalations

    def __call__(self, job: Job) -> dict[str, Any]:
        p = job.payload
        escalation_id = (p.get("data") or {}).get("escalation_id")
        if p["template_key"] == "escalation" and escalation_id is not None and self.escalations is not None:
            escalation = self.escalations.get(escalation_id)
            if escalation is None or escalation.status != "active":
                logger.info("Skipping %s notification for escalation %s: no longer active",
                            p["channel"], escalation_id)
                return {"skipped": "resolved", "escalation_id": escalation_id}
        result = self.notifier.send(p["channel"], p["recipient"], p["template_key"], p.get("data") or {})
        if not result.success:
            raise RuntimeError(f"Delivery via {p['channel']} failed: {result.error}")
        return result.to_dict()
