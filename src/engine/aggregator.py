"""Result aggregation — reduces a battery's outcomes to a scan summary."""

from __future__ import annotations

import time
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from src.checks.base import CheckOutcome, CheckStatus


class ScanStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Aggregate:
    total: int
    passed: int
    failed: int
    warnings: int
    errors: int
    status: ScanStatus
    average_score: float | None = None


def aggregate(outcomes: Iterable[CheckOutcome]) -> Aggregate:
    """Count statuses and derive the overall scan status.

    failed if any fail, else warning if any warning, else error if any
    error, else passed. Independent of outcome order.
    """
    outcomes = list(outcomes)
    counts = Counter(o.status for o in outcomes)
    scores = [o.score for o in outcomes if o.score is not None]

    if counts[CheckStatus.FAIL]:
        status = ScanStatus.FAILED
    elif counts[CheckStatus.WARNING]:
        status = ScanStatus.WARNING
    elif counts[CheckStatus.ERROR]:
        status = ScanStatus.ERROR
    else:
        status = ScanStatus.PASSED

    return Aggregate(
        total=len(outcomes),
        passed=counts[CheckStatus.PASS],
        failed=counts[CheckStatus.FAIL],
        warnings=counts[CheckStatus.WARNING],
        errors=counts[CheckStatus.ERROR],
        status=status,
        average_score=round(sum(scores) / len(scores), 2) if scores else None,
    )


@dataclass
class ScanSummary:
    """Outcome of one full battery run against a target."""

    target_id: str
    total: int
    passed: int
    failed: int
    warnings: int
    errors: int
    status: ScanStatus
    outcomes: list[CheckOutcome] = field(default_factory=list)
    average_score: float | None = None
    duration_ms: float = 0.0
    scan_id: int | None = None  # set once persisted
    created_at: float = field(default_factory=time.time)

    @property
    def fully_passed(self) -> bool:
        return self.status is ScanStatus.PASSED

    @property
    def failed_outcomes(self) -> list[CheckOutcome]:
        return [o for o in self.outcomes if o.status is CheckStatus.FAIL]

    def to_dict(self) -> dict[str, Any]:
        return {
            "scan_id": self.scan_id,
            "target_id": self.target_id,
            "status": self.status.value,
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "warnings": self.warnings,
            "errors": self.errors,
            "average_score": self.average_score,
            "duration_ms": self.duration_ms,
            "created_at": self.created_at,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


def summarize(target_id: str, outcomes: Iterable[CheckOutcome], duration_ms: float = 0.0) -> ScanSummary:
    outcomes = list(outcomes)
    agg = aggregate(outcomes)
    return ScanSummary(
        target_id=target_id,
        total=agg.total,
        passed=agg.passed,
        failed=agg.failed,
        warnings=agg.warnings,
        errors=agg.errors,
        status=agg.status,
        outcomes=outcomes,
        average_score=agg.average_score,
        duration_ms=round(duration_ms, 1),
    )
