"""Check plugin contract — the interface every check implements.

A check receives a target and a ``CheckContext`` and returns a
``CheckOutcome``. Failing checks return data; they do not raise.
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from src.errors import CheckTimeoutError

if TYPE_CHECKING:
    from src.targets.registry import Target


# ── Models ───────────────────────────────────────────────────────────────────


class CheckStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class CheckOutcome:
    """Immutable result of a single check invocation."""

    check_name: str
    status: CheckStatus
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    score: float | None = None
    duration_ms: float = 0.0
    category: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "check_name": self.check_name,
            "status": self.status.value,
            "message": self.message,
            "data": dict(self.data),
            "score": self.score,
            "duration_ms": self.duration_ms,
            "category": self.category,
        }


class CheckContext:
    """Per-invocation context handed to ``CheckPlugin.run``.

    Carries free-form options plus the cooperative cancellation signal used
    by the timeout guard. Long-running checks should call ``checkpoint()``
    between steps and size their I/O timeouts with ``remaining()``.
    """

    def __init__(
        self,
        options: dict[str, Any] | None = None,
        deadline: float | None = None,
    ) -> None:
        self.options: dict[str, Any] = dict(options or {})
        self.deadline = deadline  # time.monotonic() value, or None
        self._cancelled = threading.Event()

    def derive(self, deadline: float | None) -> CheckContext:
        """Fresh context with the same options and a new deadline."""
        return CheckContext(self.options, deadline=deadline)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def remaining(self, default: float = 30.0) -> float:
        """Seconds left before the deadline (``default`` when unbounded)."""
        if self.deadline is None:
            return default
        return max(0.0, self.deadline - time.monotonic())

    def checkpoint(self) -> None:
        """Raise ``CheckTimeoutError`` if the invocation was cancelled or ran out of time."""
        if self._cancelled.is_set():
            raise CheckTimeoutError("check cancelled")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise CheckTimeoutError("deadline reached")

    def sleep(self, seconds: float) -> None:
        """Sleep that wakes early (and raises) when the check is cancelled."""
        if self._cancelled.wait(timeout=max(0.0, seconds)):
            raise CheckTimeoutError("check cancelled")


# ── Plugin interface ─────────────────────────────────────────────────────────


class CheckPlugin(ABC):
    """Base class for all checks.

    Subclasses set ``name``, ``description`` and ``category`` and implement
    ``run``. The helper constructors keep outcome creation terse.
    """

    name: str = ""
    description: str = ""
    category: str = "general"

    @abstractmethod
    def run(self, target: Target, context: CheckContext) -> CheckOutcome:
        """Run the check against ``target``."""

    def info(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "category": self.category}

    # -- Outcome helpers ------------------------------------------------------

    def passed(self, message: str, data: dict[str, Any] | None = None, score: float | None = None) -> CheckOutcome:
        return CheckOutcome(self.name, CheckStatus.PASS, message, data or {}, score, category=self.category)

    def failed(self, message: str, data: dict[str, Any] | None = None, score: float | None = None) -> CheckOutcome:
        return CheckOutcome(self.name, CheckStatus.FAIL, message, data or {}, score, category=self.category)

    def warning(self, message: str, data: dict[str, Any] | None = None, score: float | None = None) -> CheckOutcome:
        return CheckOutcome(self.name, CheckStatus.WARNING, message, data or {}, score, category=self.category)

    def error(self, message: str, data: dict[str, Any] | None = None) -> CheckOutcome:
        return CheckOutcome(self.name, CheckStatus.ERROR, message, data or {}, category=self.category)
