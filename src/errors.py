"""Exception types shared across scanwatch.

Only genuinely exceptional conditions live here. A check that ran and
reached a negative conclusion is a ``CheckOutcome``, never an exception.
"""

from __future__ import annotations


class ScanwatchError(Exception):
    """Base class for all scanwatch errors."""


class UnknownCheckError(ScanwatchError, KeyError):
    """Raised when a check name is not present in the registry."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Unknown check: {self.name}"


class DuplicateCheckError(ScanwatchError, ValueError):
    """Raised when registering a check whose name is already taken."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Check already registered: {name}")
        self.name = name


class CheckTimeoutError(ScanwatchError):
    """Raised inside a plugin by ``CheckContext.checkpoint()`` once cancelled."""


class InvalidStateError(ScanwatchError):
    """Raised on an illegal job state transition (e.g. cancelling a running job)."""


class JobNotFoundError(ScanwatchError, LookupError):
    """Raised when a job id does not exist."""

    def __init__(self, job_id: int) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id
