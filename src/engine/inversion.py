"""Result inversion for expected-failure checks.

Only the semantic verdicts flip. ``warning`` stays a warning and ``error``
(the check could not run) is never inverted.
"""

from __future__ import annotations

from dataclasses import replace

from src.checks.base import CheckOutcome, CheckStatus

_INVERTED = {
    CheckStatus.PASS: CheckStatus.FAIL,
    CheckStatus.FAIL: CheckStatus.PASS,
}


def invert_status(status: CheckStatus) -> CheckStatus:
    return _INVERTED.get(status, status)


def apply_inversion(outcome: CheckOutcome) -> CheckOutcome:
    """Return a copy of ``outcome`` with pass/fail swapped and the original kept in data."""
    new_status = invert_status(outcome.status)
    data = {
        **outcome.data,
        "inverted": True,
        "original_status": outcome.status.value,
    }
    if new_status is outcome.status:
        note = "[Inversion: no change]"
    else:
        note = f"[Inverted: {outcome.status.value} → {new_status.value}]"
    message = f"{outcome.message} {note}" if outcome.message else note
    return replace(outcome, status=new_status, data=data, message=message)
