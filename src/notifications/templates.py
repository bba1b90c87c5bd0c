"""Notification templates — escalation and resolution messages."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# Emoji per escalation level; 0 is used for recovery
_EMOJI = {0: "✅", 1: "⚠️", 2: "🟠", 3: "🔴"}


@dataclass
class RenderedMessage:
    subject: str
    text: str
    payload: dict[str, Any] = field(default_factory=dict)  # machine-readable body for webhooks


def render(template_key: str, data: dict[str, Any]) -> RenderedMessage:
    renderer = TEMPLATES.get(template_key)
    if renderer is None:
        raise KeyError(f"Unknown notification template: {template_key}")
    return renderer(data)


def _escalation(data: dict[str, Any]) -> RenderedMessage:
    level = int(data.get("escalation_level", 1))
    name = data.get("target_name") or data.get("target_id", "?")
    failed = data.get("failed_checks") or []

    subject = f"ESCALATED ALERT (Level {level}): {name} - {data.get('failed_count', len(failed))} checks failing"
    lines = [
        f"{_EMOJI.get(level, '⚠️')} *Escalation Level {level}* ({data.get('escalation_level_text', '')})",
        f"Target: `{name}` ({data.get('target_url', '')})",
        f"Reason: {data.get('trigger_reason', 'unknown')}",
        f"Failed: {data.get('failed_count', len(failed))}/{data.get('total_checks', '?')} checks",
    ]
    for check in failed[:10]:
        lines.append(f"• {check.get('check_name')}: {check.get('message', '')[:200]}")

    return RenderedMessage(
        subject=subject,
        text="\n".join(lines) + "\n",
        payload={
            "alert_type": "escalation",
            "escalation_level": level,
            "escalation_level_text": data.get("escalation_level_text"),
            "urgency": data.get("urgency"),
            **data,
        },
    )


def _resolved(data: dict[str, Any]) -> RenderedMessage:
    name = data.get("target_name") or data.get("target_id", "?")
    return RenderedMessage(
        subject=f"RESOLVED: {name}",
        text=(
            f"{_EMOJI[0]} *Escalation resolved*\n"
            f"Target: `{name}` ({data.get('target_url', '')})\n"
            f"Reason: {data.get('resolution_reason', 'tests_passing')}\n"
        ),
        payload={"alert_type": "resolution", **data},
    )


TEMPLATES = {
    "escalation": _escalation,
    "escalation_resolved": _resolved,
}
