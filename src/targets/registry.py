"""Target registry — loads targets.yaml and provides typed models.

Single source of truth for which websites are scanned, with which checks,
how often, and who hears about failures.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import yaml

logger = logging.getLogger(__name__)

REGISTRY_PATH = Path(__file__).parent.parent.parent / "targets.yaml"

PRIORITIES = ("low", "normal", "high", "urgent")


# ── Data models ──────────────────────────────────────────────────────────────


@dataclass
class TargetCheck:
    """One enabled check for a target, with per-target overrides."""

    name: str
    inverted: bool = False  # expected failure: swap pass/fail
    timeout_override: float | None = None
    max_retries: int | None = None


@dataclass
class Target:
    """A registered website."""

    id: str
    url: str
    name: str = ""
    scan_interval_days: float = 1.0
    priority: str = "normal"  # low | normal | high | urgent
    enabled: bool = True
    checks: list[TargetCheck] = field(default_factory=list)
    notification_channels: dict[str, str] = field(default_factory=dict)  # channel -> recipient
    tags: list[str] = field(default_factory=list)

    @property
    def hostname(self) -> str:
        return urlsplit(self.url).hostname or self.url

    def check_config(self, name: str) -> TargetCheck:
        return next((c for c in self.checks if c.name == name), TargetCheck(name=name))

    @property
    def check_names(self) -> list[str]:
        return [c.name for c in self.checks]


# ── Registry ─────────────────────────────────────────────────────────────────


class TargetRegistry:
    """Loads and caches targets from targets.yaml."""

    def __init__(self, path: Path | str | None = None, targets: list[Target] | None = None) -> None:
        self._path = Path(path) if path else REGISTRY_PATH
        self._targets: list[Target] = list(targets or [])
        self._loaded = targets is not None

    def load(self, force: bool = False) -> list[Target]:
        """Parse targets.yaml and return the Target list."""
        if self._loaded and not force:
            return self._targets

        self._targets = []
        if not self._path.exists():
            logger.warning("Targets file not found: %s", self._path)
            self._loaded = True
            return self._targets

        try:
            raw = yaml.safe_load(self._path.read_text(encoding="utf-8")) or {}
        except Exception as e:
            logger.error("Failed to parse %s: %s", self._path, e)
            self._loaded = True
            return self._targets

        for entry in raw.get("targets", []) or []:
            try:
                self._targets.append(parse_target(entry))
            except Exception as e:
                logger.warning("Skipping malformed target entry: %s", e)

        self._loaded = True
        logger.info("Loaded %d targets from registry", len(self._targets))
        return self._targets

    @property
    def targets(self) -> list[Target]:
        return self.load()

    def get(self, target_id: str) -> Target | None:
        return next((t for t in self.targets if t.id == target_id), None)

    def enabled(self) -> list[Target]:
        return [t for t in self.targets if t.enabled]

    def reload(self) -> list[Target]:
        """Force reload from disk."""
        return self.load(force=True)

    def to_dict(self) -> list[dict[str, Any]]:
        """Serialize all targets for the API."""
        return [target_to_dict(t) for t in self.targets]


# ── Parsers ──────────────────────────────────────────────────────────────────


def parse_target(raw: dict[str, Any]) -> Target:
    checks = []
    for c in raw.get("checks") or []:
        if isinstance(c, str):
            # Short form: "- http_status_check"
            checks.append(TargetCheck(name=c))
            continue
        timeout = c.get("timeout_override")
        retries = c.get("max_retries")
        checks.append(
            TargetCheck(
                name=c["name"],
                inverted=bool(c.get("inverted", False)),
                timeout_override=float(timeout) if timeout is not None else None,
                max_retries=int(retries) if retries is not None else None,
            )
        )

    priority = str(raw.get("priority", "normal")).lower()
    if priority not in PRIORITIES:
        logger.warning("Target %s: unknown priority %r, using normal", raw.get("id"), priority)
        priority = "normal"

    return Target(
        id=str(raw["id"]),
        url=raw["url"],
        name=raw.get("name", raw["id"]),
        scan_interval_days=float(raw.get("scan_interval_days", 1.0)),
        priority=priority,
        enabled=bool(raw.get("enabled", True)),
        checks=checks,
        notification_channels=dict(raw.get("notification_channels") or {}),
        tags=raw.get("tags") or [],
    )


def target_to_dict(t: Target) -> dict[str, Any]:
    return {
        "id": t.id,
        "name": t.name,
        "url": t.url,
        "scan_interval_days": t.scan_interval_days,
        "priority": t.priority,
        "enabled": t.enabled,
        "checks": [
            {
                "name": c.name,
                "inverted": c.inverted,
                "timeout_override": c.timeout_override,
                "max_retries": c.max_retries,
            }
            for c in t.checks
        ],
        "notification_channels": sorted(t.notification_channels),
        "tags": t.tags,
    }
