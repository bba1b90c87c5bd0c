"""Check registry — maps check name to plugin instance.

Built explicitly at start-up and passed to the engine; there is no
module-level registry. Lookups read an immutable snapshot so concurrent
workers never take a lock; registration and hot-reload swap the snapshot
under an exclusive lock.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from types import MappingProxyType
from typing import Any

from src.errors import DuplicateCheckError, UnknownCheckError

from .base import CheckPlugin

logger = logging.getLogger(__name__)


class CheckRegistry:
    """Name → plugin map with enable/disable support."""

    def __init__(self, plugins: Iterable[CheckPlugin] = ()) -> None:
        self._lock = threading.Lock()
        self._plugins: MappingProxyType[str, CheckPlugin] = MappingProxyType({})
        self._disabled: frozenset[str] = frozenset()
        for plugin in plugins:
            self.register(plugin)

    def register(self, plugin: CheckPlugin) -> None:
        """Add a plugin. Raises ``DuplicateCheckError`` if the name is taken."""
        if not plugin.name:
            raise ValueError(f"{type(plugin).__name__} has no name")
        with self._lock:
            if plugin.name in self._plugins:
                raise DuplicateCheckError(plugin.name)
            updated = dict(self._plugins)
            updated[plugin.name] = plugin
            self._plugins = MappingProxyType(updated)
        logger.debug("Registered check %s (%s)", plugin.name, plugin.category)

    def replace(self, plugin: CheckPlugin) -> None:
        """Hot-reload: swap in a new implementation for an existing name."""
        with self._lock:
            if plugin.name not in self._plugins:
                raise UnknownCheckError(plugin.name)
            updated = dict(self._plugins)
            updated[plugin.name] = plugin
            self._plugins = MappingProxyType(updated)
        logger.info("Reloaded check %s", plugin.name)

    def get(self, name: str) -> CheckPlugin:
        """Return the plugin for ``name``. Raises ``UnknownCheckError``."""
        try:
            return self._plugins[name]
        except KeyError:
            raise UnknownCheckError(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._plugins

    def __len__(self) -> int:
        return len(self._plugins)

    def is_enabled(self, name: str) -> bool:
        self.get(name)
        return name not in self._disabled

    def enable(self, name: str) -> None:
        with self._lock:
            if name not in self._plugins:
                raise UnknownCheckError(name)
            self._disabled = self._disabled - {name}
        logger.info("Enabled check %s", name)

    def disable(self, name: str) -> None:
        with self._lock:
            if name not in self._plugins:
                raise UnknownCheckError(name)
            self._disabled = self._disabled | {name}
        logger.info("Disabled check %s", name)

    def list(
        self,
        enabled: bool | None = None,
        category: str | None = None,
    ) -> list[CheckPlugin]:
        """All registered checks, optionally filtered by enabled state and category."""
        plugins = self._plugins
        disabled = self._disabled
        result = []
        for name in sorted(plugins):
            plugin = plugins[name]
            if enabled is not None and (name not in disabled) != enabled:
                continue
            if category is not None and plugin.category != category:
                continue
            result.append(plugin)
        return result

    def to_dict(self) -> list[dict[str, Any]]:
        """Serialize all checks for the API."""
        return [
            {**p.info(), "enabled": p.name not in self._disabled}
            for p in self.list()
        ]
