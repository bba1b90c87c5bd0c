"""Check plugins — interface, registry, built-in website checks."""

from .base import CheckContext, CheckOutcome, CheckPlugin, CheckStatus
from .builtin import builtin_checks, default_registry
from .registry import CheckRegistry
