"""Target provider — registered websites loaded from targets.yaml."""

from .registry import Target, TargetCheck, TargetRegistry, parse_target
