"""Failure escalation with cooldown."""

from .evaluator import EscalationAction, EscalationDecision, EscalationEvaluator, EscalationPolicy
from .store import Escalation, EscalationState, EscalationStore
