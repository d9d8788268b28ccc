"""Lifecycle tracking for validation items."""

from quorum.lifecycle.machine import LifecycleStateMachine
from quorum.lifecycle.transitions import (
    CONSENSUS_CLOSED_STATES,
    FEEDBACK_OPEN_STATES,
    VALID_TRANSITIONS,
    can_transition,
    legal_targets,
)

__all__ = [
    "CONSENSUS_CLOSED_STATES",
    "FEEDBACK_OPEN_STATES",
    "LifecycleStateMachine",
    "VALID_TRANSITIONS",
    "can_transition",
    "legal_targets",
]
