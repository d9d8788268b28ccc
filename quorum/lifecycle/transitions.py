"""Lifecycle transition table.

Pure data plus two helpers; the state machine consults this table on
every advance.
"""

from __future__ import annotations

from quorum.schemas.validation import LifecycleState as S

VALID_TRANSITIONS: dict[S, frozenset[S]] = {
    S.UNKNOWN: frozenset({S.SUBMITTED}),
    S.SUBMITTED: frozenset({S.PENDING, S.IN_REVIEW, S.CANCELLED}),
    S.PENDING: frozenset({S.IN_REVIEW, S.CANCELLED, S.EXPIRED}),
    S.IN_REVIEW: frozenset({
        S.FEEDBACK_COLLECTING, S.CANCELLED, S.NEEDS_IMPROVEMENT, S.APPROVED, S.REJECTED,
    }),
    S.FEEDBACK_COLLECTING: frozenset({
        S.CONSENSUS_CALCULATING, S.NEEDS_IMPROVEMENT, S.CANCELLED,
    }),
    S.CONSENSUS_CALCULATING: frozenset({
        S.CONSENSUS_REACHED, S.NEEDS_IMPROVEMENT, S.CANCELLED,
    }),
    S.CONSENSUS_REACHED: frozenset({S.APPROVED, S.REJECTED, S.NEEDS_IMPROVEMENT}),
    S.NEEDS_IMPROVEMENT: frozenset({S.SUBMITTED, S.CANCELLED}),
    S.APPROVED: frozenset({S.INTEGRATED}),
    S.REJECTED: frozenset({S.SUBMITTED, S.CANCELLED}),
    S.INTEGRATED: frozenset(),
    S.CANCELLED: frozenset(),
    S.EXPIRED: frozenset({S.SUBMITTED}),
}

# States in which new feedback is accepted
FEEDBACK_OPEN_STATES: frozenset[S] = frozenset({
    S.SUBMITTED, S.PENDING, S.IN_REVIEW, S.FEEDBACK_COLLECTING,
})

# States after which consensus may not be recomputed
CONSENSUS_CLOSED_STATES: frozenset[S] = frozenset({
    S.CONSENSUS_REACHED, S.APPROVED, S.REJECTED, S.INTEGRATED,
})


def can_transition(current: S, target: S) -> bool:
    """Whether *current* → *target* is in the table."""
    return target in VALID_TRANSITIONS.get(current, frozenset())


def legal_targets(current: S) -> list[S]:
    """Legal targets from *current*, in declaration order of LifecycleState."""
    allowed = VALID_TRANSITIONS.get(current, frozenset())
    return [state for state in S if state in allowed]
