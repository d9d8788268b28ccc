"""Improvement aggregation and comment merging."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any

from quorum.schemas.consensus import ConsensusImprovement, ImplementationDifficulty
from quorum.schemas.feedback import FeedbackEntry, ImprovementProposal, Priority

logger = logging.getLogger(__name__)

PRIORITY_WEIGHTS: dict[Priority, int] = {
    Priority.LOW: 1,
    Priority.MEDIUM: 2,
    Priority.HIGH: 3,
}

MAX_COMMENTS = 5


def _value_key(value: Any) -> str:
    """Stable grouping key so equal values of any JSON type tally together."""
    return json.dumps(value, sort_keys=True, default=str)


def difficulty_for(support_percentage: float) -> ImplementationDifficulty:
    """Map a support percentage (0-100) to an effort estimate."""
    if support_percentage < 60:
        return ImplementationDifficulty.COMPLEX
    if support_percentage < 80:
        return ImplementationDifficulty.MEDIUM
    return ImplementationDifficulty.EASY


def aggregate_improvements(
    entries: Sequence[FeedbackEntry],
) -> dict[str, ConsensusImprovement]:
    """Merge every entry's suggestions into one winning value per field.

    Within a field the proposed value with the most occurrences wins;
    ties go to the higher priority sum, then to the value seen first.
    """
    grouped: dict[str, list[ImprovementProposal]] = {}
    for entry in entries:
        for suggestion in entry.suggestions:
            grouped.setdefault(suggestion.field, []).append(suggestion)

    merged: dict[str, ConsensusImprovement] = {}
    for field, suggestions in grouped.items():
        # value key -> [count, priority sum, original value]
        tallies: dict[str, list[Any]] = {}
        for suggestion in suggestions:
            tally = tallies.setdefault(
                _value_key(suggestion.proposed_value), [0, 0, suggestion.proposed_value],
            )
            tally[0] += 1
            tally[1] += PRIORITY_WEIGHTS[suggestion.priority]

        best_count, _, best_value = max(tallies.values(), key=lambda t: (t[0], t[1]))
        support = best_count / len(suggestions) * 100
        merged[field] = ConsensusImprovement(
            field=field,
            proposed_value=best_value,
            confidence=support / 100,
            support_percentage=support,
            implementation_difficulty=difficulty_for(support),
        )
        logger.debug("Improvement for %s: %r (%.0f%% support)", field, best_value, support)
    return merged


def aggregate_comments(entries: Sequence[FeedbackEntry]) -> list[str]:
    """Unique non-blank comments in arrival order, at most MAX_COMMENTS."""
    seen: list[str] = []
    for entry in entries:
        comment = entry.comments
        if comment and comment.strip() and comment not in seen:
            seen.append(comment)
    return seen[:MAX_COMMENTS]
