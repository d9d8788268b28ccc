"""Consensus algorithms.

``compute_consensus`` reduces the feedback for one item to a single
decision. Four algorithms share one contract and are dispatched through
a closed table keyed by ConsensusAlgorithm:

- majority: plain approval rate against the threshold.
- weighted: votes weighted by expertise, native status and confidence.
- supermajority: majority with the threshold raised to at least 0.75.
- delphi: weighted with boosted top-tier weights, then inflated level and
  confidence to approximate the convergence of a multi-round Delphi panel.
  It is computed from a single round of feedback.

All algorithms finish with improvement aggregation and the composite
consensus score.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from quorum.consensus.improvements import aggregate_comments, aggregate_improvements
from quorum.schemas.consensus import ConsensusAlgorithm, ConsensusOptions, ConsensusResult
from quorum.schemas.feedback import ExpertiseLevel, FeedbackEntry

logger = logging.getLogger(__name__)

SUPERMAJORITY_FLOOR = 0.75

DELPHI_WEIGHTS: dict[ExpertiseLevel, float] = {
    ExpertiseLevel.EXPERT: 1.5,
    ExpertiseLevel.FORMATEUR: 1.8,
    ExpertiseLevel.CHERCHEUR: 2.0,
}
DELPHI_NATIVE_BONUS = 0.5
DELPHI_LEVEL_FACTOR = 1.2
DELPHI_EXPERTISE_BOOST = 0.3
DELPHI_NATIVE_BOOST = 0.2

# Composite score weights: level, confidence, agreement, participation
SCORE_WEIGHTS = (0.4, 0.3, 0.2, 0.1)
FULL_PARTICIPATION = 10


@dataclass(frozen=True)
class Outcome:
    """Algorithm-specific part of a consensus result."""

    approved: bool
    approval_rate: float
    consensus_level: float
    confidence: float
    agreement_level: float | None = None


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def agreement_level(entries: Sequence[FeedbackEntry]) -> float:
    """Unweighted majority proportion rescaled from [0.5, 1] to [0, 1]."""
    if len(entries) <= 1:
        return 1.0
    approvals = sum(1 for e in entries if e.approved)
    majority = max(approvals, len(entries) - approvals) / len(entries)
    return _clamp((majority - 0.5) * 2)


def confidence_level(entries: Sequence[FeedbackEntry], approved: bool) -> float:
    """Average explicit confidence, scaled by agreement with the outcome.

    Entries agreeing with *approved* count ×1.2, dissenters ×0.8. Without
    any explicit confidence the agreement level is used instead.
    """
    adjusted = [
        e.confidence * (1.2 if e.approved == approved else 0.8)
        for e in entries
        if e.confidence is not None
    ]
    if not adjusted:
        return agreement_level(entries)
    return _clamp(sum(adjusted) / len(adjusted))


def entry_weight(entry: FeedbackEntry, options: ConsensusOptions) -> float:
    """Vote weight of one entry under the weighted algorithm."""
    weight = 1.0
    if entry.expertise_level is not None:
        weight *= options.expert_weights.get(entry.expertise_level, 1.0)
    if entry.is_native_validator:
        weight *= 1 + options.native_validator_bonus
    if entry.confidence is not None:
        weight *= 0.5 + 0.5 * entry.confidence
    return weight


def _rate_outcome(
    entries: Sequence[FeedbackEntry],
    rate: float,
    threshold: float,
) -> tuple[bool, float, float]:
    approved = rate >= threshold
    level = _clamp(abs(rate - 0.5) * 2)
    return approved, level, confidence_level(entries, approved)


def majority(entries: Sequence[FeedbackEntry], options: ConsensusOptions) -> Outcome:
    approvals = sum(1 for e in entries if e.approved)
    rate = approvals / len(entries) if entries else 0.0
    approved, level, confidence = _rate_outcome(entries, rate, options.approval_threshold)
    return Outcome(approved, rate, level, confidence)


def supermajority(entries: Sequence[FeedbackEntry], options: ConsensusOptions) -> Outcome:
    raised = options.model_copy(update={
        "approval_threshold": max(options.approval_threshold, SUPERMAJORITY_FLOOR),
    })
    return majority(entries, raised)


def weighted(entries: Sequence[FeedbackEntry], options: ConsensusOptions) -> Outcome:
    total = approving = 0.0
    for entry in entries:
        weight = entry_weight(entry, options)
        total += weight
        if entry.approved:
            approving += weight
    rate = approving / total if total > 0 else 0.0
    approved, level, confidence = _rate_outcome(entries, rate, options.approval_threshold)
    return Outcome(approved, rate, level, confidence, agreement_level(entries))


def delphi(entries: Sequence[FeedbackEntry], options: ConsensusOptions) -> Outcome:
    boosted = options.model_copy(update={
        "expert_weights": {**options.expert_weights, **DELPHI_WEIGHTS},
        "native_validator_bonus": DELPHI_NATIVE_BONUS,
    })
    base = weighted(entries, boosted)

    n = max(1, len(entries))
    high = sum(1 for e in entries if e.expertise_level in DELPHI_WEIGHTS)
    native = sum(1 for e in entries if e.is_native_validator)
    boost = high / n * DELPHI_EXPERTISE_BOOST + native / n * DELPHI_NATIVE_BOOST

    logger.debug(
        "Delphi panel: %d high-expertise, %d native of %d", high, native, len(entries),
    )
    return Outcome(
        approved=base.approved,
        approval_rate=base.approval_rate,
        consensus_level=_clamp(base.consensus_level * DELPHI_LEVEL_FACTOR),
        confidence=_clamp(base.confidence + boost),
        agreement_level=base.agreement_level,
    )


ALGORITHMS: dict[
    ConsensusAlgorithm, Callable[[Sequence[FeedbackEntry], ConsensusOptions], Outcome]
] = {
    ConsensusAlgorithm.MAJORITY: majority,
    ConsensusAlgorithm.WEIGHTED: weighted,
    ConsensusAlgorithm.SUPERMAJORITY: supermajority,
    ConsensusAlgorithm.DELPHI: delphi,
}


def consensus_score(
    consensus_level: float,
    confidence: float,
    agreement: float | None,
    expert_count: int,
) -> float:
    """Composite 0-1 score; a missing agreement level counts as 0."""
    w_level, w_conf, w_agree, w_part = SCORE_WEIGHTS
    participation = min(1.0, expert_count / FULL_PARTICIPATION)
    return _clamp(
        w_level * consensus_level
        + w_conf * confidence
        + w_agree * (agreement or 0.0)
        + w_part * participation
    )


def compute_consensus(
    validation_id: str,
    entries: Sequence[FeedbackEntry],
    options: ConsensusOptions | None = None,
) -> ConsensusResult:
    """Reduce *entries* to one consensus decision.

    With fewer than ``options.min_participants`` entries no algorithm runs:
    the result is unapproved with zero level, confidence and score.

    Args:
        validation_id: Item the feedback belongs to.
        entries: Feedback snapshot for the item.
        options: Algorithm and tuning; defaults to weighted.

    Returns:
        A fresh ConsensusResult.
    """
    opts = options or ConsensusOptions()
    approvals = sum(1 for e in entries if e.approved)
    counts = {
        "validation_id": validation_id,
        "algorithm": opts.algorithm,
        "expert_count": len(entries),
        "native_expert_count": sum(1 for e in entries if e.is_native_validator),
        "approval_count": approvals,
        "rejection_count": len(entries) - approvals,
        "expert_scores": [e.score for e in entries if e.score is not None],
    }

    if len(entries) < opts.min_participants:
        logger.debug(
            "Consensus for %s skipped: %d of %d participants",
            validation_id, len(entries), opts.min_participants,
        )
        return ConsensusResult(**counts)

    outcome = ALGORITHMS[opts.algorithm](entries, opts)
    result = ConsensusResult(
        **counts,
        approved=outcome.approved,
        approval_rate=_clamp(outcome.approval_rate),
        consensus_level=outcome.consensus_level,
        confidence=outcome.confidence,
        agreement_level=outcome.agreement_level,
        aggregated_comments=aggregate_comments(entries),
        aggregated_improvements=aggregate_improvements(entries),
        consensus_score=consensus_score(
            outcome.consensus_level, outcome.confidence,
            outcome.agreement_level, len(entries),
        ),
    )
    logger.info(
        "Consensus for %s (%s): approved=%s level=%.2f confidence=%.2f",
        validation_id, opts.algorithm, result.approved,
        result.consensus_level, result.confidence,
    )
    return result
