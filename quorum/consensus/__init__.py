"""Consensus computation for the Quorum engine.

Provides the four consensus algorithms, improvement aggregation, and the
manager that stores results and drives the lifecycle to a decision.
"""

from quorum.consensus.algorithms import (
    ALGORITHMS,
    agreement_level,
    compute_consensus,
    confidence_level,
    consensus_score,
    entry_weight,
)
from quorum.consensus.improvements import aggregate_comments, aggregate_improvements
from quorum.consensus.manager import ConsensusManager

__all__ = [
    "ALGORITHMS",
    "ConsensusManager",
    "aggregate_comments",
    "aggregate_improvements",
    "agreement_level",
    "compute_consensus",
    "confidence_level",
    "consensus_score",
    "entry_weight",
]
