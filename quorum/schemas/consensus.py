"""Consensus schemas.

Defines the algorithm selector and tuning options (ConsensusOptions), the
per-field merged suggestion (ConsensusImprovement), and the derived
decision for one item (ConsensusResult).
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from quorum.schemas.feedback import ExpertiseLevel


class ConsensusAlgorithm(StrEnum):
    """Closed set of consensus algorithms."""

    MAJORITY = "majority"
    WEIGHTED = "weighted"
    SUPERMAJORITY = "supermajority"
    DELPHI = "delphi"


class ImplementationDifficulty(StrEnum):
    """Effort estimate derived from how strongly a suggestion is supported."""

    EASY = "easy"
    MEDIUM = "medium"
    COMPLEX = "complex"


DEFAULT_EXPERT_WEIGHTS: dict[ExpertiseLevel, float] = {
    ExpertiseLevel.NOVICE: 0.7,
    ExpertiseLevel.INTERMEDIAIRE: 0.85,
    ExpertiseLevel.AVANCE: 1.0,
    ExpertiseLevel.EXPERT: 1.2,
    ExpertiseLevel.NATIF: 1.3,
    ExpertiseLevel.FORMATEUR: 1.4,
    ExpertiseLevel.CHERCHEUR: 1.5,
}


class ConsensusOptions(BaseModel):
    """Tuning knobs for compute_consensus."""

    algorithm: ConsensusAlgorithm = ConsensusAlgorithm.WEIGHTED
    approval_threshold: float = Field(
        default=0.7, ge=0, le=1,
        description="Approval rate at or above which the item is approved",
    )
    expert_weights: dict[ExpertiseLevel, float] = Field(
        default_factory=lambda: dict(DEFAULT_EXPERT_WEIGHTS),
        description="Expertise level → vote multiplier (missing levels weigh 1.0)",
    )
    native_validator_bonus: float = Field(
        default=0.25, ge=0,
        description="Extra weight fraction for native validators",
    )
    min_participants: int = Field(
        default=3, ge=1,
        description="Entries required before any algorithm runs",
    )


class ConsensusImprovement(BaseModel):
    """Winning suggestion for one field, merged across all feedback."""

    field: str
    proposed_value: Any
    confidence: float = Field(ge=0, le=1)
    support_percentage: float = Field(
        ge=0, le=100,
        description="Share of the field's suggestions backing this value (0-100)",
    )
    implementation_difficulty: ImplementationDifficulty


class ConsensusResult(BaseModel):
    """Collective decision for one validation item.

    Derived, not authoritative: recomputing overwrites the stored result.
    """

    validation_id: str
    approved: bool = False
    consensus_level: float = Field(default=0.0, ge=0, le=1)
    confidence: float = Field(default=0.0, ge=0, le=1)
    agreement_level: float | None = Field(
        default=None, ge=0, le=1,
        description="Unweighted agreement (weighted and delphi only)",
    )
    approval_rate: float = Field(default=0.0, ge=0, le=1)
    expert_count: int = 0
    native_expert_count: int = 0
    approval_count: int = 0
    rejection_count: int = 0
    algorithm: ConsensusAlgorithm = ConsensusAlgorithm.WEIGHTED
    expert_scores: list[float] = Field(default_factory=list)
    aggregated_comments: list[str] = Field(default_factory=list)
    aggregated_improvements: dict[str, ConsensusImprovement] = Field(
        default_factory=dict,
        description="Field name → winning improvement",
    )
    consensus_score: float = Field(
        default=0.0, ge=0, le=1,
        description="Composite of level, confidence, agreement and participation",
    )
    computed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
