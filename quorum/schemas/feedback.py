"""Feedback schemas.

An expert's judgment of one validation item: approve/reject plus optional
score, confidence, free-text comments, and improvement proposals.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ExpertiseLevel(StrEnum):
    """Ordered reviewer qualification, lowest first."""

    NOVICE = "novice"
    INTERMEDIAIRE = "intermediaire"
    AVANCE = "avance"
    EXPERT = "expert"
    NATIF = "natif"
    FORMATEUR = "formateur"
    CHERCHEUR = "chercheur"

    @property
    def rank(self) -> int:
        return list(ExpertiseLevel).index(self)


class Priority(StrEnum):
    """Priority of an improvement proposal."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ImprovementProposal(BaseModel):
    """A suggested change to one field of the item under review."""

    field: str = Field(description="Name of the field the change targets")
    current_value: Any = None
    proposed_value: Any = Field(description="Replacement value")
    reason: str = ""
    priority: Priority = Priority.MEDIUM


class FeedbackEntry(BaseModel):
    """An accepted feedback entry. Replaced, never mutated, on update."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    validation_id: str
    expert_id: str
    approved: bool
    is_native_validator: bool
    expertise_level: ExpertiseLevel | None = None
    score: float | None = Field(default=None, ge=0, le=10)
    confidence: float | None = Field(default=None, ge=0, le=1)
    comments: str | None = None
    suggestions: list[ImprovementProposal] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
