"""Expert profile and statistics schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from quorum.schemas.feedback import ExpertiseLevel


class ExpertProfile(BaseModel):
    """A registered reviewer."""

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    expertise_level: ExpertiseLevel
    is_native: bool = False
    domains: list[str] = Field(default_factory=list)
    specialties: list[str] = Field(default_factory=list)
    experience: int = Field(default=0, ge=0, description="Years of experience")
    affiliation: str | None = None
    reliability_score: float | None = Field(default=None, ge=0, le=1)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ExpertStats(BaseModel):
    """Activity statistics derived from an expert's feedback history."""

    expert_id: str
    total_validations: int = 0
    approved_count: int = 0
    rejection_count: int = 0
    approval_rate: float = 0.0
    consensus_alignment: float = Field(
        default=0.0,
        description="Share of decided items where the expert voted with the consensus",
    )
    average_score: float | None = None
    last_activity: datetime | None = None
    domains: list[str] = Field(default_factory=list)


class ExpertSearchCriteria(BaseModel):
    """Filters for search_experts. Every given filter must match."""

    min_expertise_level: ExpertiseLevel | None = None
    native_only: bool = False
    domains: list[str] | None = Field(
        default=None, description="Match experts covering any of these domains",
    )
    specialties: list[str] | None = None
    min_experience: int | None = None
    min_reliability: float | None = None
