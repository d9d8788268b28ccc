"""Validation item schemas.

Defines the content payloads under review (sign, translation, expression,
document), the inbound ValidationRequest, the accepted ValidationItem, the
closed LifecycleState set, and the append-only StateChange audit record.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(UTC)


class LifecycleState(StrEnum):
    """Lifecycle state of a validation item."""

    UNKNOWN = "unknown"
    SUBMITTED = "submitted"
    PENDING = "pending"
    IN_REVIEW = "in_review"
    FEEDBACK_COLLECTING = "feedback_collecting"
    CONSENSUS_CALCULATING = "consensus_calculating"
    CONSENSUS_REACHED = "consensus_reached"
    NEEDS_IMPROVEMENT = "needs_improvement"
    APPROVED = "approved"
    REJECTED = "rejected"
    INTEGRATED = "integrated"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


TERMINAL_STATES: frozenset[LifecycleState] = frozenset({
    LifecycleState.APPROVED,
    LifecycleState.REJECTED,
    LifecycleState.INTEGRATED,
    LifecycleState.CANCELLED,
    LifecycleState.EXPIRED,
})


class ContentType(StrEnum):
    """Kind of item submitted for validation."""

    SIGN = "sign"
    TRANSLATION = "translation"
    EXPRESSION = "expression"
    DOCUMENT = "document"


class SignParameters(BaseModel):
    """Formational parameters of a sign."""

    handshape: str
    location: str
    movement: str
    orientation: str
    expression: str | None = None


class SignContent(BaseModel):
    """A single sign submitted for validation."""

    type: Literal["sign"] = "sign"
    sign_id: str = Field(description="Identifier of the sign in the lexicon")
    parameters: SignParameters
    video: str | None = Field(default=None, description="URL of a reference video")
    variants: list[str] = Field(default_factory=list)


class TranslationContent(BaseModel):
    """A text-to-sign translation submitted for validation."""

    type: Literal["translation"] = "translation"
    source_text: str
    target_sign: str
    context: str | None = None
    alternative_translations: list[str] = Field(default_factory=list)


class ExpressionContent(BaseModel):
    """A composite expression (several signs plus intensity)."""

    type: Literal["expression"] = "expression"
    name: str
    components: list[str] = Field(min_length=1)
    intensity: float = Field(ge=0, le=10, description="Expressive intensity 0-10")
    usage_context: list[str] = Field(default_factory=list)
    video: str | None = None


class DocumentFormat(StrEnum):
    """Accepted document formats."""

    TEXT = "text"
    HTML = "html"
    MARKDOWN = "markdown"
    PDF = "pdf"


class DocumentContent(BaseModel):
    """A written document submitted for validation."""

    type: Literal["document"] = "document"
    title: str
    content: str
    language: str
    format: DocumentFormat = DocumentFormat.TEXT


ValidationContent = Annotated[
    SignContent | TranslationContent | ExpressionContent | DocumentContent,
    Field(discriminator="type"),
]


class ValidationRequest(BaseModel):
    """Inbound request to put an item under collaborative validation."""

    content: ValidationContent
    requester_id: str = Field(min_length=1, description="Who submitted the item")
    min_feedback_required: int | None = Field(
        default=None,
        gt=0,
        description="Feedback count that moves the item to feedback_collecting "
        "(None uses the engine default)",
    )
    context: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    requires_native_validation: bool = False
    due_date: datetime | None = None


class ValidationItem(ValidationRequest):
    """An accepted request. Frozen: lifecycle and feedback live beside it."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    min_feedback_required: int = Field(default=3, gt=0)
    submitted_at: datetime = Field(default_factory=_utcnow)


class StateChange(BaseModel):
    """One entry of an item's append-only lifecycle history."""

    model_config = ConfigDict(frozen=True)

    validation_id: str
    previous_state: LifecycleState
    new_state: LifecycleState
    changed_by: str = Field(default="system", description="Actor that requested the change")
    changed_at: datetime = Field(default_factory=_utcnow)
    reason: str | None = None
    unchanged: bool = Field(
        default=False,
        description="True when the target equalled the current state",
    )


class SearchCriteria(BaseModel):
    """Filters for search_validations. Every given filter must match."""

    states: list[LifecycleState] | None = None
    requester_id: str | None = None
    content_types: list[ContentType] | None = None
    expert_ids: list[str] | None = Field(
        default=None,
        description="Match items with feedback from any of these experts",
    )
    submitted_after: datetime | None = None
    submitted_before: datetime | None = None
    keywords: list[str] | None = Field(
        default=None,
        description="All keywords must appear (case-insensitive) in the item JSON",
    )
    metadata: dict[str, Any] | None = Field(
        default=None, description="Subset match against item metadata",
    )


class ValidationStats(BaseModel):
    """System-wide counters reported by get_system_stats."""

    total_validations: int = 0
    by_state: dict[str, int] = Field(default_factory=dict)
    pending: int = Field(default=0, description="Items not yet in a terminal state")
    completed: int = Field(default=0, description="Items in a terminal state")
    average_consensus_level: float = 0.0
    expert_count: int = 0
    feedback_count: int = 0
    subscription_count: int = 0
