"""Result envelope, error taxonomy, and pagination schemas.

Every public engine operation returns a Result: a success flag plus either
the payload or a typed error. Expected business failures (bad input,
illegal transitions, missing records) travel in the envelope instead of
being raised.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class ErrorCode(StrEnum):
    """Failure codes returned in a Result error."""

    # not-found
    VALIDATION_NOT_FOUND = "VALIDATION_NOT_FOUND"
    EXPERT_NOT_FOUND = "EXPERT_NOT_FOUND"
    FEEDBACK_NOT_FOUND = "FEEDBACK_NOT_FOUND"
    # state
    INVALID_STATE = "INVALID_STATE"
    STATE_TRANSITION_DENIED = "STATE_TRANSITION_DENIED"
    CONSENSUS_ALREADY_REACHED = "CONSENSUS_ALREADY_REACHED"
    # input
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    INVALID_DATA = "INVALID_DATA"
    # duplication
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    # lifecycle
    SYSTEM_NOT_INITIALIZED = "SYSTEM_NOT_INITIALIZED"
    # operational
    OPERATION_FAILED = "OPERATION_FAILED"
    CONSENSUS_CALCULATION_FAILED = "CONSENSUS_CALCULATION_FAILED"
    NOTIFICATION_FAILED = "NOTIFICATION_FAILED"
    TRANSACTION_FAILED = "TRANSACTION_FAILED"


# Only operational faults are worth a caller-side retry
RETRYABLE_CODES: frozenset[ErrorCode] = frozenset({
    ErrorCode.OPERATION_FAILED,
    ErrorCode.CONSENSUS_CALCULATION_FAILED,
    ErrorCode.NOTIFICATION_FAILED,
    ErrorCode.TRANSACTION_FAILED,
})


class ResultError(BaseModel):
    """Typed failure carried by a Result."""

    code: ErrorCode = Field(description="Machine-readable failure code")
    message: str = Field(description="Human-readable failure description")
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Structured context (offending field, legal states, ...)",
    )

    @property
    def retryable(self) -> bool:
        """Whether the failure is an operational fault a caller may retry."""
        return self.code in RETRYABLE_CODES


class Result(BaseModel, Generic[T]):
    """Uniform success/failure envelope."""

    success: bool = Field(description="Whether the operation succeeded")
    data: T | None = Field(default=None, description="Payload on success")
    error: ResultError | None = Field(
        default=None, description="Failure description when success is False",
    )

    @property
    def code(self) -> ErrorCode | None:
        """Shortcut to the error code, or None on success."""
        return self.error.code if self.error else None


class PaginationOptions(BaseModel):
    """Paging and sorting request for list-returning calls."""

    page: int = Field(default=1, description="1-based page number")
    limit: int = Field(default=10, description="Items per page (1-100)")
    sort_by: str | None = Field(
        default=None, description="Attribute to sort by (None keeps insertion order)",
    )
    sort_direction: str = Field(
        default="asc", description="'asc' or 'desc'",
    )


class Page(BaseModel, Generic[T]):
    """One page of a list-returning call."""

    items: list[T] = Field(default_factory=list, description="Items on this page")
    total: int = Field(default=0, ge=0, description="Total matching items")
    page: int = Field(default=1, ge=1, description="Page number returned")
    page_count: int = Field(
        default=0, ge=0, description="ceil(total / limit)",
    )
