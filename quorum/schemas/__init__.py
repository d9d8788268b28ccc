"""Quorum schema definitions.

All Pydantic v2 models used across the lifecycle, feedback, consensus,
and expert components.
"""

from quorum.schemas.config import EngineConfig
from quorum.schemas.consensus import (
    ConsensusAlgorithm,
    ConsensusImprovement,
    ConsensusOptions,
    ConsensusResult,
    ImplementationDifficulty,
)
from quorum.schemas.expert import ExpertProfile, ExpertSearchCriteria, ExpertStats
from quorum.schemas.feedback import (
    ExpertiseLevel,
    FeedbackEntry,
    ImprovementProposal,
    Priority,
)
from quorum.schemas.result import (
    ErrorCode,
    Page,
    PaginationOptions,
    Result,
    ResultError,
)
from quorum.schemas.validation import (
    ContentType,
    DocumentContent,
    ExpressionContent,
    LifecycleState,
    SearchCriteria,
    SignContent,
    SignParameters,
    StateChange,
    TranslationContent,
    ValidationItem,
    ValidationRequest,
    ValidationStats,
)

__all__ = [
    "ConsensusAlgorithm",
    "ConsensusImprovement",
    "ConsensusOptions",
    "ConsensusResult",
    "ContentType",
    "DocumentContent",
    "EngineConfig",
    "ErrorCode",
    "ExpertProfile",
    "ExpertSearchCriteria",
    "ExpertStats",
    "ExpertiseLevel",
    "ExpressionContent",
    "FeedbackEntry",
    "ImplementationDifficulty",
    "ImprovementProposal",
    "LifecycleState",
    "Page",
    "PaginationOptions",
    "Priority",
    "Result",
    "ResultError",
    "SearchCriteria",
    "SignContent",
    "SignParameters",
    "StateChange",
    "TranslationContent",
    "ValidationItem",
    "ValidationRequest",
    "ValidationStats",
]
