"""Feedback collection and validation."""

from quorum.feedback.store import FeedbackStore
from quorum.feedback.validation import apply_patch, build_entry, check_fields

__all__ = [
    "FeedbackStore",
    "apply_patch",
    "build_entry",
    "check_fields",
]
