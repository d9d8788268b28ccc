"""Expert profiles and statistics."""

from quorum.experts.registry import ConsensusLookup, ExpertRegistry, FeedbackLookup

__all__ = ["ConsensusLookup", "ExpertRegistry", "FeedbackLookup"]
