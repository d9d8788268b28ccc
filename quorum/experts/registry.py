"""Expert registry.

Stores expert profiles and derives per-expert statistics from feedback
history. Feedback and consensus data are read through two lookups
supplied by the composition root, so the registry holds no reference to
the other managers.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import BaseModel, ValidationError

from quorum.events.bus import EventBus, EventType
from quorum.pagination import paginate
from quorum.results import failure, from_validation_error, guarded, not_found, success
from quorum.schemas.consensus import ConsensusResult
from quorum.schemas.expert import ExpertProfile, ExpertSearchCriteria, ExpertStats
from quorum.schemas.feedback import ExpertiseLevel, FeedbackEntry
from quorum.schemas.result import ErrorCode, PaginationOptions, Result

logger = logging.getLogger(__name__)

FeedbackLookup = Callable[[str], list[FeedbackEntry]]
ConsensusLookup = Callable[[], Mapping[str, ConsensusResult]]


def _no_feedback(expert_id: str) -> list[FeedbackEntry]:
    return []


def _no_results() -> Mapping[str, ConsensusResult]:
    return {}


class ExpertRegistry:
    """Expert profiles plus derived activity statistics.

    Args:
        bus: Event bus for ExpertAdded.
        feedback_lookup: Returns every feedback entry given by an expert.
        consensus_lookup: Returns the current consensus result per item.
    """

    def __init__(
        self,
        bus: EventBus,
        feedback_lookup: FeedbackLookup = _no_feedback,
        consensus_lookup: ConsensusLookup = _no_results,
    ) -> None:
        self._bus = bus
        self._feedback_lookup = feedback_lookup
        self._consensus_lookup = consensus_lookup
        self._experts: dict[str, ExpertProfile] = {}

    @guarded("Failed to register expert")
    async def register(self, profile: ExpertProfile | Mapping[str, Any]) -> Result:
        """Add a new expert; re-registering an id fails with DUPLICATE_ENTRY."""
        if not isinstance(profile, ExpertProfile):
            try:
                profile = ExpertProfile.model_validate(dict(profile))
            except ValidationError as e:
                return from_validation_error(e)
        if profile.id in self._experts:
            return failure(
                ErrorCode.DUPLICATE_ENTRY,
                f"Expert already registered: {profile.id}",
                {"id": profile.id},
            )
        self._experts[profile.id] = profile
        logger.info("Expert %s registered (%s)", profile.id, profile.expertise_level)
        await self._bus.publish(None, EventType.EXPERT_ADDED, {
            "expert_id": profile.id,
            "expertise_level": profile.expertise_level.value,
            "is_native": profile.is_native,
        })
        return success(profile)

    def get(self, expert_id: str) -> Result:
        profile = self._experts.get(expert_id)
        if profile is None:
            return not_found("expert", expert_id)
        return success(profile)

    def level_of(self, expert_id: str) -> ExpertiseLevel | None:
        profile = self._experts.get(expert_id)
        return profile.expertise_level if profile else None

    def update(self, expert_id: str, patch: Mapping[str, Any]) -> Result:
        """Apply *patch* to a profile; the id cannot change."""
        current = self._experts.get(expert_id)
        if current is None:
            return not_found("expert", expert_id)
        merged = {**current.model_dump(), **dict(patch), "id": expert_id}
        try:
            updated = ExpertProfile.model_validate(merged)
        except ValidationError as e:
            return from_validation_error(e)
        self._experts[expert_id] = updated
        return success(updated)

    def stats(self, expert_id: str) -> Result:
        """Derive approval rate, consensus alignment and activity for an expert."""
        profile = self._experts.get(expert_id)
        if profile is None:
            return not_found("expert", expert_id)

        entries = self._feedback_lookup(expert_id)
        stats = ExpertStats(expert_id=expert_id, domains=list(profile.domains))
        if not entries:
            return success(stats)

        approved = sum(1 for e in entries if e.approved)
        scores = [e.score for e in entries if e.score is not None]
        results = self._consensus_lookup()
        decided = [e for e in entries if e.validation_id in results]
        aligned = sum(1 for e in decided if e.approved == results[e.validation_id].approved)

        return success(stats.model_copy(update={
            "total_validations": len(entries),
            "approved_count": approved,
            "rejection_count": len(entries) - approved,
            "approval_rate": approved / len(entries),
            "consensus_alignment": aligned / len(decided) if decided else 0.0,
            "average_score": sum(scores) / len(scores) if scores else None,
            "last_activity": max(e.timestamp for e in entries),
        }))

    def search(
        self,
        criteria: ExpertSearchCriteria | None = None,
        page: PaginationOptions | None = None,
    ) -> Result:
        """Paged experts matching every given criterion."""
        criteria = criteria or ExpertSearchCriteria()
        matches = [p for p in self._experts.values() if _matches(p, criteria)]
        return success(paginate(matches, page))

    def count(self) -> int:
        return len(self._experts)

    def clear(self) -> None:
        self._experts.clear()


def _matches(profile: ExpertProfile, criteria: ExpertSearchCriteria) -> bool:
    if (
        criteria.min_expertise_level is not None
        and profile.expertise_level.rank < criteria.min_expertise_level.rank
    ):
        return False
    if criteria.native_only and not profile.is_native:
        return False
    if criteria.domains and not set(criteria.domains) & set(profile.domains):
        return False
    if criteria.specialties and not set(criteria.specialties) & set(profile.specialties):
        return False
    if criteria.min_experience is not None and profile.experience < criteria.min_experience:
        return False
    if criteria.min_reliability is not None and (
        profile.reliability_score is None
        or profile.reliability_score < criteria.min_reliability
    ):
        return False
    return True
