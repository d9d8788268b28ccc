"""Feedback store.

Holds every feedback entry per validation item, validates inbound
entries, and drives the two feedback-triggered lifecycle transitions:
``submitted → in_review`` on the first entry and ``→ feedback_collecting``
once the item's minimum feedback count is reached.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel

from quorum.events.bus import EventBus, EventType
from quorum.feedback.validation import apply_patch, as_mapping, build_entry
from quorum.lifecycle.machine import LifecycleStateMachine
from quorum.lifecycle.transitions import FEEDBACK_OPEN_STATES
from quorum.locks import KeyedLock
from quorum.pagination import paginate
from quorum.results import failure, guarded, not_found, success
from quorum.schemas.feedback import FeedbackEntry
from quorum.schemas.result import ErrorCode, PaginationOptions, Result
from quorum.schemas.validation import LifecycleState

logger = logging.getLogger(__name__)

_FIRST_FEEDBACK_REASON = "First feedback received"
_THRESHOLD_REASON = "Minimum feedback reached"

# States the threshold rule moves on to feedback_collecting
_BEFORE_COLLECTING = frozenset({
    LifecycleState.SUBMITTED, LifecycleState.PENDING, LifecycleState.IN_REVIEW,
})


class FeedbackStore:
    """Per-item feedback lists plus the feedback-driven transitions.

    Args:
        machine: Lifecycle state machine that owns the items.
        bus: Event bus for FeedbackAdded and ReadyForConsensus.
        default_min_feedback: Threshold for items that carry none.
    """

    def __init__(
        self,
        machine: LifecycleStateMachine,
        bus: EventBus,
        default_min_feedback: int = 3,
    ) -> None:
        self._machine = machine
        self._bus = bus
        self._default_min = default_min_feedback
        self._entries: dict[str, list[FeedbackEntry]] = {}
        self._index: dict[str, str] = {}  # feedback id -> validation id
        self._locks = KeyedLock()

    def min_required(self, validation_id: str) -> int:
        item = self._machine.get_item(validation_id)
        return item.min_feedback_required if item else self._default_min

    @guarded("Failed to add feedback")
    async def add(
        self,
        validation_id: str,
        entry: Mapping[str, Any] | BaseModel,
    ) -> Result:
        """Validate and store one feedback entry.

        Args:
            validation_id: Item the feedback is for.
            entry: Raw feedback fields (mapping or model).

        Returns:
            Result carrying the generated feedback id.
        """
        if self._machine.get_item(validation_id) is None:
            return not_found("validation", validation_id)

        async with self._locks.hold(validation_id):
            state = self._machine.state_of(validation_id)
            if state not in FEEDBACK_OPEN_STATES:
                return failure(
                    ErrorCode.INVALID_STATE,
                    f"Feedback is not accepted in state {state}",
                    {
                        "current_state": state.value if state else None,
                        "accepted_states": sorted(s.value for s in FEEDBACK_OPEN_STATES),
                    },
                )

            built = build_entry(validation_id, as_mapping(entry))
            if not built.success:
                return built
            feedback: FeedbackEntry = built.data

            entries = self._entries.setdefault(validation_id, [])
            entries.append(feedback)
            self._index[feedback.id] = validation_id
            count = len(entries)

        # Events and transitions run unlocked so subscribers may call back in
        logger.debug(
            "Feedback %s from %s on %s (approved=%s, count=%d)",
            feedback.id, feedback.expert_id, validation_id, feedback.approved, count,
        )
        await self._bus.publish(validation_id, EventType.FEEDBACK_ADDED, {
            "feedback_id": feedback.id,
            "expert_id": feedback.expert_id,
            "approved": feedback.approved,
            "feedback_count": count,
        })

        advanced = await self._auto_advance(validation_id, count)
        if not advanced.success:
            logger.warning(
                "Automatic transition for %s skipped after feedback %s: %s",
                validation_id, feedback.id, advanced.error.message,
            )
        return success(feedback.id)

    async def _auto_advance(self, validation_id: str, count: int) -> Result:
        """Apply at most one feedback-count rule for the count after an add.

        The state is re-read at each step; a concurrent add or a subscriber
        may already have moved the item on.
        """
        state = self._machine.state_of(validation_id)
        if count == 1 and state == LifecycleState.SUBMITTED:
            return await self._machine.advance(
                validation_id, LifecycleState.IN_REVIEW, _FIRST_FEEDBACK_REASON,
            )

        min_required = self.min_required(validation_id)
        if count < min_required or state not in _BEFORE_COLLECTING:
            return success()

        if state != LifecycleState.IN_REVIEW:
            stepped = await self._machine.advance(
                validation_id, LifecycleState.IN_REVIEW, _THRESHOLD_REASON,
            )
            if not stepped.success:
                return stepped
        if self._machine.state_of(validation_id) != LifecycleState.IN_REVIEW:
            return success()
        moved = await self._machine.advance(
            validation_id, LifecycleState.FEEDBACK_COLLECTING, _THRESHOLD_REASON,
            payload={"feedback_count": count, "min_required": min_required},
        )
        if moved.success and not moved.data.unchanged:
            await self._bus.publish(validation_id, EventType.READY_FOR_CONSENSUS, {
                "feedback_count": count,
                "min_required": min_required,
            })
        return moved


    def get(self, feedback_id: str) -> Result:
        validation_id = self._index.get(feedback_id)
        if validation_id is None:
            return not_found("feedback", feedback_id)
        for entry in self._entries.get(validation_id, []):
            if entry.id == feedback_id:
                return success(entry)
        return not_found("feedback", feedback_id)

    @guarded("Failed to update feedback")
    async def update(self, feedback_id: str, patch: Mapping[str, Any]) -> Result:
        """Replace an entry with *patch* applied, keeping its position.

        ``id``, ``validation_id``, ``expert_id`` and ``is_native_validator``
        cannot be changed; the timestamp is refreshed.
        """
        validation_id = self._index.get(feedback_id)
        if validation_id is None:
            return not_found("feedback", feedback_id)

        async with self._locks.hold(validation_id):
            entries = self._entries[validation_id]
            position = next(
                (i for i, e in enumerate(entries) if e.id == feedback_id), None,
            )
            if position is None:
                return not_found("feedback", feedback_id)
            patched = apply_patch(entries[position], patch)
            if not patched.success:
                return patched
            entries[position] = patched.data

        await self._bus.publish(validation_id, EventType.FEEDBACK_ADDED, {
            "feedback_id": feedback_id,
            "expert_id": patched.data.expert_id,
            "approved": patched.data.approved,
            "updated": True,
        })
        return success(patched.data)

    def list(self, validation_id: str, page: PaginationOptions | None = None) -> Result:
        """Paged feedback for one item, in arrival order."""
        if self._machine.get_item(validation_id) is None:
            return not_found("validation", validation_id)
        return success(paginate(self.snapshot(validation_id), page))

    def snapshot(self, validation_id: str) -> list[FeedbackEntry]:
        """Copy of an item's feedback list."""
        return list(self._entries.get(validation_id, []))

    async def consistent_snapshot(self, validation_id: str) -> list[FeedbackEntry]:
        """Copy taken while holding the item's feedback lock."""
        async with self._locks.hold(validation_id):
            return self.snapshot(validation_id)

    def count(self, validation_id: str) -> int:
        return len(self._entries.get(validation_id, []))

    def total(self) -> int:
        return len(self._index)

    def by_expert(self, expert_id: str) -> list[FeedbackEntry]:
        """Every entry an expert has given, across items."""
        return [
            entry
            for entries in self._entries.values()
            for entry in entries
            if entry.expert_id == expert_id
        ]

    def clear(self) -> None:
        self._entries.clear()
        self._index.clear()
        self._locks.clear()
