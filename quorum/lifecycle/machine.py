"""Lifecycle state machine.

Owns the ValidationItem table, the current state of every item, and the
append-only StateChange history. Transitions are checked against the
table in ``quorum.lifecycle.transitions`` under a per-item lock, and
events are published once the lock is released.
"""

from __future__ import annotations

import logging
from typing import Any

from quorum.events.bus import EventBus, EventType
from quorum.lifecycle.transitions import can_transition, legal_targets
from quorum.locks import KeyedLock
from quorum.pagination import paginate
from quorum.results import failure, guarded, not_found, success
from quorum.schemas.result import ErrorCode, PaginationOptions, Result
from quorum.schemas.validation import LifecycleState, StateChange, ValidationItem

logger = logging.getLogger(__name__)


class LifecycleStateMachine:
    """Tracks and enforces the lifecycle of validation items."""

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus
        self._items: dict[str, ValidationItem] = {}
        self._states: dict[str, LifecycleState] = {}
        self._history: dict[str, list[StateChange]] = {}
        self._locks = KeyedLock()

    def seed(self, item: ValidationItem, actor: str = "system") -> Result:
        """Register a new item in ``submitted`` with its initial history record.

        Publishes nothing; the caller announces the submission.
        """
        if item.id in self._items:
            return failure(
                ErrorCode.DUPLICATE_ENTRY,
                f"Validation already exists: {item.id}",
                {"id": item.id},
            )
        record = StateChange(
            validation_id=item.id,
            previous_state=LifecycleState.UNKNOWN,
            new_state=LifecycleState.SUBMITTED,
            changed_by=actor,
            reason="Initial submission",
        )
        self._items[item.id] = item
        self._states[item.id] = LifecycleState.SUBMITTED
        self._history[item.id] = [record]
        logger.info("Validation %s submitted by %s", item.id, actor)
        return success(record)

    @guarded("State transition failed")
    async def advance(
        self,
        validation_id: str,
        target: LifecycleState | str,
        reason: str | None = None,
        actor: str = "system",
        payload: dict[str, Any] | None = None,
    ) -> Result:
        """Move an item to *target* if the transition table allows it.

        Requesting the current state succeeds without publishing and
        records an ``unchanged`` history entry.

        Args:
            validation_id: Item to advance.
            target: Desired lifecycle state.
            reason: Free-text reason stored in the history record.
            actor: Who requested the change.
            payload: Extra data merged into the StateChanged event.

        Returns:
            Result carrying the appended StateChange.
        """
        try:
            target = LifecycleState(target)
        except ValueError:
            return failure(
                ErrorCode.INVALID_DATA,
                f"Unknown lifecycle state: {target}",
                {"field": "state", "value": str(target)},
            )
        if validation_id not in self._states:
            return not_found("validation", validation_id)

        async with self._locks.hold(validation_id):
            current = self._states[validation_id]
            if target == current:
                record = StateChange(
                    validation_id=validation_id,
                    previous_state=current,
                    new_state=current,
                    changed_by=actor,
                    reason="State unchanged",
                    unchanged=True,
                )
                self._history[validation_id].append(record)
                return success(record)

            if not can_transition(current, target):
                return failure(
                    ErrorCode.STATE_TRANSITION_DENIED,
                    f"Transition {current} -> {target} is not allowed",
                    {
                        "current_state": current.value,
                        "target_state": target.value,
                        "legal_states": [s.value for s in legal_targets(current)],
                    },
                )

            record = StateChange(
                validation_id=validation_id,
                previous_state=current,
                new_state=target,
                changed_by=actor,
                reason=reason,
            )
            self._states[validation_id] = target
            self._history[validation_id].append(record)

        logger.info(
            "Validation %s: %s -> %s (%s)", validation_id, current, target, reason or "-",
        )
        await self._announce(record, payload or {})
        return success(record)

    async def _announce(self, record: StateChange, payload: dict[str, Any]) -> None:
        vid = record.validation_id
        await self._bus.publish(vid, EventType.STATE_CHANGED, {
            **payload,
            "previous_state": record.previous_state.value,
            "new_state": record.new_state.value,
            "changed_by": record.changed_by,
            "reason": record.reason,
        })
        if record.new_state == LifecycleState.CONSENSUS_REACHED:
            await self._bus.publish(vid, EventType.CONSENSUS_REACHED, dict(payload))
        elif record.new_state in (LifecycleState.APPROVED, LifecycleState.REJECTED):
            await self._bus.publish(vid, EventType.VALIDATION_COMPLETED, {
                **payload,
                "approved": record.new_state == LifecycleState.APPROVED,
            })

    def current(self, validation_id: str) -> Result:
        state = self._states.get(validation_id)
        if state is None:
            return not_found("validation", validation_id)
        return success(state)

    def state_of(self, validation_id: str) -> LifecycleState | None:
        """Current state, or None for an unknown id."""
        return self._states.get(validation_id)

    def history(self, validation_id: str, page: PaginationOptions | None = None) -> Result:
        """Paged StateChange history, oldest first."""
        if validation_id not in self._history:
            return not_found("validation", validation_id)
        return success(paginate(list(self._history[validation_id]), page))

    def legal_next_states(self, validation_id: str) -> Result:
        state = self._states.get(validation_id)
        if state is None:
            return not_found("validation", validation_id)
        return success(legal_targets(state))

    def can_transition(self, validation_id: str, target: LifecycleState) -> Result:
        state = self._states.get(validation_id)
        if state is None:
            return not_found("validation", validation_id)
        return success(can_transition(state, target))

    def get_item(self, validation_id: str) -> ValidationItem | None:
        return self._items.get(validation_id)

    def items(self) -> list[ValidationItem]:
        """All items in submission order."""
        return list(self._items.values())

    def states(self) -> dict[str, LifecycleState]:
        return dict(self._states)

    def clear(self) -> None:
        self._items.clear()
        self._states.clear()
        self._history.clear()
        self._locks.clear()
