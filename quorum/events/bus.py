"""In-process event bus for validation lifecycle notifications.

Every state mutation in the engine publishes a ValidationEvent. Subscribers
register for one event type or the wildcard ``"*"`` and receive events in
registration order. Callbacks may be sync or async; async ones are awaited
before the next subscriber runs. A failing subscriber never stops delivery
to the others and never fails the operation that published the event.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

WILDCARD = "*"


class EventType(StrEnum):
    """Types of validation events."""

    SUBMISSION = "validation:submitted"
    FEEDBACK_ADDED = "validation:feedback_added"
    EXPERT_ADDED = "validation:expert_added"
    STATE_CHANGED = "validation:state_changed"
    CONSENSUS_REACHED = "validation:consensus_reached"
    VALIDATION_COMPLETED = "validation:completed"
    IMPROVEMENT_INTEGRATED = "validation:improvement_integrated"
    READY_FOR_CONSENSUS = "validation:ready_for_consensus"


class ValidationEvent(BaseModel):
    """A single published event."""

    type: EventType = Field(description="Event type")
    validation_id: str | None = Field(
        default=None, description="Item the event concerns (None for expert events)",
    )
    timestamp: float = Field(
        default_factory=time.time,
        description="Unix timestamp when the event was published",
    )
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="Event payload, varies by event type",
    )


EventCallback = Callable[[ValidationEvent], Any]


@dataclass(frozen=True)
class Subscription:
    id: str
    event_filter: str
    callback: EventCallback

    def matches(self, event_type: EventType) -> bool:
        return self.event_filter in (WILDCARD, event_type)


class EventBus:
    """Delivers ValidationEvents to subscribers.

    Args:
        log_faults: Log subscriber exceptions with subscription id, event
            type and validation id.
        history_limit: Number of recent events kept in ``history``.
    """

    def __init__(self, log_faults: bool = True, history_limit: int = 100) -> None:
        self._subscriptions: list[Subscription] = []
        self._history: deque[ValidationEvent] = deque(maxlen=history_limit)
        self._log_faults = log_faults
        self._fault_count = 0

    @property
    def history(self) -> list[ValidationEvent]:
        """Most recent events, oldest first."""
        return list(self._history)

    @property
    def fault_count(self) -> int:
        """Number of subscriber callbacks that raised."""
        return self._fault_count

    def subscribe(self, event_filter: EventType | str, callback: EventCallback) -> str:
        """Register *callback* for one event type, or ``"*"`` for all.

        Returns:
            The subscription id used by ``unsubscribe``.

        Raises:
            ValueError: If *event_filter* is neither an EventType nor ``"*"``.
        """
        if event_filter != WILDCARD:
            event_filter = EventType(event_filter)
        sub = Subscription(id=uuid.uuid4().hex, event_filter=event_filter, callback=callback)
        self._subscriptions.append(sub)
        logger.debug("Subscription %s registered for %s", sub.id, event_filter)
        return sub.id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription. Unknown ids return False."""
        before = len(self._subscriptions)
        self._subscriptions = [s for s in self._subscriptions if s.id != subscription_id]
        return len(self._subscriptions) < before

    def subscription_count(self) -> int:
        return len(self._subscriptions)

    async def publish(
        self,
        validation_id: str | None,
        event_type: EventType,
        payload: dict[str, Any] | None = None,
    ) -> ValidationEvent:
        """Deliver an event to every matching subscriber, in registration order."""
        event = ValidationEvent(type=event_type, validation_id=validation_id, data=payload or {})
        self._history.append(event)

        # Snapshot so callbacks may (un)subscribe during delivery
        for sub in list(self._subscriptions):
            if not sub.matches(event_type):
                continue
            try:
                result = sub.callback(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                self._fault_count += 1
                if self._log_faults:
                    logger.exception(
                        "Subscriber %s failed on %s for validation %s",
                        sub.id, event_type, validation_id,
                    )
        return event

    def clear(self) -> None:
        """Drop all subscriptions and history."""
        self._subscriptions.clear()
        self._history.clear()
