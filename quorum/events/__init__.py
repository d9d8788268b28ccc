"""Event publication for validation lifecycle changes."""

from quorum.events.bus import (
    WILDCARD,
    EventBus,
    EventCallback,
    EventType,
    Subscription,
    ValidationEvent,
)

__all__ = [
    "EventBus",
    "EventCallback",
    "EventType",
    "Subscription",
    "ValidationEvent",
    "WILDCARD",
]
