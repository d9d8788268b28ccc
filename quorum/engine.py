"""ValidationEngine, the single facade over the validation managers.

Wires the state machine, feedback store, expert registry and consensus
manager around one event bus. Managers are created by ``initialize()`` in
dependency order and released by ``shutdown()`` in reverse; every
operation called outside that window returns SYSTEM_NOT_INITIALIZED.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from pydantic import BaseModel, ValidationError

from quorum.consensus.manager import ConsensusManager
from quorum.events.bus import EventBus, EventCallback, EventType
from quorum.experts.registry import ExpertRegistry
from quorum.feedback.store import FeedbackStore
from quorum.feedback.validation import as_mapping
from quorum.lifecycle.machine import LifecycleStateMachine
from quorum.pagination import paginate
from quorum.results import (
    failure,
    from_validation_error,
    guarded,
    not_found,
    not_initialized,
    success,
)
from quorum.schemas.config import EngineConfig
from quorum.schemas.consensus import ConsensusOptions
from quorum.schemas.expert import ExpertProfile, ExpertSearchCriteria
from quorum.schemas.result import ErrorCode, PaginationOptions, Result
from quorum.schemas.validation import (
    TERMINAL_STATES,
    LifecycleState,
    SearchCriteria,
    ValidationItem,
    ValidationRequest,
    ValidationStats,
)

logger = logging.getLogger(__name__)

_COMPONENT = "ValidationEngine"

TransactionFn = Callable[["ValidationEngine"], Awaitable[Any]]


def _requires_init(func):
    """Return SYSTEM_NOT_INITIALIZED instead of running outside initialize/shutdown."""

    @functools.wraps(func)
    async def wrapper(self: ValidationEngine, *args: Any, **kwargs: Any) -> Result:
        if not self._initialized:
            return not_initialized(_COMPONENT)
        return await func(self, *args, **kwargs)

    return wrapper


class ValidationEngine:
    """Collaborative validation facade.

    Args:
        config: Engine settings. Defaults to the built-in EngineConfig.
    """

    def __init__(self, config: EngineConfig | None = None) -> None:
        self._config = config or EngineConfig()
        self._bus = EventBus(
            log_faults=self._config.log_subscriber_faults,
            history_limit=self._config.event_history_limit,
        )
        self._initialized = False
        self._machine: LifecycleStateMachine | None = None
        self._feedback: FeedbackStore | None = None
        self._experts: ExpertRegistry | None = None
        self._consensus: ConsensusManager | None = None

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def initialized(self) -> bool:
        return self._initialized

    # ── Lifecycle ────────────────────────────────────────────────

    async def initialize(self) -> Result:
        """Create the managers: state machine, feedback, experts, consensus."""
        if self._initialized:
            return success()
        self._machine = LifecycleStateMachine(self._bus)
        self._feedback = FeedbackStore(
            self._machine, self._bus, self._config.min_feedback_required,
        )
        self._experts = ExpertRegistry(
            self._bus,
            feedback_lookup=self._feedback.by_expert,
            consensus_lookup=self._consensus_results,
        )
        self._consensus = ConsensusManager(
            self._machine,
            self._feedback,
            self._config.consensus,
            self._config.auto_close_threshold,
        )
        self._initialized = True
        logger.info(
            "Validation engine initialized (algorithm=%s, min_feedback=%d)",
            self._config.consensus.algorithm, self._config.min_feedback_required,
        )
        return success()

    async def shutdown(self) -> Result:
        """Release the managers in reverse order and drop all subscriptions."""
        if not self._initialized:
            return success()
        self._consensus.clear()
        self._experts.clear()
        self._feedback.clear()
        self._machine.clear()
        self._bus.clear()
        self._consensus = self._experts = self._feedback = self._machine = None
        self._initialized = False
        logger.info("Validation engine shut down")
        return success()

    def _consensus_results(self) -> Mapping[str, Any]:
        return self._consensus.results() if self._consensus else {}

    # ── Submissions ──────────────────────────────────────────────

    @_requires_init
    @guarded("Failed to submit proposal")
    async def submit_proposal(
        self,
        request: ValidationRequest | Mapping[str, Any],
    ) -> Result:
        """Accept a validation request and seed it in ``submitted``.

        Returns:
            Result carrying the generated validation id.
        """
        data = as_mapping(request)
        for field in ("content", "requester_id"):
            if not data.get(field):
                return failure(
                    ErrorCode.MISSING_REQUIRED_FIELD,
                    f"Missing required field: {field}",
                    {"field": field},
                )
        if data.get("min_feedback_required") is None:
            data["min_feedback_required"] = self._config.min_feedback_required
        data.pop("id", None)
        data.pop("submitted_at", None)
        try:
            item = ValidationItem.model_validate(data)
        except ValidationError as e:
            return from_validation_error(e)

        seeded = self._machine.seed(item, actor=item.requester_id)
        if not seeded.success:
            return seeded
        await self._bus.publish(item.id, EventType.SUBMISSION, {
            "requester_id": item.requester_id,
            "content_type": item.content.type,
            "min_feedback_required": item.min_feedback_required,
        })
        return success(item.id)

    @_requires_init
    async def get_validation(self, validation_id: str) -> Result:
        item = self._machine.get_item(validation_id)
        if item is None:
            return not_found("validation", validation_id)
        return success(item)

    # ── Feedback ─────────────────────────────────────────────────

    @_requires_init
    async def add_feedback(
        self,
        validation_id: str,
        entry: Mapping[str, Any] | BaseModel,
    ) -> Result:
        """Record one expert's feedback on an item.

        A registered expert's expertise level is filled in when the entry
        omits it. With ``auto_consensus`` enabled, consensus is computed
        as soon as the item has enough feedback.

        Returns:
            Result carrying the generated feedback id.
        """
        data = as_mapping(entry)
        if data.get("expertise_level") is None and isinstance(data.get("expert_id"), str):
            level = self._experts.level_of(data["expert_id"])
            if level is not None:
                data["expertise_level"] = level

        added = await self._feedback.add(validation_id, data)
        if added.success and self._config.auto_consensus and self._consensus.is_ready(validation_id):
            computed = await self._consensus.calculate(validation_id)
            if not computed.success:
                logger.warning(
                    "Automatic consensus for %s failed: %s", validation_id, computed.error.message,
                )
        return added

    @_requires_init
    async def update_feedback(self, feedback_id: str, patch: Mapping[str, Any]) -> Result:
        return await self._feedback.update(feedback_id, patch)

    @_requires_init
    async def get_feedback(self, feedback_id: str) -> Result:
        return self._feedback.get(feedback_id)

    @_requires_init
    async def list_feedback(
        self,
        validation_id: str,
        page: PaginationOptions | None = None,
    ) -> Result:
        return self._feedback.list(validation_id, page)

    # ── State ────────────────────────────────────────────────────

    @_requires_init
    async def update_state(
        self,
        validation_id: str,
        state: LifecycleState | str,
        reason: str | None = None,
        actor: str = "manager",
    ) -> Result:
        return await self._machine.advance(validation_id, state, reason, actor=actor)

    @_requires_init
    async def get_state(self, validation_id: str) -> Result:
        return self._machine.current(validation_id)

    @_requires_init
    async def get_history(
        self,
        validation_id: str,
        page: PaginationOptions | None = None,
    ) -> Result:
        return self._machine.history(validation_id, page)

    @_requires_init
    async def legal_next_states(self, validation_id: str) -> Result:
        return self._machine.legal_next_states(validation_id)

    # ── Consensus ────────────────────────────────────────────────

    @_requires_init
    async def calculate_consensus(
        self,
        validation_id: str,
        options: ConsensusOptions | None = None,
    ) -> Result:
        return await self._consensus.calculate(validation_id, options)

    @_requires_init
    async def get_consensus_result(self, validation_id: str) -> Result:
        return self._consensus.get_result(validation_id)

    @_requires_init
    async def integrate_improvements(
        self,
        validation_id: str,
        reason: str | None = None,
    ) -> Result:
        """Move an approved item to ``integrated`` and announce its improvements."""
        state = self._machine.state_of(validation_id)
        if state is None:
            return not_found("validation", validation_id)
        if state != LifecycleState.APPROVED:
            return failure(
                ErrorCode.INVALID_STATE,
                f"Only approved validations can be integrated (state: {state})",
                {"current_state": state.value},
            )
        moved = await self._machine.advance(
            validation_id, LifecycleState.INTEGRATED, reason or "Improvements integrated",
        )
        if not moved.success:
            return moved

        result = self._consensus.get_result(validation_id)
        improvements = (
            {f: imp.model_dump(mode="json") for f, imp in result.data.aggregated_improvements.items()}
            if result.success else {}
        )
        await self._bus.publish(validation_id, EventType.IMPROVEMENT_INTEGRATED, {
            "improvements": improvements,
            "reason": moved.data.reason,
        })
        return moved

    # ── Search & stats ───────────────────────────────────────────

    @_requires_init
    async def search_validations(
        self,
        criteria: SearchCriteria | None = None,
        page: PaginationOptions | None = None,
    ) -> Result:
        """Paged items matching every given criterion, in submission order."""
        criteria = criteria or SearchCriteria()
        matches = [
            item for item in self._machine.items() if self._matches(item, criteria)
        ]
        return success(paginate(matches, page))

    def _matches(self, item: ValidationItem, criteria: SearchCriteria) -> bool:
        if criteria.states and self._machine.state_of(item.id) not in criteria.states:
            return False
        if criteria.requester_id and item.requester_id != criteria.requester_id:
            return False
        if criteria.content_types and item.content.type not in criteria.content_types:
            return False
        if criteria.submitted_after and item.submitted_at < criteria.submitted_after:
            return False
        if criteria.submitted_before and item.submitted_at > criteria.submitted_before:
            return False
        if criteria.metadata and any(
            item.metadata.get(key) != value for key, value in criteria.metadata.items()
        ):
            return False
        if criteria.expert_ids:
            wanted = set(criteria.expert_ids)
            if not any(e.expert_id in wanted for e in self._feedback.snapshot(item.id)):
                return False
        if criteria.keywords:
            text = item.model_dump_json().lower()
            if not all(keyword.lower() in text for keyword in criteria.keywords):
                return False
        return True

    @_requires_init
    async def get_system_stats(self) -> Result:
        states = self._machine.states()
        by_state: dict[str, int] = {}
        for state in states.values():
            by_state[state.value] = by_state.get(state.value, 0) + 1
        completed = sum(1 for s in states.values() if s in TERMINAL_STATES)
        results = self._consensus.results()
        average = (
            sum(r.consensus_level for r in results.values()) / len(results) if results else 0.0
        )
        return success(ValidationStats(
            total_validations=len(states),
            by_state=by_state,
            pending=len(states) - completed,
            completed=completed,
            average_consensus_level=average,
            expert_count=self._experts.count(),
            feedback_count=self._feedback.total(),
            subscription_count=self._bus.subscription_count(),
        ))

    # ── Experts ──────────────────────────────────────────────────

    @_requires_init
    async def register_expert(self, profile: ExpertProfile | Mapping[str, Any]) -> Result:
        return await self._experts.register(profile)

    @_requires_init
    async def get_expert(self, expert_id: str) -> Result:
        return self._experts.get(expert_id)

    @_requires_init
    async def update_expert(self, expert_id: str, patch: Mapping[str, Any]) -> Result:
        return self._experts.update(expert_id, patch)

    @_requires_init
    async def get_expert_stats(self, expert_id: str) -> Result:
        return self._experts.stats(expert_id)

    @_requires_init
    async def search_experts(
        self,
        criteria: ExpertSearchCriteria | None = None,
        page: PaginationOptions | None = None,
    ) -> Result:
        return self._experts.search(criteria, page)

    # ── Events ───────────────────────────────────────────────────

    @_requires_init
    async def subscribe(self, event_filter: EventType | str, callback: EventCallback) -> Result:
        """Register *callback* for an event type or ``"*"``.

        Returns:
            Result carrying the subscription id.
        """
        try:
            return success(self._bus.subscribe(event_filter, callback))
        except ValueError:
            return failure(
                ErrorCode.INVALID_DATA,
                f"Unknown event type: {event_filter}",
                {"field": "event_filter", "value": str(event_filter)},
            )

    @_requires_init
    async def unsubscribe(self, subscription_id: str) -> Result:
        """Result carrying True if a subscription was removed."""
        return success(self._bus.unsubscribe(subscription_id))

    # ── Transactions ─────────────────────────────────────────────

    @_requires_init
    async def transaction(self, fn: TransactionFn) -> Result:
        """Run *fn* against this engine and fold any failure into one result.

        An exception, or a failed Result returned by *fn*, becomes a single
        TRANSACTION_FAILED. Writes made before the failure are kept.

        Returns:
            Result carrying whatever *fn* returned (unwrapped if a Result).
        """
        try:
            outcome = await fn(self)
        except Exception as e:
            logger.exception("Transaction failed")
            return failure(ErrorCode.TRANSACTION_FAILED, "Transaction failed", {"error": str(e)})

        if isinstance(outcome, Result):
            if not outcome.success:
                cause = outcome.error.model_dump(mode="json") if outcome.error else {}
                return failure(
                    ErrorCode.TRANSACTION_FAILED, "Transaction failed", {"cause": cause},
                )
            return success(outcome.data)
        return success(outcome)
