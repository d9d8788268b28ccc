"""Consensus manager.

Runs ``compute_consensus`` against an item's feedback snapshot, stores the
latest result per item, and steps the lifecycle through
``consensus_calculating`` to ``consensus_reached`` and, when the decision
is strong enough, straight to ``approved`` or ``rejected``.
"""

from __future__ import annotations

import logging

from quorum.consensus.algorithms import compute_consensus
from quorum.feedback.store import FeedbackStore
from quorum.lifecycle.machine import LifecycleStateMachine
from quorum.lifecycle.transitions import CONSENSUS_CLOSED_STATES
from quorum.results import failure, guarded, not_found, propagate, success
from quorum.schemas.consensus import ConsensusOptions, ConsensusResult
from quorum.schemas.result import ErrorCode, Result
from quorum.schemas.validation import LifecycleState

logger = logging.getLogger(__name__)


class ConsensusManager:
    """Owns the ConsensusResult table.

    Args:
        machine: Lifecycle state machine.
        feedback: Feedback store read for snapshots.
        options: Default consensus options.
        auto_close_threshold: Consensus level at which the item is closed.
    """

    def __init__(
        self,
        machine: LifecycleStateMachine,
        feedback: FeedbackStore,
        options: ConsensusOptions | None = None,
        auto_close_threshold: float = 0.8,
    ) -> None:
        self._machine = machine
        self._feedback = feedback
        self._options = options or ConsensusOptions()
        self._auto_close = auto_close_threshold
        self._results: dict[str, ConsensusResult] = {}
        self._in_progress: set[str] = set()

    @property
    def options(self) -> ConsensusOptions:
        return self._options

    def required_feedback(self, validation_id: str, options: ConsensusOptions | None = None) -> int:
        opts = options or self._options
        return max(self._feedback.min_required(validation_id), opts.min_participants)

    def is_ready(self, validation_id: str) -> bool:
        """Whether the item has enough feedback and an open lifecycle state."""
        state = self._machine.state_of(validation_id)
        if state is None or state in CONSENSUS_CLOSED_STATES:
            return False
        if validation_id in self._in_progress:
            return False
        return self._feedback.count(validation_id) >= self.required_feedback(validation_id)

    @guarded("Consensus calculation failed", ErrorCode.CONSENSUS_CALCULATION_FAILED)
    async def calculate(
        self,
        validation_id: str,
        options: ConsensusOptions | None = None,
    ) -> Result:
        """Compute, store and act on the consensus for one item.

        One calculation runs per item at a time. A second request made
        while one is running, for instance from an event subscriber, fails
        at once instead of waiting.

        Args:
            validation_id: Item to decide.
            options: Overrides the manager's default options for this call.

        Returns:
            Result carrying the stored ConsensusResult.
        """
        state = self._machine.state_of(validation_id)
        if state is None:
            return not_found("validation", validation_id)
        if state in CONSENSUS_CLOSED_STATES:
            return _already_reached(validation_id, state)
        if validation_id in self._in_progress:
            return failure(
                ErrorCode.CONSENSUS_CALCULATION_FAILED,
                f"Consensus calculation already in progress for {validation_id}",
                {"in_progress": True},
            )

        self._in_progress.add(validation_id)
        try:
            return await self._decide(validation_id, options or self._options)
        finally:
            self._in_progress.discard(validation_id)

    async def _decide(self, validation_id: str, opts: ConsensusOptions) -> Result:
        entries = await self._feedback.consistent_snapshot(validation_id)
        required = self.required_feedback(validation_id, opts)
        if len(entries) < required:
            return failure(
                ErrorCode.CONSENSUS_CALCULATION_FAILED,
                f"Not enough feedback: {len(entries)} of {required}",
                {"feedback_count": len(entries), "min_required": required},
            )

        stepped = await self._enter_calculating(validation_id)
        if not stepped.success:
            state = self._machine.state_of(validation_id)
            if state in CONSENSUS_CLOSED_STATES:
                return _already_reached(validation_id, state)
            return propagate(stepped)

        result = compute_consensus(validation_id, entries, opts)
        self._results[validation_id] = result

        verdict = "approved" if result.approved else "rejected"
        summary = {
            "approved": result.approved,
            "consensus_level": result.consensus_level,
            "confidence": result.confidence,
            "algorithm": result.algorithm.value,
        }
        reached = await self._machine.advance(
            validation_id,
            LifecycleState.CONSENSUS_REACHED,
            f"Consensus {verdict} with level {result.consensus_level:.2f}",
            payload=summary,
        )
        if not reached.success:
            return propagate(reached)

        if result.consensus_level >= self._auto_close:
            closed = await self._machine.advance(
                validation_id,
                LifecycleState.APPROVED if result.approved else LifecycleState.REJECTED,
                f"Strong consensus ({result.consensus_level:.2f}) led to automatic {verdict}",
                payload=summary,
            )
            if not closed.success:
                return propagate(closed)

        return success(result)

    async def _enter_calculating(self, validation_id: str) -> Result:
        """Walk the item forward to ``consensus_calculating``."""
        path = {
            LifecycleState.SUBMITTED: [
                LifecycleState.IN_REVIEW,
                LifecycleState.FEEDBACK_COLLECTING,
                LifecycleState.CONSENSUS_CALCULATING,
            ],
            LifecycleState.PENDING: [
                LifecycleState.IN_REVIEW,
                LifecycleState.FEEDBACK_COLLECTING,
                LifecycleState.CONSENSUS_CALCULATING,
            ],
            LifecycleState.IN_REVIEW: [
                LifecycleState.FEEDBACK_COLLECTING,
                LifecycleState.CONSENSUS_CALCULATING,
            ],
            LifecycleState.FEEDBACK_COLLECTING: [LifecycleState.CONSENSUS_CALCULATING],
            LifecycleState.CONSENSUS_CALCULATING: [],
        }
        state = self._machine.state_of(validation_id)
        steps = path.get(state)
        if steps is None:
            return failure(
                ErrorCode.INVALID_STATE,
                f"Consensus cannot be calculated in state {state}",
                {"current_state": state.value if state else None},
            )
        for target in steps:
            moved = await self._machine.advance(
                validation_id, target, "Consensus calculation requested",
            )
            if not moved.success:
                return moved
        return success()

    def get_result(self, validation_id: str) -> Result:
        result = self._results.get(validation_id)
        if result is None:
            if self._machine.get_item(validation_id) is None:
                return not_found("validation", validation_id)
            return failure(
                ErrorCode.INVALID_STATE,
                f"No consensus calculated for {validation_id}",
                {"validation_id": validation_id},
            )
        return success(result)

    def results(self) -> dict[str, ConsensusResult]:
        return dict(self._results)

    def clear(self) -> None:
        self._results.clear()
        self._in_progress.clear()


def _already_reached(validation_id: str, state: LifecycleState) -> Result:
    return failure(
        ErrorCode.CONSENSUS_ALREADY_REACHED,
        f"Consensus already reached for {validation_id}",
        {"current_state": state.value},
    )
