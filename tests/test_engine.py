"""Tests for quorum.engine: the ValidationEngine facade end to end."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from quorum.engine import ValidationEngine
from quorum.events.bus import WILDCARD, EventType
from quorum.schemas.config import EngineConfig
from quorum.schemas.consensus import ConsensusAlgorithm, ConsensusOptions
from quorum.schemas.expert import ExpertSearchCriteria
from quorum.schemas.feedback import ExpertiseLevel
from quorum.schemas.result import ErrorCode, PaginationOptions
from quorum.schemas.validation import LifecycleState, SearchCriteria, ValidationRequest

S = LifecycleState


# ── Factories ──────────────────────────────────────────────────────


def _request(**overrides) -> dict:
    defaults = {
        "requester_id": "req-1",
        "content": {
            "type": "sign",
            "sign_id": "MERCI",
            "parameters": {
                "handshape": "flat",
                "location": "chin",
                "movement": "forward",
                "orientation": "palm-in",
            },
        },
    }
    defaults.update(overrides)
    return defaults


def _fb(expert_id: str = "e1", approved: bool = True, **overrides) -> dict:
    entry = {"expert_id": expert_id, "approved": approved, "is_native_validator": False}
    entry.update(overrides)
    return entry


async def _engine(**config) -> ValidationEngine:
    engine = ValidationEngine(EngineConfig(**config))
    await engine.initialize()
    return engine


async def _submit(engine: ValidationEngine, **overrides) -> str:
    result = await engine.submit_proposal(_request(**overrides))
    assert result.success, result.error
    return result.data


async def _collect(engine: ValidationEngine, event_filter=WILDCARD) -> list:
    received: list = []
    await engine.subscribe(event_filter, received.append)
    return received


# ══════════════════════════════════════════════════════════════════
# Initialization
# ══════════════════════════════════════════════════════════════════


class TestInitialization:
    @pytest.mark.asyncio()
    @pytest.mark.parametrize(
        ("method", "args"),
        [
            ("submit_proposal", (_request(),)),
            ("add_feedback", ("v1", _fb())),
            ("get_state", ("v1",)),
            ("get_history", ("v1",)),
            ("update_state", ("v1", S.PENDING)),
            ("calculate_consensus", ("v1",)),
            ("register_expert", ({"id": "e1", "name": "A", "expertise_level": "novice"},)),
            ("search_validations", ()),
            ("get_system_stats", ()),
            ("subscribe", (WILDCARD, print)),
            ("transaction", (lambda engine: None,)),
        ],
    )
    async def test_operations_before_initialize(self, method, args):
        engine = ValidationEngine()
        result = await getattr(engine, method)(*args)
        assert result.code == ErrorCode.SYSTEM_NOT_INITIALIZED

    @pytest.mark.asyncio()
    async def test_initialize_is_idempotent(self):
        engine = await _engine()
        vid = await _submit(engine)
        assert (await engine.initialize()).success
        assert (await engine.get_state(vid)).data == S.SUBMITTED

    @pytest.mark.asyncio()
    async def test_shutdown_releases_everything(self):
        engine = await _engine()
        await _collect(engine)
        vid = await _submit(engine)

        assert (await engine.shutdown()).success

        assert engine.initialized is False
        assert engine.bus.subscription_count() == 0
        assert (await engine.get_state(vid)).code == ErrorCode.SYSTEM_NOT_INITIALIZED

        await engine.initialize()
        assert (await engine.get_state(vid)).code == ErrorCode.VALIDATION_NOT_FOUND


# ══════════════════════════════════════════════════════════════════
# Submission
# ══════════════════════════════════════════════════════════════════


class TestSubmit:
    @pytest.mark.asyncio()
    async def test_submission_then_first_feedback_events(self):
        engine = await _engine()
        received = await _collect(engine)

        vid = await _submit(engine)
        assert [e.type for e in received] == [EventType.SUBMISSION]
        assert received[0].validation_id == vid
        assert received[0].data["content_type"] == "sign"

        await engine.add_feedback(vid, _fb())
        changes = [e for e in received if e.type == EventType.STATE_CHANGED]
        assert len(changes) == 1
        assert changes[0].data["new_state"] == "in_review"

    @pytest.mark.asyncio()
    async def test_accepts_request_model(self):
        engine = await _engine()
        request = ValidationRequest.model_validate(_request(min_feedback_required=5))
        result = await engine.submit_proposal(request)
        item = (await engine.get_validation(result.data)).data
        assert item.min_feedback_required == 5
        assert item.content.sign_id == "MERCI"

    @pytest.mark.asyncio()
    async def test_default_threshold_from_config(self):
        engine = await _engine(min_feedback_required=4)
        vid = await _submit(engine)
        assert (await engine.get_validation(vid)).data.min_feedback_required == 4

    @pytest.mark.asyncio()
    async def test_history_starts_with_initial_submission(self):
        engine = await _engine()
        vid = await _submit(engine)
        history = (await engine.get_history(vid)).data
        assert history.total == 1
        assert history.items[0].previous_state == S.UNKNOWN
        assert history.items[0].changed_by == "req-1"

    @pytest.mark.asyncio()
    @pytest.mark.parametrize("field", ["content", "requester_id"])
    async def test_missing_required(self, field):
        engine = await _engine()
        data = _request()
        del data[field]
        result = await engine.submit_proposal(data)
        assert result.code == ErrorCode.MISSING_REQUIRED_FIELD
        assert result.error.details["field"] == field

    @pytest.mark.asyncio()
    async def test_invalid_content(self):
        engine = await _engine()
        result = await engine.submit_proposal(_request(content={
            "type": "expression", "name": "joy", "components": [], "intensity": 3,
        }))
        assert result.code == ErrorCode.INVALID_DATA
        assert "components" in result.error.details["field"]

    @pytest.mark.asyncio()
    async def test_missing_content_field(self):
        engine = await _engine()
        result = await engine.submit_proposal(_request(content={"type": "sign"}))
        assert result.code == ErrorCode.MISSING_REQUIRED_FIELD
        assert "sign_id" in result.error.details["field"]

    @pytest.mark.asyncio()
    async def test_non_positive_threshold(self):
        engine = await _engine()
        result = await engine.submit_proposal(_request(min_feedback_required=0))
        assert result.code == ErrorCode.INVALID_DATA
        assert result.error.details["field"] == "min_feedback_required"


# ══════════════════════════════════════════════════════════════════
# Full lifecycle
# ══════════════════════════════════════════════════════════════════


class TestLifecycle:
    @pytest.mark.asyncio()
    async def test_threshold_reaches_feedback_collecting(self):
        engine = await _engine()
        vid = await _submit(engine, min_feedback_required=3)
        for expert in ("e1", "e2", "e3"):
            await engine.add_feedback(vid, _fb(expert))
        assert (await engine.get_state(vid)).data == S.FEEDBACK_COLLECTING

    @pytest.mark.asyncio()
    async def test_strong_consensus_auto_close(self):
        engine = await _engine()
        received = await _collect(engine)
        vid = await _submit(engine)
        for i in range(4):
            await engine.add_feedback(vid, _fb(
                f"a{i}", True, expertise_level="chercheur", is_native_validator=True,
            ))
        await engine.add_feedback(vid, _fb("r1", False, expertise_level="novice"))

        result = await engine.calculate_consensus(vid)

        assert result.data.approved is True
        assert result.data.consensus_level >= 0.8
        assert (await engine.get_state(vid)).data == S.APPROVED
        assert (await engine.get_consensus_result(vid)).data == result.data
        types = [e.type for e in received]
        assert types.count(EventType.CONSENSUS_REACHED) == 1
        assert types.count(EventType.VALIDATION_COMPLETED) == 1

    @pytest.mark.asyncio()
    async def test_feedback_closed_after_decision(self):
        engine = await _engine()
        vid = await _submit(engine)
        for expert in ("e1", "e2", "e3"):
            await engine.add_feedback(vid, _fb(expert))
        await engine.calculate_consensus(vid)

        late = await engine.add_feedback(vid, _fb("late"))
        again = await engine.calculate_consensus(vid)

        assert late.code == ErrorCode.INVALID_STATE
        assert again.code == ErrorCode.CONSENSUS_ALREADY_REACHED

    @pytest.mark.asyncio()
    async def test_integrate_improvements(self):
        engine = await _engine()
        received = await _collect(engine, EventType.IMPROVEMENT_INTEGRATED)
        vid = await _submit(engine)
        suggestion = {"field": "parameters.movement", "proposed_value": "double forward"}
        for expert in ("e1", "e2", "e3"):
            await engine.add_feedback(vid, _fb(expert, suggestions=[suggestion]))
        await engine.calculate_consensus(vid)

        result = await engine.integrate_improvements(vid)

        assert result.success
        assert (await engine.get_state(vid)).data == S.INTEGRATED
        assert len(received) == 1
        improvement = received[0].data["improvements"]["parameters.movement"]
        assert improvement["proposed_value"] == "double forward"

    @pytest.mark.asyncio()
    async def test_integrate_requires_approval(self):
        engine = await _engine()
        vid = await _submit(engine)
        result = await engine.integrate_improvements(vid)
        assert result.code == ErrorCode.INVALID_STATE
        assert (await engine.integrate_improvements("nope")).code == ErrorCode.VALIDATION_NOT_FOUND

    @pytest.mark.asyncio()
    async def test_manual_state_changes(self):
        engine = await _engine()
        vid = await _submit(engine)

        denied = await engine.update_state(vid, S.APPROVED)
        moved = await engine.update_state(vid, S.CANCELLED, "Withdrawn by requester")

        assert denied.code == ErrorCode.STATE_TRANSITION_DENIED
        assert moved.data.changed_by == "manager"
        assert (await engine.legal_next_states(vid)).data == []

    @pytest.mark.asyncio()
    async def test_rejected_item_can_be_resubmitted(self):
        engine = await _engine()
        vid = await _submit(engine)
        for expert in ("e1", "e2", "e3"):
            await engine.add_feedback(vid, _fb(expert, False))
        await engine.calculate_consensus(vid)
        assert (await engine.get_state(vid)).data == S.REJECTED

        reopened = await engine.update_state(vid, S.SUBMITTED, "Revised")
        assert reopened.success

    @pytest.mark.asyncio()
    async def test_per_call_consensus_options(self):
        engine = await _engine()
        vid = await _submit(engine)
        for expert in ("e1", "e2", "e3"):
            await engine.add_feedback(vid, _fb(expert))
        await engine.add_feedback(vid, _fb("e4", False))

        result = await engine.calculate_consensus(
            vid, ConsensusOptions(algorithm=ConsensusAlgorithm.MAJORITY),
        )
        assert result.data.algorithm == ConsensusAlgorithm.MAJORITY
        assert result.data.agreement_level is None


# ══════════════════════════════════════════════════════════════════
# Feedback through the facade
# ══════════════════════════════════════════════════════════════════


class TestFeedback:
    @pytest.mark.asyncio()
    async def test_pagination_round_trip(self):
        engine = await _engine()
        vid = await _submit(engine)
        for i in range(15):
            await engine.add_feedback(vid, _fb(f"e{i}"))

        page = (await engine.list_feedback(vid, PaginationOptions(page=2, limit=5))).data

        assert len(page.items) == 5
        assert page.total == 15
        assert page.page_count == 3

    @pytest.mark.asyncio()
    async def test_registered_expert_level_filled_in(self):
        engine = await _engine()
        await engine.register_expert({"id": "e1", "name": "A", "expertise_level": "chercheur"})
        vid = await _submit(engine)

        fid = (await engine.add_feedback(vid, _fb("e1"))).data
        explicit = (await engine.add_feedback(vid, _fb("e1", expertise_level="novice"))).data

        assert (await engine.get_feedback(fid)).data.expertise_level == ExpertiseLevel.CHERCHEUR
        assert (await engine.get_feedback(explicit)).data.expertise_level == ExpertiseLevel.NOVICE

    @pytest.mark.asyncio()
    async def test_update_feedback(self):
        engine = await _engine()
        vid = await _submit(engine)
        fid = (await engine.add_feedback(vid, _fb())).data
        result = await engine.update_feedback(fid, {"comments": "Looks right"})
        assert result.data.comments == "Looks right"

    @pytest.mark.asyncio()
    async def test_auto_consensus(self):
        engine = await _engine(auto_consensus=True)
        vid = await _submit(engine)
        for expert in ("e1", "e2", "e3"):
            added = await engine.add_feedback(vid, _fb(expert))
            assert added.success

        assert (await engine.get_consensus_result(vid)).success
        assert (await engine.get_state(vid)).data == S.APPROVED

    @pytest.mark.asyncio()
    async def test_auto_consensus_off_by_default(self):
        engine = await _engine()
        vid = await _submit(engine)
        for expert in ("e1", "e2", "e3"):
            await engine.add_feedback(vid, _fb(expert))
        assert (await engine.get_consensus_result(vid)).code == ErrorCode.INVALID_STATE


# ══════════════════════════════════════════════════════════════════
# Events
# ══════════════════════════════════════════════════════════════════


class TestEvents:
    @pytest.mark.asyncio()
    async def test_unsubscribe_stops_delivery(self):
        engine = await _engine()
        kept: list = []
        dropped: list = []
        await engine.subscribe(WILDCARD, kept.append)
        sub = (await engine.subscribe(WILDCARD, dropped.append)).data

        assert (await engine.unsubscribe(sub)).data is True
        await _submit(engine)

        assert len(kept) == 1
        assert dropped == []
        assert (await engine.unsubscribe(sub)).data is False

    @pytest.mark.asyncio()
    async def test_subscriber_fault_does_not_fail_operation(self):
        engine = await _engine(log_subscriber_faults=False)
        await engine.subscribe(EventType.SUBMISSION, lambda e: 1 / 0)
        result = await engine.submit_proposal(_request())
        assert result.success
        assert engine.bus.fault_count == 1

    @pytest.mark.asyncio()
    async def test_async_subscriber(self):
        engine = await _engine()
        seen: list = []

        async def on_feedback(event):
            seen.append(event.data["expert_id"])

        await engine.subscribe(EventType.FEEDBACK_ADDED, on_feedback)
        vid = await _submit(engine)
        await engine.add_feedback(vid, _fb("zoe"))
        assert seen == ["zoe"]

    @pytest.mark.asyncio()
    async def test_unknown_event_filter(self):
        engine = await _engine()
        result = await engine.subscribe("validation:unknown", print)
        assert result.code == ErrorCode.INVALID_DATA

    @pytest.mark.asyncio()
    async def test_expert_added_event(self):
        engine = await _engine()
        received = await _collect(engine, EventType.EXPERT_ADDED)
        await engine.register_expert({"id": "e1", "name": "A", "expertise_level": "avance"})
        assert received[0].data["expert_id"] == "e1"


# ══════════════════════════════════════════════════════════════════
# Subscribers calling back into the engine
# ══════════════════════════════════════════════════════════════════


class TestReentrantSubscribers:
    @pytest.mark.asyncio()
    async def test_ready_subscriber_decides_item(self):
        engine = await _engine()
        outcomes: list = []

        async def on_ready(event):
            outcomes.append(await engine.calculate_consensus(event.validation_id))

        await engine.subscribe(EventType.READY_FOR_CONSENSUS, on_ready)
        vid = await _submit(engine)

        for expert in ("e1", "e2", "e3"):
            added = await asyncio.wait_for(engine.add_feedback(vid, _fb(expert)), timeout=2)
            assert added.success

        assert len(outcomes) == 1
        assert outcomes[0].success
        assert (await engine.get_state(vid)).data == S.APPROVED

    @pytest.mark.asyncio()
    async def test_feedback_subscriber_decides_before_auto_transition(self):
        engine = await _engine()
        received = await _collect(engine, EventType.READY_FOR_CONSENSUS)
        outcomes: list = []

        async def on_feedback(event):
            outcomes.append(await engine.calculate_consensus(event.validation_id))

        await engine.subscribe(EventType.FEEDBACK_ADDED, on_feedback)
        vid = await _submit(engine)

        for expert in ("e1", "e2", "e3"):
            added = await asyncio.wait_for(engine.add_feedback(vid, _fb(expert)), timeout=2)
            assert added.success

        assert [o.success for o in outcomes] == [False, False, True]
        assert (await engine.get_state(vid)).data == S.APPROVED
        # The item was already decided, so the threshold rule had nothing to do
        assert received == []

    @pytest.mark.asyncio()
    async def test_nested_calculation_fails_fast(self):
        engine = await _engine()
        nested: list = []

        async def on_change(event):
            if event.data["new_state"] == "consensus_calculating":
                nested.append(await engine.calculate_consensus(event.validation_id))

        vid = await _submit(engine)
        for expert in ("e1", "e2", "e3"):
            await engine.add_feedback(vid, _fb(expert))
        await engine.subscribe(EventType.STATE_CHANGED, on_change)

        outer = await asyncio.wait_for(engine.calculate_consensus(vid), timeout=2)

        assert outer.success
        assert nested[0].code == ErrorCode.CONSENSUS_CALCULATION_FAILED
        assert nested[0].error.details == {"in_progress": True}
        assert (await engine.get_state(vid)).data == S.APPROVED


# ══════════════════════════════════════════════════════════════════
# Transactions
# ══════════════════════════════════════════════════════════════════


class TestTransaction:
    @pytest.mark.asyncio()
    async def test_success_returns_payload(self):
        engine = await _engine()

        async def work(e: ValidationEngine):
            return await e.submit_proposal(_request())

        result = await engine.transaction(work)
        assert result.success
        assert (await engine.get_state(result.data)).data == S.SUBMITTED

    @pytest.mark.asyncio()
    async def test_exception_becomes_transaction_failed(self):
        engine = await _engine()

        async def work(e: ValidationEngine):
            await e.submit_proposal(_request())
            raise RuntimeError("downstream unavailable")

        result = await engine.transaction(work)

        assert result.code == ErrorCode.TRANSACTION_FAILED
        assert result.error.details["error"] == "downstream unavailable"
        # No rollback: the submission made before the failure is kept
        stats = (await engine.get_system_stats()).data
        assert stats.total_validations == 1

    @pytest.mark.asyncio()
    async def test_failed_result_becomes_transaction_failed(self):
        engine = await _engine()

        async def work(e: ValidationEngine):
            return await e.get_state("missing")

        result = await engine.transaction(work)

        assert result.code == ErrorCode.TRANSACTION_FAILED
        assert result.error.details["cause"]["code"] == "VALIDATION_NOT_FOUND"


# ══════════════════════════════════════════════════════════════════
# Search, experts and stats
# ══════════════════════════════════════════════════════════════════


class TestSearchAndStats:
    @pytest.mark.asyncio()
    async def test_search_filters(self):
        engine = await _engine()
        sign = await _submit(engine, metadata={"lexicon": "LSF", "region": "nord"})
        doc = await _submit(engine, requester_id="req-2", content={
            "type": "document", "title": "Guide", "content": "Les salutations", "language": "fr",
        })
        await engine.add_feedback(doc, _fb("zoe"))

        async def ids(**criteria):
            page = (await engine.search_validations(SearchCriteria(**criteria))).data
            return [item.id for item in page.items]

        assert await ids() == [sign, doc]
        assert await ids(states=[S.IN_REVIEW]) == [doc]
        assert await ids(requester_id="req-1") == [sign]
        assert await ids(content_types=["document"]) == [doc]
        assert await ids(expert_ids=["zoe"]) == [doc]
        assert await ids(keywords=["SALUTATIONS", "guide"]) == [doc]
        assert await ids(keywords=["merci", "guide"]) == []
        assert await ids(metadata={"lexicon": "LSF"}) == [sign]

    @pytest.mark.asyncio()
    async def test_search_by_date(self):
        engine = await _engine()
        vid = await _submit(engine)
        now = datetime.now(UTC)

        async def ids(**criteria):
            page = (await engine.search_validations(SearchCriteria(**criteria))).data
            return [item.id for item in page.items]

        assert await ids(submitted_after=now - timedelta(minutes=1)) == [vid]
        assert await ids(submitted_before=now - timedelta(minutes=1)) == []

    @pytest.mark.asyncio()
    async def test_expert_operations(self):
        engine = await _engine()
        await engine.register_expert({"id": "e1", "name": "A", "expertise_level": "expert"})
        await engine.register_expert({"id": "e2", "name": "B", "expertise_level": "novice"})
        vid = await _submit(engine)
        for expert in ("e1", "e2", "e3"):
            await engine.add_feedback(vid, _fb(expert, score=7))
        await engine.calculate_consensus(vid)

        stats = (await engine.get_expert_stats("e1")).data
        assert stats.total_validations == 1
        assert stats.consensus_alignment == pytest.approx(1.0)
        assert (await engine.update_expert("e2", {"experience": 3})).data.experience == 3
        found = (await engine.search_experts(
            ExpertSearchCriteria(min_expertise_level="expert"),
        )).data
        assert [p.id for p in found.items] == ["e1"]
        assert (await engine.get_expert("ghost")).code == ErrorCode.EXPERT_NOT_FOUND

    @pytest.mark.asyncio()
    async def test_system_stats(self):
        engine = await _engine()
        await engine.register_expert({"id": "e1", "name": "A", "expertise_level": "expert"})
        decided = await _submit(engine)
        await _submit(engine)
        for expert in ("e1", "e2", "e3"):
            await engine.add_feedback(decided, _fb(expert))
        await engine.calculate_consensus(decided)

        stats = (await engine.get_system_stats()).data

        assert stats.total_validations == 2
        assert stats.completed == 1
        assert stats.pending == 1
        assert stats.by_state == {"approved": 1, "submitted": 1}
        assert stats.average_consensus_level == pytest.approx(1.0)
        assert stats.expert_count == 1
        assert stats.feedback_count == 3
