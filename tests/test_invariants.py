from __future__ import annotations

from collections.abc import Callable

from question_engine.adapters.resources import EngineResources
from question_engine.contracts import (
    Answer,
    ExploreQuestion,
    HardConfirmFact,
    HardConfirmQuestion,
    HistoryEntry,
    RevealRecord,
    SessionPhase,
    SessionState,
    WeightEntry,
)
from question_engine.invariants import (
    REGISTRY,
    Flow,
    InvariantId,
    Validity,
    default_check_context,
    run_checkers,
)


def _state(**kwargs) -> SessionState:
    base = {
        "session_id": "ses:test",
        "phase": SessionPhase.AWAITING_QUESTION,
        "weights": (WeightEntry("a", 1.0), WeightEntry("b", 3.0)),
    }
    base.update(kwargs)
    return SessionState(**base)


def _hard(value: str) -> HardConfirmQuestion:
    return HardConfirmQuestion(fact=HardConfirmFact.OWNER, value=value, candidate_id="a", display_text="?")


def _explore(key: str, *resolved: str, bundle_id: str | None = None) -> ExploreQuestion:
    return ExploreQuestion(target_key=key, display_text="?", resolved_keys=resolved or (key,), bundle_id=bundle_id)


def test_registry_covers_every_invariant() -> None:
    assert set(REGISTRY) == set(InvariantId)


def test_clean_state_passes_all_checks(split_resources: EngineResources) -> None:
    outcomes = run_checkers(default_check_context(_state(), split_resources))

    assert len(outcomes) == len(REGISTRY)
    assert all(o.passed and o.flow == Flow.CONTINUE for o in outcomes)


def test_massless_weights_are_degraded(split_resources: EngineResources) -> None:
    state = _state(weights=(WeightEntry("a", 0.0),))

    (outcome,) = run_checkers(default_check_context(state, split_resources), [InvariantId.PROBABILITY_MASS])

    assert not outcome.passed
    assert outcome.validity == Validity.DEGRADED
    assert outcome.code == "empty_distribution"


def test_repeated_synonym_is_flagged(
    make_resources: Callable[..., EngineResources],
    make_history_entry: Callable[..., HistoryEntry],
) -> None:
    resources = make_resources(["a", "b"], {"x": ["a"], "x2": ["b"]}, synonym_groups=[("x", "x2")])
    history = (
        make_history_entry(1, _explore("x"), Answer.NO),
        make_history_entry(2, _explore("x2"), Answer.NO),
    )

    (outcome,) = run_checkers(
        default_check_context(_state(history=history), resources),
        [InvariantId.NO_REPEATED_ATTRIBUTE],
    )

    assert not outcome.passed
    assert outcome.code == "attribute_repeated"
    assert outcome.evidence[0]["turn_index"] == 2


def test_affirmative_bundle_keeps_members_askable(
    make_resources: Callable[..., EngineResources],
    make_history_entry: Callable[..., HistoryEntry],
) -> None:
    resources = make_resources(["a", "b"], {"x": ["a"]})
    history = (
        make_history_entry(1, _explore("bundle:b", "x", bundle_id="b"), Answer.YES),
        make_history_entry(2, _explore("x"), Answer.NO),
    )

    (outcome,) = run_checkers(
        default_check_context(_state(history=history), resources),
        [InvariantId.NO_REPEATED_ATTRIBUTE],
    )

    assert outcome.passed


def test_back_to_back_hard_confirms_are_flagged(
    split_resources: EngineResources,
    make_history_entry: Callable[..., HistoryEntry],
) -> None:
    history = (
        make_history_entry(1, _hard("one"), Answer.NO),
        make_history_entry(2, _hard("two"), Answer.NO),
    )

    (outcome,) = run_checkers(
        default_check_context(_state(history=history), split_resources),
        [InvariantId.NO_CONSECUTIVE_HARD_CONFIRM],
    )

    assert not outcome.passed
    assert outcome.evidence[0]["value"] == [1, 2]


def test_reoffered_rejected_candidate_is_flagged(split_resources: EngineResources) -> None:
    reveals = (
        RevealRecord(candidate_id="a", probability=0.95, after_question=3, accepted=False),
        RevealRecord(candidate_id="a", probability=0.92, after_question=5, accepted=False),
    )

    (outcome,) = run_checkers(
        default_check_context(_state(reveals=reveals), split_resources),
        [InvariantId.NO_REPEATED_REVEAL],
    )

    assert not outcome.passed
    assert outcome.code == "rejected_candidate_reoffered"
