from __future__ import annotations

from collections.abc import Callable

import pytest

from question_engine.adapters.resources import EngineResources
from question_engine.config import EngineConfig
from question_engine.contracts import Candidate, InvalidTransition, SessionOutcome
from question_engine.engine import InferenceSession
from question_engine.simulation import NoiseRates, run_batch, simulate_session, summarize


@pytest.fixture
def binary_resources(
    make_candidate: Callable[..., Candidate],
    make_resources: Callable[..., EngineResources],
) -> EngineResources:
    """Eight candidates told apart exactly by three binary attributes."""
    ids = [f"c{i}" for i in range(8)]
    holders = {f"bit{b}": [cid for i, cid in enumerate(ids) if i >> b & 1] for b in range(3)}
    candidates = [make_candidate(cid, identifier=f"Work {cid}", owner=f"maker-{cid}") for cid in ids]
    return make_resources(candidates, holders)


@pytest.fixture
def sim_config(make_config: Callable[..., EngineConfig]) -> EngineConfig:
    return make_config(
        {
            "algo.alpha": 0.0,
            "confirm.forced_confirm_turns": [],
            "confirm.confidence_confirm_band": [1.0, 1.0],
            "coverage.mode": "ratio",
            "coverage.min_ratio": 0.1,
        }
    )


def test_noiseless_simulation_finds_target(binary_resources: EngineResources, sim_config: EngineConfig) -> None:
    result = simulate_session("c5", sim_config, binary_resources)

    assert result.success
    assert result.outcome == SessionOutcome.SUCCESS
    assert result.reason == "reveal_accepted"
    assert result.steps[-1].kind == "reveal"
    assert result.steps[-1].key == "c5"
    assert not result.invariant_failures
    assert all(not s.noisy for s in result.steps)


def test_full_noise_flips_every_answer(binary_resources: EngineResources, sim_config: EngineConfig) -> None:
    noise = NoiseRates(explore=1.0, soft_confirm=1.0, hard_confirm=1.0)

    result = simulate_session("c5", sim_config, binary_resources, noise)

    answered = [s for s in result.steps if s.answer is not None]
    assert answered
    assert all(s.noisy for s in answered)
    assert not result.success


def test_simulation_rejects_unknown_target(binary_resources: EngineResources, sim_config: EngineConfig) -> None:
    with pytest.raises(KeyError):
        simulate_session("ghost", sim_config, binary_resources)


def test_run_batch_and_summarize(binary_resources: EngineResources, sim_config: EngineConfig) -> None:
    results = run_batch(["c0", "c3", "c7"], sim_config, binary_resources)

    summary = summarize(results)

    assert summary["sessions"] == 3
    assert summary["success_rate"] == 1.0
    assert summary["mean_questions"] >= 3.0
    assert summary["invariant_failures"] == 0
    assert summarize([])["sessions"] == 0


def test_simulation_rejects_unknown_engine_actions(
    binary_resources: EngineResources,
    sim_config: EngineConfig,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(InferenceSession, "next_action", lambda self: object())

    with pytest.raises(InvalidTransition, match="unexpected engine action"):
        simulate_session("c5", sim_config, binary_resources)
