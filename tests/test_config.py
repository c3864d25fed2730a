from __future__ import annotations

import json
from pathlib import Path

import pytest

from question_engine.config import ConfigError, EngineConfig, load_engine_config, parse_engine_config
from question_engine.contracts import CoverageMode, UpdatePolicy


def test_defaults() -> None:
    config = EngineConfig()

    assert config.confirm.reveal_threshold == 0.9
    assert config.confirm.forced_confirm_turns == (6, 10)
    assert config.algo.update_policy == UpdatePolicy.BAYESIAN
    assert config.algo.explore_p_value_band == (0.05, 0.95)
    assert config.flow.max_questions == 30
    assert config.flow.negative_streak_length == 3
    assert config.flow.eligibility.plain_attributes_from == 4
    assert config.coverage.mode == CoverageMode.AUTO


def test_with_overrides_revalidates_and_leaves_original_untouched() -> None:
    base = EngineConfig()

    changed = base.with_overrides({"flow.max_questions": 15, "coverage.mode": "ratio", "seed": 3})

    assert changed.flow.max_questions == 15
    assert changed.coverage.mode == CoverageMode.RATIO
    assert changed.seed == 3
    assert base.flow.max_questions == 30


@pytest.mark.parametrize(
    "overrides",
    [
        {"flow.max_questions": 0},
        {"confirm.confidence_confirm_band": [0.7, 0.2]},
        {"algo.explore_p_value_band": [0.9, 0.1]},
        {"flow.effective_confirm_threshold.max": 0},
        {"algo.reveal_penalty": 1.0},
        {"algo.beta": 800.0},
        {"algo.no_such_knob": 1},
        {"nope.value": 1},
    ],
)
def test_invalid_overrides_raise_config_error(overrides: dict) -> None:
    with pytest.raises(ConfigError):
        EngineConfig().with_overrides(overrides)


def test_parse_engine_config_lists_every_failing_field() -> None:
    with pytest.raises(ConfigError) as excinfo:
        parse_engine_config({"flow": {"max_questions": -1, "max_reveal_misses": 0}})

    message = str(excinfo.value)
    assert "flow.max_questions" in message
    assert "flow.max_reveal_misses" in message


def test_load_engine_config_from_json(tmp_path: Path) -> None:
    path = tmp_path / "engine.json"
    path.write_text(json.dumps({"algo": {"update_policy": "multiplicative", "beta": 0.5}}), encoding="utf-8")

    config = load_engine_config(path)

    assert config.algo.update_policy == UpdatePolicy.MULTIPLICATIVE
    assert config.algo.beta == 0.5


def test_load_engine_config_rejects_non_objects(tmp_path: Path) -> None:
    path = tmp_path / "engine.json"
    path.write_text("[1, 2]", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_engine_config(path)
    with pytest.raises(ConfigError):
        load_engine_config(tmp_path / "absent.json")
