# question_engine/config.py
from __future__ import annotations

import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from question_engine._compat import Self
from question_engine.contracts import CoverageMode, UpdatePolicy

PathLike = Union[str, Path]

# Knobs are supplied per session and never mutated; unknown keys are errors.
_CONFIG_MODEL = ConfigDict(
    extra="forbid",
    use_enum_values=False,
    frozen=True,
)


class ConfigError(ValueError):
    """Raised when a configuration payload fails validation."""


class ConfirmConfig(BaseModel):
    model_config = _CONFIG_MODEL
    reveal_threshold: float = Field(default=0.9, ge=0.0, le=1.0)
    confidence_confirm_band: tuple[float, float] = (0.4, 0.6)
    forced_confirm_turns: tuple[int, ...] = (6, 10)
    soft_confidence_min: float = Field(default=0.3, ge=0.0, le=1.0)
    hard_confidence_min: float = Field(default=0.7, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_band(self) -> Self:
        low, high = self.confidence_confirm_band
        if not (0.0 <= low <= high <= 1.0):
            raise ValueError("confidence_confirm_band must satisfy 0 <= low <= high <= 1")
        if any(turn < 1 for turn in self.forced_confirm_turns):
            raise ValueError("forced_confirm_turns are 1-based turn indices")
        return self


class AlgoConfig(BaseModel):
    model_config = _CONFIG_MODEL
    alpha: float = Field(default=0.1, ge=0.0)
    beta: float = Field(default=1.0, gt=0.0, le=50.0)
    inferred_confidence_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    reveal_penalty: float = Field(default=0.2, gt=0.0, lt=1.0)
    update_policy: UpdatePolicy = UpdatePolicy.BAYESIAN
    bayesian_epsilon: float = Field(default=0.02, ge=0.0, le=0.5)
    use_information_gain: bool = True
    # P(yes | candidate holds the attribute) assumed when scoring expected entropy.
    ig_answer_likelihood: float = Field(default=0.9, gt=0.5, le=1.0)
    explore_p_value_band: Optional[tuple[float, float]] = (0.05, 0.95)
    p_value_fallback_enabled: bool = True
    bundle_strength_scale: float = Field(default=0.6, gt=0.0)
    explore_strength_scale: float = Field(default=1.0, gt=0.0)
    soft_confirm_strength_scale: float = Field(default=1.0, gt=0.0)
    use_popularity_bonus: bool = True

    @model_validator(mode="after")
    def _check_p_value_band(self) -> Self:
        band = self.explore_p_value_band
        if band is not None and not (0.0 <= band[0] <= band[1] <= 1.0):
            raise ValueError("explore_p_value_band must satisfy 0 <= low <= high <= 1")
        return self


class ConfirmThresholdParams(BaseModel):
    model_config = _CONFIG_MODEL
    min: int = Field(default=1, ge=1)
    max: int = Field(default=5, ge=1)
    divisor: int = Field(default=50, ge=1)

    @model_validator(mode="after")
    def _check_range(self) -> Self:
        if self.max < self.min:
            raise ValueError("effective_confirm_threshold.max must be >= min")
        return self


class EligibilityWindows(BaseModel):
    """1-based turn indices from which each attribute class becomes askable."""

    model_config = _CONFIG_MODEL
    plain_attributes_from: int = Field(default=4, ge=1)
    sensitive_from: int = Field(default=7, ge=1)
    abstract_from: int = Field(default=11, ge=1)


class FlowConfig(BaseModel):
    model_config = _CONFIG_MODEL
    max_questions: int = Field(default=30, ge=1)
    max_reveal_misses: int = Field(default=3, ge=1)
    effective_confirm_threshold: ConfirmThresholdParams = Field(default_factory=ConfirmThresholdParams)
    negative_streak_length: int = Field(default=3, ge=1)
    bundle_prefer_ratio: float = Field(default=0.0, ge=0.0, le=1.0)
    hard_confirm_top_k: int = Field(default=1, ge=1)
    eligibility: EligibilityWindows = Field(default_factory=EligibilityWindows)


class CoverageConfig(BaseModel):
    model_config = _CONFIG_MODEL
    mode: CoverageMode = CoverageMode.AUTO
    min_ratio: Optional[float] = Field(default=0.05, ge=0.0, le=1.0)
    min_absolute: Optional[int] = Field(default=3, ge=0)
    max_ratio: Optional[float] = Field(default=0.95, ge=0.0, le=1.0)


class EngineConfig(BaseModel):
    model_config = _CONFIG_MODEL
    confirm: ConfirmConfig = Field(default_factory=ConfirmConfig)
    algo: AlgoConfig = Field(default_factory=AlgoConfig)
    flow: FlowConfig = Field(default_factory=FlowConfig)
    coverage: CoverageConfig = Field(default_factory=CoverageConfig)
    seed: int = 0

    def with_overrides(self, overrides: Mapping[str, Any]) -> EngineConfig:
        """
        Return a re-validated copy with dotted-path overrides applied, e.g.
        {"flow.max_questions": 15, "algo.explore_p_value_band": None}.
        """
        payload = self.model_dump()
        for dotted, value in overrides.items():
            node = payload
            *parents, leaf = dotted.split(".")
            for part in parents:
                child = node.get(part)
                if not isinstance(child, dict):
                    raise ConfigError(f"unknown config section in override {dotted!r}")
                node = child
            node[leaf] = value
        return parse_engine_config(payload)


def _format_errors(exc: ValidationError) -> str:
    lines = []
    for err in exc.errors():
        path = ".".join(str(part) for part in err.get("loc", ()))
        lines.append(f"{path or '<root>'}: {err.get('msg', 'invalid value')}")
    return "\n".join(lines)


def parse_engine_config(payload: Mapping[str, Any]) -> EngineConfig:
    try:
        return EngineConfig.model_validate(dict(payload))
    except ValidationError as exc:
        raise ConfigError(f"Config validation failed:\n{_format_errors(exc)}") from exc


def load_engine_config(path: PathLike) -> EngineConfig:
    p = Path(path)
    try:
        payload = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Failed to load config from {p}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError(f"Expected a JSON object in {p}, got {type(payload).__name__}")
    return parse_engine_config(payload)
