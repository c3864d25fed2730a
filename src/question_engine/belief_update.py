# question_engine/belief_update.py
from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Optional, Protocol, Union

from question_engine.adapters.matrix import AttributeMatrixProvider
from question_engine.adapters.resources import EngineResources
from question_engine.config import EngineConfig
from question_engine.contracts import (
    Answer,
    AttributeLink,
    ExploreQuestion,
    HardConfirmQuestion,
    SoftConfirmQuestion,
    UpdatePolicy,
    WeightEntry,
)
from question_engine.facts import fact_value

logger = logging.getLogger(__name__)

AnyQuestion = Union[ExploreQuestion, SoftConfirmQuestion, HardConfirmQuestion]

ANSWER_STRENGTH: Mapping[Answer, float] = {
    Answer.YES: 1.0,
    Answer.PROBABLY_YES: 0.6,
    Answer.UNKNOWN: 0.0,
    Answer.DONT_CARE: 0.0,
    Answer.PROBABLY_NO: -0.6,
    Answer.NO: -1.0,
}

# Weak answers are modelled as 70/30 evidence before the epsilon clamp.
_WEAK_LIKELIHOOD = 0.7
_MIN_EPSILON = 1e-6
_MAX_EPSILON = 0.5
# Weights drifting past this factor from 1 are rescaled by their max; ratios are unchanged.
_RESCALE_BOUND = 1e100
_MAX_UPDATE_EXPONENT = 700.0


def parse_answer(token: Any) -> Answer:
    """
    Map a caller-supplied token onto `Answer`. Unrecognized tokens are logged
    and treated as `UNKNOWN`, which leaves every weight unchanged.
    """
    if isinstance(token, Answer):
        return token
    if isinstance(token, str):
        normalized = token.strip().lower().replace("-", "_").replace(" ", "_")
        try:
            return Answer(normalized)
        except ValueError:
            pass
    logger.warning("invalid answer token %r; treating as unknown", token)
    return Answer.UNKNOWN


def link_holds(link: AttributeLink, threshold: float) -> bool:
    """A link counts as held when it is unscored or its confidence clears `threshold`."""
    return link.confidence is None or link.confidence >= threshold


def collect_holders(
    matrix: AttributeMatrixProvider,
    candidate_ids: Sequence[str],
    attribute_keys: Optional[Sequence[str]],
    threshold: float,
) -> dict[str, set[str]]:
    """attribute key -> ids of `candidate_ids` that hold it."""
    out: dict[str, set[str]] = {}
    for link in matrix.links(candidate_ids, attribute_keys):
        if link_holds(link, threshold):
            out.setdefault(link.attribute_key, set()).add(link.candidate_id)
    return out


def question_holders(
    question: AnyQuestion,
    candidate_ids: Sequence[str],
    config: EngineConfig,
    resources: EngineResources,
) -> frozenset[str]:
    """
    Candidates for which `question` is true. Attribute questions use has-any
    semantics over the resolved keys; hard confirms compare the derived fact.
    """
    if isinstance(question, HardConfirmQuestion):
        catalog = resources.catalog.get_candidates(candidate_ids)
        return frozenset(
            cid for cid, candidate in catalog.items() if fact_value(candidate, question.fact) == question.value
        )

    if isinstance(question, ExploreQuestion):
        keys = question.resolved_keys or (question.target_key,)
    else:
        keys = question.resolved_keys or (question.attribute_key,)
    by_key = collect_holders(
        resources.matrix,
        candidate_ids,
        list(keys),
        config.algo.inferred_confidence_threshold,
    )
    held: set[str] = set()
    for ids in by_key.values():
        held |= ids
    return frozenset(held)


class BeliefUpdater(Protocol):
    def update(
        self,
        weights: Sequence[WeightEntry],
        holders: frozenset[str],
        answer: Answer,
        strength: float,
    ) -> tuple[WeightEntry, ...]:
        ...


class MultiplicativeUpdate:
    """Holders scale by exp(beta * s), non-holders by exp(-beta * s)."""

    def __init__(self, beta: float) -> None:
        self.beta = beta

    def update(
        self,
        weights: Sequence[WeightEntry],
        holders: frozenset[str],
        answer: Answer,
        strength: float,
    ) -> tuple[WeightEntry, ...]:
        if strength == 0.0:
            return tuple(weights)
        exponent = max(-_MAX_UPDATE_EXPONENT, min(_MAX_UPDATE_EXPONENT, self.beta * strength))
        up = math.exp(exponent)
        down = math.exp(-exponent)
        return tuple(
            WeightEntry(w.candidate_id, w.weight * (up if w.candidate_id in holders else down)) for w in weights
        )


class BayesianUpdate:
    """
    Noise-aware update: each weight is multiplied by P(answer | candidate),
    assuming the respondent errs with probability epsilon. Normalization is
    left to the caller.
    """

    def __init__(self, epsilon: float = 0.02) -> None:
        self.epsilon = max(_MIN_EPSILON, min(_MAX_EPSILON, epsilon))

    def likelihood(self, holds: bool, answer: Answer) -> float:
        high = 1.0 - self.epsilon
        low = self.epsilon
        if answer == Answer.YES:
            return high if holds else low
        if answer == Answer.NO:
            return low if holds else high
        if answer == Answer.PROBABLY_YES:
            v = _WEAK_LIKELIHOOD if holds else 1.0 - _WEAK_LIKELIHOOD
            return max(low, min(high, v))
        if answer == Answer.PROBABLY_NO:
            v = 1.0 - _WEAK_LIKELIHOOD if holds else _WEAK_LIKELIHOOD
            return max(low, min(high, v))
        return 1.0

    def update(
        self,
        weights: Sequence[WeightEntry],
        holders: frozenset[str],
        answer: Answer,
        strength: float,
    ) -> tuple[WeightEntry, ...]:
        if answer in (Answer.UNKNOWN, Answer.DONT_CARE):
            return tuple(weights)
        return tuple(
            WeightEntry(w.candidate_id, w.weight * self.likelihood(w.candidate_id in holders, answer)) for w in weights
        )


def updater_for(config: EngineConfig) -> BeliefUpdater:
    if config.algo.update_policy == UpdatePolicy.MULTIPLICATIVE:
        return MultiplicativeUpdate(config.algo.beta)
    return BayesianUpdate(config.algo.bayesian_epsilon)


def resolve_strength(question: AnyQuestion, answer: Answer, config: EngineConfig) -> float:
    """
    Signed answer strength after the per-kind scale. Bundle questions assert a
    broader claim, so only the sign of the answer survives, scaled down.
    """
    strength = ANSWER_STRENGTH.get(answer, 0.0)
    if isinstance(question, ExploreQuestion):
        if question.is_bundle:
            sign = (strength > 0) - (strength < 0)
            return sign * config.algo.bundle_strength_scale
        return strength * config.algo.explore_strength_scale
    if isinstance(question, SoftConfirmQuestion):
        return strength * config.algo.soft_confirm_strength_scale
    return strength


def apply_reveal_penalty(weights: Iterable[WeightEntry], candidate_id: str, penalty: float) -> tuple[WeightEntry, ...]:
    return tuple(
        WeightEntry(w.candidate_id, w.weight * penalty) if w.candidate_id == candidate_id else w for w in weights
    )


def rescale_weights(weights: Sequence[WeightEntry]) -> tuple[WeightEntry, ...]:
    peak = max((w.weight for w in weights), default=0.0)
    if peak <= 0.0 or 1.0 / _RESCALE_BOUND <= peak <= _RESCALE_BOUND:
        return tuple(weights)
    return tuple(WeightEntry(w.candidate_id, w.weight / peak) for w in weights)


def process_answer(
    weights: Sequence[WeightEntry],
    question: AnyQuestion,
    answer: Union[Answer, str],
    config: EngineConfig,
    resources: EngineResources,
) -> tuple[WeightEntry, ...]:
    """Return the weight set after observing `answer` to `question`."""
    parsed = parse_answer(answer)
    candidate_ids = [w.candidate_id for w in weights]
    holders = question_holders(question, candidate_ids, config, resources)
    strength = resolve_strength(question, parsed, config)
    updated = rescale_weights(updater_for(config).update(rescale_weights(weights), holders, parsed, strength))
    logger.debug(
        "answer %s to %s: %d/%d holders, strength %.3f",
        parsed.value,
        question.kind.value,
        len(holders),
        len(candidate_ids),
        strength,
    )
    return updated
