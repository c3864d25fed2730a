# question_engine/scoring.py
from __future__ import annotations

import math
import sys
from collections.abc import Iterable, Sequence

from question_engine.contracts import (
    Candidate,
    EmptyDistribution,
    ProbabilityEntry,
    SessionAggregates,
    WeightEntry,
)

# exp() overflows a double a little above 709.
_MAX_PRIOR_EXPONENT = 700.0


def base_prior(popularity: float, bonus: float, alpha: float) -> float:
    """
    exp(alpha * (popularity + bonus)).

    alpha = 0 yields a flat prior; larger alpha lets popularity dominate. The
    result is always strictly positive so no candidate starts unreachable.
    """
    exponent = alpha * (popularity + bonus)
    exponent = max(-_MAX_PRIOR_EXPONENT, min(_MAX_PRIOR_EXPONENT, exponent))
    return max(math.exp(exponent), sys.float_info.min)


def initial_weights(candidates: Iterable[Candidate], alpha: float, *, use_bonus: bool = True) -> tuple[WeightEntry, ...]:
    return tuple(
        WeightEntry(
            candidate_id=c.candidate_id,
            weight=base_prior(c.popularity, c.popularity_bonus if use_bonus else 0.0, alpha),
        )
        for c in candidates
    )


def normalize(weights: Sequence[WeightEntry]) -> tuple[ProbabilityEntry, ...]:
    total = math.fsum(w.weight for w in weights)
    if not weights or total <= 0.0 or not math.isfinite(total):
        raise EmptyDistribution(f"cannot normalize {len(weights)} weights with total mass {total!r}")
    return tuple(ProbabilityEntry(candidate_id=w.candidate_id, probability=w.weight / total) for w in weights)


def rank(probabilities: Iterable[ProbabilityEntry]) -> list[ProbabilityEntry]:
    """Probability descending; ties broken by candidate id ascending."""
    return sorted(probabilities, key=lambda p: (-p.probability, p.candidate_id))


def confidence(probabilities: Sequence[ProbabilityEntry]) -> float:
    if not probabilities:
        return 0.0
    return max(p.probability for p in probabilities)


def effective_candidate_count(probabilities: Sequence[ProbabilityEntry]) -> float:
    """Participation ratio 1 / sum(p^2)."""
    if not probabilities:
        return 0.0
    sum_squared = math.fsum(p.probability * p.probability for p in probabilities)
    if sum_squared == 0.0:
        return 0.0
    return 1.0 / sum_squared


def effective_confirm_threshold(candidate_count: int, minimum: int, maximum: int, divisor: int) -> int:
    scaled = math.floor(candidate_count / divisor + 0.5)
    return min(maximum, max(minimum, scaled))


def session_aggregates(
    probabilities: Sequence[ProbabilityEntry],
    *,
    minimum: int,
    maximum: int,
    divisor: int,
    negative_streak: int = 0,
    reveal_misses: int = 0,
) -> SessionAggregates:
    return SessionAggregates(
        confidence=confidence(probabilities),
        effective_candidates=effective_candidate_count(probabilities),
        effective_confirm_threshold=effective_confirm_threshold(len(probabilities), minimum, maximum, divisor),
        candidate_count=len(probabilities),
        negative_streak=negative_streak,
        reveal_misses=reveal_misses,
    )
