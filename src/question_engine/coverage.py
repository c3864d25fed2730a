# question_engine/coverage.py
from __future__ import annotations

from typing import Optional

from question_engine.contracts import CoverageMode


def coverage_ratio(holder_count: int, total_candidates: int) -> float:
    if total_candidates <= 0:
        return 0.0
    return holder_count / total_candidates


def passes_coverage_gate(
    holder_count: int,
    total_candidates: int,
    mode: CoverageMode,
    min_ratio: Optional[float],
    min_absolute: Optional[int],
    max_ratio: Optional[float] = None,
) -> bool:
    """
    Admit an attribute as question material only when its holder share lies
    in the configured range.

    Held by nobody or by everybody is never admitted. AUTO mode raises the
    ratio floor to the absolute floor (clamped to the set size) so that small
    candidate sets are not gated by a ratio alone.
    """
    if holder_count <= 0 or holder_count >= total_candidates:
        return False

    ratio = coverage_ratio(holder_count, total_candidates)
    if max_ratio is not None and ratio > max_ratio:
        return False

    if mode == CoverageMode.RATIO:
        if min_ratio is None:
            return False
        return ratio >= min_ratio

    if mode == CoverageMode.ABSOLUTE:
        if min_absolute is None:
            return False
        return holder_count >= min_absolute

    if min_ratio is None or min_absolute is None:
        return False
    clamped_absolute = min(min_absolute, total_candidates)
    floor = max(min_ratio, clamped_absolute / max(total_candidates, 1))
    return ratio >= floor
