from __future__ import annotations

import pytest

from question_engine.contracts import CoverageMode
from question_engine.coverage import coverage_ratio, passes_coverage_gate


def test_coverage_ratio_handles_empty_set() -> None:
    assert coverage_ratio(3, 0) == 0.0
    assert coverage_ratio(3, 12) == 0.25


@pytest.mark.parametrize("mode", list(CoverageMode))
def test_attributes_held_by_nobody_or_everybody_are_rejected(mode: CoverageMode) -> None:
    assert not passes_coverage_gate(0, 10, mode, 0.0, 0)
    assert not passes_coverage_gate(10, 10, mode, 0.0, 0)


def test_ratio_mode_uses_min_ratio_only() -> None:
    assert passes_coverage_gate(1, 10, CoverageMode.RATIO, 0.1, 5)
    assert not passes_coverage_gate(1, 20, CoverageMode.RATIO, 0.1, 0)


def test_absolute_mode_uses_holder_count_only() -> None:
    assert passes_coverage_gate(3, 1000, CoverageMode.ABSOLUTE, 0.5, 3)
    assert not passes_coverage_gate(2, 1000, CoverageMode.ABSOLUTE, 0.0, 3)


def test_auto_mode_raises_floor_for_small_sets() -> None:
    # 10 candidates, min_absolute 3 -> floor 0.3 even though min_ratio is 0.05
    assert not passes_coverage_gate(2, 10, CoverageMode.AUTO, 0.05, 3)
    assert passes_coverage_gate(3, 10, CoverageMode.AUTO, 0.05, 3)


def test_auto_mode_clamps_absolute_floor_to_set_size() -> None:
    # min_absolute 5 on a 2-candidate set becomes a floor of 2/2
    assert not passes_coverage_gate(1, 2, CoverageMode.AUTO, 0.05, 5)
    assert passes_coverage_gate(40, 1000, CoverageMode.AUTO, 0.01, 20)


def test_max_ratio_rejects_near_universal_attributes() -> None:
    assert not passes_coverage_gate(96, 100, CoverageMode.RATIO, 0.05, None, 0.95)
    assert passes_coverage_gate(95, 100, CoverageMode.RATIO, 0.05, None, 0.95)


def test_missing_threshold_for_active_mode_rejects() -> None:
    assert not passes_coverage_gate(5, 10, CoverageMode.RATIO, None, 3)
    assert not passes_coverage_gate(5, 10, CoverageMode.ABSOLUTE, 0.1, None)
    assert not passes_coverage_gate(5, 10, CoverageMode.AUTO, None, 3)
