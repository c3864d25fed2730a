from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from typing import Any, Optional

import pytest

from question_engine.adapters.catalog import InMemoryCatalog
from question_engine.adapters.matrix import DenseAttributeMatrix
from question_engine.adapters.resources import EngineResources
from question_engine.adapters.taxonomy import InMemoryTaxonomy
from question_engine.config import EngineConfig
from question_engine.contracts import (
    Answer,
    Attribute,
    AttributeTier,
    AttributeType,
    Bundle,
    Candidate,
    ExploreQuestion,
    HardConfirmQuestion,
    HistoryEntry,
    SoftConfirmQuestion,
)
from question_engine.stable_ids import derive_question_id


@pytest.fixture
def make_candidate() -> Callable[..., Candidate]:
    def _make_candidate(
        candidate_id: str,
        *,
        identifier: Optional[str] = None,
        owner: Optional[str] = None,
        popularity: float = 0.0,
        popularity_bonus: float = 0.0,
        origin: Optional[str] = None,
    ) -> Candidate:
        return Candidate(
            candidate_id=candidate_id,
            identifier=identifier if identifier is not None else f"Title {candidate_id}",
            owner=owner,
            popularity=popularity,
            popularity_bonus=popularity_bonus,
            origin=origin,
        )

    return _make_candidate


@pytest.fixture
def make_attribute() -> Callable[..., Attribute]:
    def _make_attribute(
        key: str,
        *,
        label: Optional[str] = None,
        attribute_type: AttributeType = AttributeType.ASSERTED,
        tier: AttributeTier = AttributeTier.NORMAL,
        question_text: Optional[str] = None,
    ) -> Attribute:
        return Attribute(
            key=key,
            label=label or key,
            attribute_type=attribute_type,
            tier=tier,
            question_text=question_text,
        )

    return _make_attribute


@pytest.fixture
def make_resources(
    make_candidate: Callable[..., Candidate],
    make_attribute: Callable[..., Attribute],
) -> Callable[..., EngineResources]:
    """
    Build in-memory resources. `holders` maps attribute key -> candidate ids
    (or -> {candidate_id: confidence} for scored links).
    """

    def _make_resources(
        candidates: Iterable[Any],
        holders: Mapping[str, Any],
        *,
        attributes: Optional[Iterable[Attribute]] = None,
        bundles: Iterable[Bundle] = (),
        synonym_groups: Iterable[Iterable[str]] = (),
    ) -> EngineResources:
        catalog_entries = [c if isinstance(c, Candidate) else make_candidate(c) for c in candidates]
        attribute_list = list(attributes) if attributes is not None else [make_attribute(key) for key in holders]
        rows: dict[str, dict[str, Optional[float]]] = {}
        for key, held in holders.items():
            items = held.items() if isinstance(held, Mapping) else ((cid, None) for cid in held)
            for cid, conf in items:
                rows.setdefault(cid, {})[key] = conf
        return EngineResources(
            catalog=InMemoryCatalog(catalog_entries),
            taxonomy=InMemoryTaxonomy(attribute_list, bundles=bundles, synonym_groups=synonym_groups),
            matrix=DenseAttributeMatrix.from_mapping(rows),
        )

    return _make_resources


@pytest.fixture
def make_config() -> Callable[..., EngineConfig]:
    def _make_config(overrides: Optional[Mapping[str, Any]] = None) -> EngineConfig:
        return EngineConfig().with_overrides(overrides or {})

    return _make_config


@pytest.fixture
def quiet_config(make_config: Callable[..., EngineConfig]) -> EngineConfig:
    """No forced confirms, no confidence band, popularity ignored."""
    return make_config(
        {
            "algo.alpha": 0.0,
            "confirm.forced_confirm_turns": [],
            "confirm.confidence_confirm_band": [1.0, 1.0],
        }
    )


@pytest.fixture
def make_history_entry() -> Callable[..., HistoryEntry]:
    def _make_history_entry(
        turn_index: int,
        question: ExploreQuestion | SoftConfirmQuestion | HardConfirmQuestion,
        answer: Optional[Answer] = Answer.NO,
        *,
        session_id: str = "ses:test",
    ) -> HistoryEntry:
        return HistoryEntry(
            turn_index=turn_index,
            question=question,
            question_id=derive_question_id(session_id, turn_index, question),
            answer=answer,
        )

    return _make_history_entry


@pytest.fixture
def ten_ids() -> list[str]:
    return [f"c{i:02d}" for i in range(10)]


@pytest.fixture
def split_resources(
    make_resources: Callable[..., EngineResources],
    ten_ids: list[str],
) -> EngineResources:
    """Ten candidates: `x` splits them 5/5, `y` splits them 9/1."""
    return make_resources(ten_ids, {"x": ten_ids[:5], "y": ten_ids[:9]})
