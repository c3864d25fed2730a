# question_engine/adapters/catalog.py
from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Optional, Protocol

from question_engine.contracts import Candidate

InclusionRule = Callable[[Candidate], bool]


class CatalogProvider(Protocol):
    """Adapter interface for the candidate catalog and its popularity signals."""

    def list_candidates(self) -> Sequence[Candidate]:
        """Return every candidate eligible for a session."""
        ...

    def get_candidates(self, candidate_ids: Iterable[str]) -> Mapping[str, Candidate]:
        """Return the requested candidates keyed by id; unknown ids are omitted."""
        ...


def filter_candidates(candidates: Iterable[Candidate], include: Optional[InclusionRule] = None) -> list[Candidate]:
    if include is None:
        return list(candidates)
    return [c for c in candidates if include(c)]


def origin_rule(*allowed: str) -> InclusionRule:
    """Inclusion rule admitting candidates whose origin is one of `allowed`."""
    allowed_set = frozenset(allowed)

    def _include(candidate: Candidate) -> bool:
        return candidate.origin in allowed_set

    return _include


class InMemoryCatalog:
    def __init__(self, candidates: Iterable[Candidate]) -> None:
        self._by_id: dict[str, Candidate] = {}
        for candidate in candidates:
            if candidate.candidate_id in self._by_id:
                raise ValueError(f"duplicate candidate id {candidate.candidate_id!r}")
            self._by_id[candidate.candidate_id] = candidate

    def list_candidates(self) -> Sequence[Candidate]:
        return list(self._by_id.values())

    def get_candidates(self, candidate_ids: Iterable[str]) -> Mapping[str, Candidate]:
        return {cid: self._by_id[cid] for cid in candidate_ids if cid in self._by_id}
