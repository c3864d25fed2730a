# question_engine/adapters/matrix.py
from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Optional, Protocol

from question_engine.contracts import AttributeLink

LinkQuery = Callable[[Sequence[str], Optional[Sequence[str]]], Iterable[AttributeLink]]


class AttributeMatrixProvider(Protocol):
    """
    Adapter interface for candidate-attribute facts. A precomputed lookup and
    an on-demand query must be interchangeable behind this one method.
    """

    def links(
        self,
        candidate_ids: Sequence[str],
        attribute_keys: Optional[Sequence[str]] = None,
    ) -> Sequence[AttributeLink]:
        """Return links for `candidate_ids`, optionally restricted to `attribute_keys`."""
        ...


class DenseAttributeMatrix:
    """Precomputed candidate -> links lookup held in memory."""

    def __init__(self, links: Iterable[AttributeLink]) -> None:
        self._by_candidate: dict[str, dict[str, AttributeLink]] = {}
        for link in links:
            self._by_candidate.setdefault(link.candidate_id, {})[link.attribute_key] = link

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Mapping[str, Optional[float]]]) -> DenseAttributeMatrix:
        """Build from {candidate_id: {attribute_key: confidence_or_None}}."""
        return cls(
            AttributeLink(candidate_id=cid, attribute_key=key, confidence=conf)
            for cid, row in mapping.items()
            for key, conf in row.items()
        )

    def links(
        self,
        candidate_ids: Sequence[str],
        attribute_keys: Optional[Sequence[str]] = None,
    ) -> Sequence[AttributeLink]:
        wanted = frozenset(attribute_keys) if attribute_keys else None
        out: list[AttributeLink] = []
        for cid in candidate_ids:
            row = self._by_candidate.get(cid)
            if not row:
                continue
            for key, link in row.items():
                if wanted is not None and key not in wanted:
                    continue
                out.append(link)
        return out


class QueryAttributeMatrix:
    """On-demand matrix backed by a caller-supplied query (e.g. a database read)."""

    def __init__(self, query: LinkQuery) -> None:
        self._query = query

    def links(
        self,
        candidate_ids: Sequence[str],
        attribute_keys: Optional[Sequence[str]] = None,
    ) -> Sequence[AttributeLink]:
        if not candidate_ids:
            return []
        keys = list(attribute_keys) if attribute_keys else None
        return list(self._query(list(candidate_ids), keys))
