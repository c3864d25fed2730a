# question_engine/adapters/taxonomy.py
from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Optional, Protocol

from question_engine.contracts import Attribute, Bundle


class TaxonomyProvider(Protocol):
    """Adapter interface for attribute records, synonym groups and bundles."""

    def list_attributes(self) -> Sequence[Attribute]:
        ...

    def get_attribute(self, key: str) -> Optional[Attribute]:
        ...

    def list_bundles(self) -> Sequence[Bundle]:
        ...

    def synonym_group(self, key: str) -> frozenset[str]:
        """Return every attribute key asked as one target with `key` (always contains `key`)."""
        ...


def merge_synonym_groups(groups: Iterable[Iterable[str]]) -> list[frozenset[str]]:
    """
    Merge groups sharing any member until no two groups overlap.
    Output order follows the first appearance of each merged group.
    """
    merged: list[set[str]] = []
    for group in groups:
        incoming = set(group)
        if not incoming:
            continue
        overlapping = [existing for existing in merged if existing & incoming]
        for existing in overlapping:
            incoming |= existing
        if overlapping:
            first = merged.index(overlapping[0])
            merged = [g for g in merged if not any(g is o for o in overlapping)]
            merged.insert(min(first, len(merged)), incoming)
        else:
            merged.append(incoming)
    return [frozenset(g) for g in merged]


class InMemoryTaxonomy:
    def __init__(
        self,
        attributes: Iterable[Attribute],
        *,
        bundles: Iterable[Bundle] = (),
        synonym_groups: Iterable[Iterable[str]] = (),
    ) -> None:
        self._attributes: dict[str, Attribute] = {a.key: a for a in attributes}
        self._bundles: list[Bundle] = list(bundles)
        self._group_of: dict[str, frozenset[str]] = {}
        for group in merge_synonym_groups(synonym_groups):
            for key in group:
                self._group_of[key] = group

    def list_attributes(self) -> Sequence[Attribute]:
        return list(self._attributes.values())

    def get_attribute(self, key: str) -> Optional[Attribute]:
        return self._attributes.get(key)

    def list_bundles(self) -> Sequence[Bundle]:
        return list(self._bundles)

    def synonym_group(self, key: str) -> frozenset[str]:
        return self._group_of.get(key, frozenset({key}))
