from __future__ import annotations

import json
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Optional

import pytest

from question_engine.adapters.cache import TaxonomyCache
from question_engine.adapters.catalog import InMemoryCatalog, filter_candidates, origin_rule
from question_engine.adapters.matrix import DenseAttributeMatrix, QueryAttributeMatrix
from question_engine.adapters.snapshot import CatalogSnapshot, load_catalog_snapshot
from question_engine.adapters.taxonomy import InMemoryTaxonomy, merge_synonym_groups
from question_engine.contracts import Attribute, AttributeLink, Candidate, DataUnavailable


def test_in_memory_catalog_rejects_duplicates(make_candidate: Callable[..., Candidate]) -> None:
    with pytest.raises(ValueError):
        InMemoryCatalog([make_candidate("a"), make_candidate("a")])


def test_catalog_lookup_omits_unknown_ids(make_candidate: Callable[..., Candidate]) -> None:
    catalog = InMemoryCatalog([make_candidate("a"), make_candidate("b")])

    assert set(catalog.get_candidates(["a", "zzz"])) == {"a"}


def test_filter_candidates_with_origin_rule(make_candidate: Callable[..., Candidate]) -> None:
    candidates = [make_candidate("a", origin="x"), make_candidate("b", origin="y"), make_candidate("c")]

    assert [c.candidate_id for c in filter_candidates(candidates, origin_rule("x", "y"))] == ["a", "b"]
    assert len(filter_candidates(candidates)) == 3


def test_merge_synonym_groups_is_transitive() -> None:
    merged = merge_synonym_groups([("a", "b"), ("c", "d"), ("b", "c"), ("e",), ()])

    assert merged == [frozenset({"a", "b", "c", "d"}), frozenset({"e"})]


def test_taxonomy_synonym_group_defaults_to_singleton() -> None:
    taxonomy = InMemoryTaxonomy(
        [Attribute(key="a", label="A"), Attribute(key="b", label="B")],
        synonym_groups=[("a", "b")],
    )

    assert taxonomy.synonym_group("a") == frozenset({"a", "b"})
    assert taxonomy.synonym_group("lonely") == frozenset({"lonely"})
    assert taxonomy.get_attribute("missing") is None


def _links() -> list[AttributeLink]:
    return [
        AttributeLink(candidate_id="a", attribute_key="x"),
        AttributeLink(candidate_id="a", attribute_key="y", confidence=0.4),
        AttributeLink(candidate_id="b", attribute_key="x"),
    ]


def test_dense_and_query_matrices_are_interchangeable() -> None:
    links = _links()
    calls: list[tuple[list[str], Optional[list[str]]]] = []

    def query(candidate_ids: Sequence[str], keys: Optional[Sequence[str]]) -> list[AttributeLink]:
        calls.append((list(candidate_ids), list(keys) if keys else None))
        return [
            link
            for link in links
            if link.candidate_id in candidate_ids and (keys is None or link.attribute_key in keys)
        ]

    dense = DenseAttributeMatrix(links)
    lazy = QueryAttributeMatrix(query)

    for matrix in (dense, lazy):
        assert set(matrix.links(["a", "b"])) == set(links)
        assert set(matrix.links(["a"], ["y"])) == {links[1]}
        assert list(matrix.links([])) == []

    assert calls == [(["a", "b"], None), (["a"], ["y"])]


def test_dense_matrix_from_mapping() -> None:
    matrix = DenseAttributeMatrix.from_mapping({"a": {"x": None, "y": 0.7}})

    assert {(l.attribute_key, l.confidence) for l in matrix.links(["a"])} == {("x", None), ("y", 0.7)}


class _CountingTaxonomy(InMemoryTaxonomy):
    def __init__(self) -> None:
        super().__init__([Attribute(key="a", label="A")], synonym_groups=[("a", "b")])
        self.attribute_reads = 0
        self.group_reads = 0

    def list_attributes(self):
        self.attribute_reads += 1
        return super().list_attributes()

    def synonym_group(self, key: str) -> frozenset[str]:
        self.group_reads += 1
        return super().synonym_group(key)


def test_taxonomy_cache_reads_through_until_invalidated() -> None:
    source = _CountingTaxonomy()
    cache = TaxonomyCache(source)

    cache.list_attributes()
    cache.get_attribute("a")
    cache.synonym_group("a")
    cache.synonym_group("a")
    assert (source.attribute_reads, source.group_reads) == (1, 1)

    cache.invalidate()
    cache.list_attributes()
    cache.synonym_group("a")
    assert (source.attribute_reads, source.group_reads) == (2, 2)
    assert cache.loads == 2


def _snapshot_payload() -> dict:
    return {
        "candidates": [
            {"candidate_id": "a", "identifier": "Alpha", "popularity": 2.0},
            {"candidate_id": "b", "identifier": "Beta"},
        ],
        "attributes": [
            {"key": "x", "label": "X"},
            {"key": "y", "label": "Y", "attribute_type": "inferred"},
        ],
        "bundles": [{"bundle_id": "xy", "label": "XY", "members": ["x", "y"]}],
        "synonym_groups": [["x", "y"]],
        "links": [
            {"candidate_id": "a", "attribute_key": "x"},
            {"candidate_id": "b", "attribute_key": "y", "confidence": 0.8},
        ],
    }


def test_load_catalog_snapshot_builds_resources(tmp_path: Path) -> None:
    path = tmp_path / "snapshot.json"
    path.write_text(json.dumps(_snapshot_payload()), encoding="utf-8")

    snapshot = load_catalog_snapshot(path)
    resources = snapshot.build_resources()

    assert [c.candidate_id for c in resources.catalog.list_candidates()] == ["a", "b"]
    assert resources.taxonomy.synonym_group("x") == frozenset({"x", "y"})
    assert isinstance(resources.taxonomy, TaxonomyCache)
    assert len(resources.matrix.links(["a", "b"])) == 2


def test_snapshot_rejects_dangling_links() -> None:
    payload = _snapshot_payload()
    payload["links"].append({"candidate_id": "ghost", "attribute_key": "x"})

    with pytest.raises(ValueError):
        CatalogSnapshot.model_validate(payload)


def test_load_catalog_snapshot_reports_unreadable_files(tmp_path: Path) -> None:
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")

    with pytest.raises(DataUnavailable):
        load_catalog_snapshot(bad)
    with pytest.raises(DataUnavailable):
        load_catalog_snapshot(tmp_path / "missing.json")
