# question_engine/adapters/snapshot.py
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Union

from pydantic import BaseModel, Field, ValidationError, model_validator

from question_engine._compat import Self
from question_engine.adapters.cache import TaxonomyCache
from question_engine.adapters.catalog import InMemoryCatalog
from question_engine.adapters.matrix import DenseAttributeMatrix
from question_engine.adapters.resources import EngineResources
from question_engine.adapters.taxonomy import InMemoryTaxonomy
from question_engine.contracts import (
    _IMMUTABLE_CONTRACT_CONFIG,
    Attribute,
    AttributeLink,
    Bundle,
    Candidate,
    DataUnavailable,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class CatalogSnapshot(BaseModel):
    """
    Self-contained export of a catalog, its taxonomy and its link matrix.

    Used by the simulation runner and tests; live deployments would put
    database-backed providers behind the same adapter interfaces.
    """

    model_config = _IMMUTABLE_CONTRACT_CONFIG
    candidates: tuple[Candidate, ...] = ()
    attributes: tuple[Attribute, ...] = ()
    bundles: tuple[Bundle, ...] = ()
    synonym_groups: tuple[tuple[str, ...], ...] = ()
    links: tuple[AttributeLink, ...] = Field(default=())

    @model_validator(mode="after")
    def _check_references(self) -> Self:
        candidate_ids = {c.candidate_id for c in self.candidates}
        attribute_keys = {a.key for a in self.attributes}
        if len(candidate_ids) != len(self.candidates):
            raise ValueError("candidate ids must be unique")
        for link in self.links:
            if link.candidate_id not in candidate_ids:
                raise ValueError(f"link references unknown candidate {link.candidate_id!r}")
            if link.attribute_key not in attribute_keys:
                raise ValueError(f"link references unknown attribute {link.attribute_key!r}")
        for bundle in self.bundles:
            missing = [m for m in bundle.members if m not in attribute_keys]
            if missing:
                raise ValueError(f"bundle {bundle.bundle_id!r} references unknown attributes {missing}")
        return self

    def build_resources(self, *, cached: bool = True) -> EngineResources:
        taxonomy = InMemoryTaxonomy(
            self.attributes,
            bundles=self.bundles,
            synonym_groups=self.synonym_groups,
        )
        return EngineResources(
            catalog=InMemoryCatalog(self.candidates),
            taxonomy=TaxonomyCache(taxonomy) if cached else taxonomy,
            matrix=DenseAttributeMatrix(self.links),
        )


def load_catalog_snapshot(path: PathLike) -> CatalogSnapshot:
    p = Path(path)
    try:
        payload = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise DataUnavailable(f"Failed to read catalog snapshot {p}: {exc}") from exc
    try:
        snapshot = CatalogSnapshot.model_validate(payload)
    except ValidationError as exc:
        raise DataUnavailable(f"Invalid catalog snapshot {p}: {exc.error_count()} error(s)\n{exc}") from exc
    logger.info(
        "loaded catalog snapshot %s: %d candidates, %d attributes, %d bundles, %d links",
        p,
        len(snapshot.candidates),
        len(snapshot.attributes),
        len(snapshot.bundles),
        len(snapshot.links),
    )
    return snapshot
