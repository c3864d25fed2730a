# question_engine/adapters/resources.py
from __future__ import annotations

from dataclasses import dataclass

from question_engine.adapters.catalog import CatalogProvider
from question_engine.adapters.matrix import AttributeMatrixProvider
from question_engine.adapters.taxonomy import TaxonomyProvider


@dataclass(frozen=True)
class EngineResources:
    """
    Read-only providers a session consults. The engine never mutates them;
    the caller decides whether they are shared, cached or rebuilt.
    """

    catalog: CatalogProvider
    taxonomy: TaxonomyProvider
    matrix: AttributeMatrixProvider
