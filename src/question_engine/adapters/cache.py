# question_engine/adapters/cache.py
from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Optional

from question_engine.adapters.taxonomy import TaxonomyProvider
from question_engine.contracts import Attribute, Bundle

logger = logging.getLogger(__name__)


class TaxonomyCache:
    """
    Caller-owned read-through cache over a taxonomy provider.

    Entries live until `invalidate()` is called; there is no implicit expiry.
    One instance may be shared by every session reading the same taxonomy.
    """

    def __init__(self, source: TaxonomyProvider) -> None:
        self._source = source
        self._attributes: Optional[dict[str, Attribute]] = None
        self._bundles: Optional[list[Bundle]] = None
        self._groups: dict[str, frozenset[str]] = {}
        self.loads = 0

    def _attribute_index(self) -> dict[str, Attribute]:
        if self._attributes is None:
            self._attributes = {a.key: a for a in self._source.list_attributes()}
            self.loads += 1
            logger.debug("taxonomy cache loaded %d attributes", len(self._attributes))
        return self._attributes

    def list_attributes(self) -> Sequence[Attribute]:
        return list(self._attribute_index().values())

    def get_attribute(self, key: str) -> Optional[Attribute]:
        return self._attribute_index().get(key)

    def list_bundles(self) -> Sequence[Bundle]:
        if self._bundles is None:
            self._bundles = list(self._source.list_bundles())
        return list(self._bundles)

    def synonym_group(self, key: str) -> frozenset[str]:
        group = self._groups.get(key)
        if group is None:
            group = self._source.synonym_group(key)
            self._groups[key] = group
        return group

    def invalidate(self) -> None:
        self._attributes = None
        self._bundles = None
        self._groups.clear()
        logger.debug("taxonomy cache invalidated")
