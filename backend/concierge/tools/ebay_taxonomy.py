"""eBay Taxonomy API: the category tree behind category lookups.

A refresh resolves the marketplace's default tree id, downloads the tree and
keeps only the top levels (root, top categories, common subcategories). The
whole refresh runs under one deadline because the tree download is large.
"""

from __future__ import annotations

import asyncio
import urllib.parse
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import structlog

from concierge.errors import ProviderError, ProviderTimeoutError
from concierge.stores.taxonomy import TaxonomyStore, normalize_marketplace
from concierge.tools.ebay import PROVIDER, EbayBrowseProvider

log = structlog.get_logger("concierge.ebay")

MAX_LEVEL = 2
MAX_CATEGORIES = 8000


def _utcnow() -> datetime:
    return datetime.now(UTC)


def flatten_tree(
    node: dict[str, Any],
    *,
    max_level: int = MAX_LEVEL,
    parent_id: str | None = None,
    level: int = 0,
) -> Iterator[dict[str, Any]]:
    """Pre-order walk yielding ``{categoryId, name, parentCategoryId, level}``."""
    category = node.get("category") or {}
    category_id = category.get("categoryId")
    if not category_id:
        return
    yield {
        "categoryId": str(category_id),
        "name": category.get("categoryName") or "",
        "parentCategoryId": parent_id,
        "level": level,
    }
    if level >= max_level:
        return
    for child in node.get("childCategoryTreeNodes") or []:
        yield from flatten_tree(
            child, max_level=max_level, parent_id=str(category_id), level=level + 1
        )


@dataclass
class TaxonomySnapshot:
    marketplace_id: str
    category_tree_id: str
    count: int
    fetched_at: datetime


class EbayTaxonomyRefresher:
    def __init__(
        self,
        api: EbayBrowseProvider,
        store: TaxonomyStore,
        *,
        timeout: float = 60.0,
        deadline: float = 120.0,
        max_level: int = MAX_LEVEL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._api = api
        self._store = store
        self._timeout = timeout
        self._deadline = deadline
        self._max_level = max_level
        self._clock = clock

    async def _download(self, marketplace_id: str) -> tuple[str, list[dict[str, Any]]]:
        tree_ref = await self._api.get_json(
            "/commerce/taxonomy/v1/get_default_category_tree_id",
            params={"marketplace_id": marketplace_id},
            timeout=self._timeout,
        )
        tree_id = tree_ref.get("categoryTreeId")
        if not tree_id:
            raise ProviderError(PROVIDER, "Taxonomy returned no categoryTreeId")

        tree = await self._api.get_json(
            f"/commerce/taxonomy/v1/category_tree/{urllib.parse.quote(str(tree_id), safe='')}",
            timeout=self._timeout,
        )
        root = tree.get("rootCategoryNode")
        if not root:
            raise ProviderError(PROVIDER, "Taxonomy returned no rootCategoryNode")

        categories = []
        for category in flatten_tree(root, max_level=self._max_level):
            categories.append(category)
            if len(categories) >= MAX_CATEGORIES:
                log.warning("ebay_taxonomy_truncated", limit=MAX_CATEGORIES)
                break
        return str(tree_id), categories

    async def refresh(self, marketplace_id: str | None = None) -> TaxonomySnapshot:
        """Download and store the tree; raises ``ProviderTimeoutError`` past the deadline."""
        marketplace_id = normalize_marketplace(marketplace_id or self._api.marketplace_id)
        try:
            tree_id, categories = await asyncio.wait_for(
                self._download(marketplace_id), timeout=self._deadline
            )
        except TimeoutError as exc:
            raise ProviderTimeoutError(
                PROVIDER, f"taxonomy refresh took longer than {self._deadline:g}s"
            ) from exc

        fetched_at = self._clock()
        await self._store.save(marketplace_id, tree_id, categories, fetched_at)
        log.info(
            "ebay_taxonomy_refreshed",
            marketplace_id=marketplace_id,
            category_tree_id=tree_id,
            count=len(categories),
        )
        return TaxonomySnapshot(marketplace_id, tree_id, len(categories), fetched_at)
