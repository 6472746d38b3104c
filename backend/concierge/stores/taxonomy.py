"""eBay category tree store: one flattened snapshot per marketplace."""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import select

from concierge.database import Database
from concierge.models.db import EbayTaxonomy

logger = structlog.get_logger()

DEFAULT_MARKETPLACE = "EBAY_US"
MAX_CATEGORY_LIMIT = 200
DEFAULT_CATEGORY_LIMIT = 50


def normalize_marketplace(marketplace_id: str | None) -> str:
    return (marketplace_id or "").strip().upper() or DEFAULT_MARKETPLACE


class TaxonomyStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def save(
        self,
        marketplace_id: str,
        category_tree_id: str,
        categories: list[dict[str, Any]],
        fetched_at: datetime,
    ) -> None:
        """Replace the marketplace's snapshot."""
        stmt = self._db.upsert(
            EbayTaxonomy,
            {
                "marketplace_id": normalize_marketplace(marketplace_id),
                "category_tree_id": category_tree_id,
                "categories": categories,
                "fetched_at": fetched_at,
            },
            conflict_columns=["marketplace_id"],
            update_columns=["category_tree_id", "categories", "fetched_at"],
        )
        async with self._db.sessions.begin() as session:
            await session.execute(stmt)
        logger.info(
            "ebay_taxonomy_saved",
            marketplace_id=marketplace_id,
            category_tree_id=category_tree_id,
            count=len(categories),
        )

    async def get(self, marketplace_id: str | None) -> EbayTaxonomy | None:
        async with self._db.sessions() as session:
            return await session.scalar(
                select(EbayTaxonomy).where(
                    EbayTaxonomy.marketplace_id == normalize_marketplace(marketplace_id)
                )
            )

    async def find_categories(
        self,
        marketplace_id: str | None = None,
        *,
        search: str | None = None,
        parent_category_id: str | None = None,
        limit: int | None = None,
    ) -> tuple[datetime | None, list[dict[str, Any]]]:
        """Filter the cached tree by parent and a case-insensitive name substring.

        Returns ``(None, [])`` when the marketplace has never been refreshed.
        """
        snapshot = await self.get(marketplace_id)
        if snapshot is None:
            return None, []

        if limit is None:
            limit = DEFAULT_CATEGORY_LIMIT
        limit = max(1, min(MAX_CATEGORY_LIMIT, limit))
        needle = (search or "").strip().lower()
        parent = (parent_category_id or "").strip()

        matches = []
        for category in snapshot.categories:
            if parent and category.get("parentCategoryId") != parent:
                continue
            if needle and needle not in category["name"].lower():
                continue
            matches.append(category)
            if len(matches) >= limit:
                break
        return snapshot.fetched_at, matches
