"""Item store: normalized product rows keyed by (source, external_id)."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

import structlog
from sqlalchemy import select

from concierge.database import Database
from concierge.models.contracts import NormalizedItem
from concierge.models.db import Item

logger = structlog.get_logger()

_REFRESH_COLUMNS = [
    "title",
    "price_usd_cents",
    "currency",
    "image_url",
    "affiliate_url",
    "condition",
    "buying_options",
    "seller_username",
    "seller_feedback_percent",
    "seller_feedback_score",
    "shipping_cost_usd_cents",
    "shipping_currency",
    "item_location",
    "short_description",
    "last_seen_at",
]


class ItemStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def upsert_many(
        self, items: list[NormalizedItem], *, seen_at: datetime | None = None
    ) -> list[str]:
        """Insert or refresh items; returns stored ids in input order.

        Repeated (source, external_id) pairs in one batch collapse to the last
        occurrence and map to the same id.
        """
        if not items:
            return []
        now = seen_at or datetime.now(UTC)

        rows: dict[tuple[str, str], dict] = {}
        for item in items:
            row = item.model_dump()
            row["id"] = uuid.uuid4()
            row["last_seen_at"] = now
            rows[(item.source, item.external_id)] = row

        stmt = self._db.upsert(
            Item,
            list(rows.values()),
            conflict_columns=["source", "external_id"],
            update_columns=_REFRESH_COLUMNS,
        ).returning(Item.id, Item.source, Item.external_id)

        async with self._db.sessions.begin() as session:
            result = await session.execute(stmt)
            stored = {(source, external_id): str(id_) for id_, source, external_id in result}

        logger.debug("items_upserted", count=len(stored))
        return [stored[(item.source, item.external_id)] for item in items]

    async def get_many(self, item_ids: list[str]) -> list[Item]:
        """Fetch items by id, preserving the given order and skipping unknown ids."""
        if not item_ids:
            return []
        wanted = [uuid.UUID(i) for i in item_ids]
        async with self._db.sessions() as session:
            result = await session.scalars(select(Item).where(Item.id.in_(wanted)))
            by_id = {str(item.id): item for item in result}
        return [by_id[i] for i in item_ids if i in by_id]
