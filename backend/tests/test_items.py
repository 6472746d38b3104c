"""Tests for ItemStore: idempotent upserts keyed by (source, external_id)."""

import uuid
from datetime import UTC, datetime, timedelta

import pytest
from fakes import make_items
from sqlalchemy import func, select

from concierge.models.db import Item
from concierge.stores.items import ItemStore

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def items(db) -> ItemStore:
    return ItemStore(db)


async def _count(db) -> int:
    async with db.sessions() as session:
        return await session.scalar(select(func.count()).select_from(Item))


class TestUpsertMany:
    @pytest.mark.asyncio
    async def test_returns_ids_in_input_order(self, items):
        batch = make_items("ebay", 3)
        ids = await items.upsert_many(batch, seen_at=T0)

        assert len(ids) == 3
        stored = await items.get_many(ids)
        assert [i.external_id for i in stored] == ["item-0", "item-1", "item-2"]

    @pytest.mark.asyncio
    async def test_repeat_upsert_keeps_id_and_refreshes_fields(self, db, items):
        original = make_items("ebay", 1)
        [first_id] = await items.upsert_many(original, seen_at=T0)

        repriced = original[0].model_copy(update={"price_usd_cents": 999, "title": "Repriced"})
        later = T0 + timedelta(hours=1)
        [second_id] = await items.upsert_many([repriced], seen_at=later)

        assert first_id == second_id
        assert await _count(db) == 1
        [row] = await items.get_many([first_id])
        assert row.price_usd_cents == 999
        assert row.title == "Repriced"
        assert row.last_seen_at == later

    @pytest.mark.asyncio
    async def test_same_external_id_different_source_is_distinct(self, db, items):
        ids = await items.upsert_many(make_items("ebay", 1) + make_items("exa", 1), seen_at=T0)
        assert len(set(ids)) == 2
        assert await _count(db) == 2

    @pytest.mark.asyncio
    async def test_duplicates_within_batch_collapse(self, db, items):
        batch = make_items("ebay", 2)
        batch.append(batch[0].model_copy(update={"price_usd_cents": 1}))

        ids = await items.upsert_many(batch, seen_at=T0)

        assert ids[0] == ids[2]
        assert await _count(db) == 2
        [row] = await items.get_many([ids[0]])
        assert row.price_usd_cents == 1

    @pytest.mark.asyncio
    async def test_empty_batch(self, items):
        assert await items.upsert_many([]) == []


class TestGetMany:
    @pytest.mark.asyncio
    async def test_preserves_requested_order_and_skips_unknown(self, items):
        ids = await items.upsert_many(make_items("ebay", 3), seen_at=T0)
        requested = [ids[2], str(uuid.uuid4()), ids[0]]

        rows = await items.get_many(requested)
        assert [str(r.id) for r in rows] == [ids[2], ids[0]]

    @pytest.mark.asyncio
    async def test_empty(self, items):
        assert await items.get_many([]) == []
