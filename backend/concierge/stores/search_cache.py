"""Search result cache: memoized provider pages with passive TTL expiry.

Keys are a SHA-256 over the version tag, provider, normalized query,
canonical filter JSON and the page window. Filters must serialize to
identical bytes for semantically identical objects, otherwise logically equal
searches would land in separate rows.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import delete, select

from concierge.database import Database
from concierge.models.contracts import PageMeta
from concierge.models.db import SearchCacheEntry

logger = structlog.get_logger()

DEFAULT_TTL = timedelta(minutes=20)


def _drop_none(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _drop_none(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_drop_none(v) for v in value]
    return value


def canonical_filters(filters: dict[str, Any] | None) -> str:
    """Stable JSON for a filter object: None dropped, keys sorted, no whitespace."""
    return json.dumps(
        _drop_none(filters or {}), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def normalize_query(query: str) -> str:
    return " ".join(query.split()).lower()


def cache_key(
    version: str,
    provider: str,
    query: str,
    filters: dict[str, Any] | None,
    offset: int,
    limit: int,
) -> str:
    raw = "::".join(
        [
            version,
            provider,
            normalize_query(query),
            canonical_filters(filters),
            str(offset),
            str(limit),
        ]
    )
    return hashlib.sha256(raw.lower().encode()).hexdigest()


@dataclass(frozen=True)
class CacheHit:
    item_ids: list[str]
    meta: PageMeta


class SearchCacheStore:
    def __init__(self, db: Database, *, version: str = "v2") -> None:
        self._db = db
        self.version = version

    def key_for(
        self, provider: str, query: str, filters: dict[str, Any] | None, offset: int, limit: int
    ) -> str:
        return cache_key(self.version, provider, query, filters, offset, limit)

    async def lookup(
        self,
        provider: str,
        query: str,
        filters: dict[str, Any] | None,
        offset: int,
        limit: int,
        now: datetime,
    ) -> CacheHit | None:
        """Return the cached page, or None when absent or expired."""
        key = self.key_for(provider, query, filters, offset, limit)
        async with self._db.sessions() as session:
            entry = await session.scalar(
                select(SearchCacheEntry).where(SearchCacheEntry.key == key)
            )
        if entry is None:
            return None
        if now >= entry.expires_at:
            logger.debug("search_cache_expired", provider=provider, key=key[:12])
            return None
        return CacheHit(
            item_ids=list(entry.item_ids),
            meta=PageMeta(
                total=entry.total,
                offset=entry.offset,
                limit=entry.limit,
                next_offset=entry.next_offset,
            ),
        )

    async def store(
        self,
        provider: str,
        query: str,
        filters: dict[str, Any] | None,
        offset: int,
        limit: int,
        item_ids: list[str],
        meta: PageMeta,
        created_at: datetime,
        ttl: timedelta = DEFAULT_TTL,
    ) -> str:
        """Upsert the page under its key. Last writer wins."""
        key = self.key_for(provider, query, filters, offset, limit)
        row = {
            "key": key,
            "provider": provider,
            "query": normalize_query(query),
            "filters": _drop_none(filters or {}),
            "item_ids": list(item_ids),
            "total": meta.total,
            "offset": offset,
            "limit": limit,
            "next_offset": meta.next_offset,
            "created_at": created_at,
            "expires_at": created_at + ttl,
        }
        stmt = self._db.upsert(
            SearchCacheEntry,
            row,
            conflict_columns=["key"],
            update_columns=[c for c in row if c != "key"],
        )
        async with self._db.sessions.begin() as session:
            await session.execute(stmt)
        logger.debug("search_cache_stored", provider=provider, key=key[:12], items=len(item_ids))
        return key

    async def clear_all(self) -> int:
        async with self._db.sessions.begin() as session:
            result = await session.execute(
                delete(SearchCacheEntry).execution_options(synchronize_session=False)
            )
        logger.info("search_cache_cleared", deleted=result.rowcount)
        return result.rowcount

    async def purge_expired(self, now: datetime) -> int:
        async with self._db.sessions.begin() as session:
            result = await session.execute(
                delete(SearchCacheEntry)
                .where(SearchCacheEntry.expires_at <= now)
                .execution_options(synchronize_session=False)
            )
        logger.info("search_cache_purged", deleted=result.rowcount)
        return result.rowcount
