"""Tool adapter: one invocation shape over every agent tool.

``ToolAdapter.invoke(name, arguments)`` validates the model's arguments
against the tagged union in ``models.contracts``, runs the tool and returns a
JSON-ready result. Search tools go through the result cache and the item
store; the model only sees a short summary while the full item refs travel
separately for the UI. Tool failures are returned as ``{"error": {...}}``
results instead of being raised, so one bad call never aborts the turn.

``ToolAdapter.search_source`` serves the direct search endpoint from the same
cache entries, returning full item rows and raising on failure.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

import structlog
from pydantic import ValidationError

from concierge.errors import ProviderError, ProviderTimeoutError
from concierge.models.contracts import (
    TOOL_ARGUMENTS,
    EbaySearchArgs,
    ExaSearchArgs,
    LandedCostArgs,
    PageMeta,
    SearchPage,
)
from concierge.models.db import Item
from concierge.stores.items import ItemStore
from concierge.stores.search_cache import DEFAULT_TTL, SearchCacheStore
from concierge.tools.landed_cost import LandedCostPolicy

log = structlog.get_logger("concierge.tools")

SUMMARY_ITEM_LIMIT = 10

_CONDITION = {
    "type": "string",
    "enum": ["new", "used", "refurbished"],
    "description": "Filter by item condition",
}

AGENT_TOOLS: list[dict[str, Any]] = [
    {
        "name": "search_ebay",
        "description": (
            "Search for products on eBay using high-quality structured data. Best for common "
            "items, electronics, and clothing where exact pricing and condition (new/used) "
            "are important."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "The product to search for"},
                "minPriceUsd": {"type": "number", "description": "Minimum price in USD"},
                "maxPriceUsd": {"type": "number", "description": "Maximum price in USD"},
                "condition": _CONDITION,
                "buyingFormat": {
                    "type": "string",
                    "enum": ["fixedPrice", "auction"],
                    "description": "Buy It Now listings or auctions",
                },
                "sort": {
                    "type": "string",
                    "enum": ["bestMatch", "priceAsc", "priceDesc", "newlyListed"],
                    "description": "Sort order for results",
                },
                "freeShippingOnly": {"type": "boolean"},
                "returnsAcceptedOnly": {"type": "boolean"},
                "itemLocationCountry": {
                    "type": "string",
                    "description": "Two-letter country code of the item location, e.g. 'US'",
                },
                "brand": {"type": "string", "description": "Brand name to prefix the query with"},
                "categoryId": {"type": "string", "description": "eBay category id"},
                "offset": {"type": "integer", "minimum": 0},
                "limit": {"type": "integer", "minimum": 1, "maximum": 50},
            },
            "required": ["query"],
        },
    },
    {
        "name": "search_exa",
        "description": (
            "Adaptive web search for products. Best for official brand sites (Nvidia, Apple), "
            "Amazon, Walmart, or niche stores. Can target specific domains."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "The product to search for"},
                "includeDomains": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Specific domains to target (e.g. ['nvidia.com', 'amazon.com'])",
                },
                "searchStrategy": {
                    "type": "string",
                    "enum": ["marketplace", "specialized", "broad"],
                    "description": "Level of search depth. 'broad' is best for rare items.",
                },
                "offset": {"type": "integer", "minimum": 0},
                "limit": {"type": "integer", "minimum": 1, "maximum": 25},
            },
            "required": ["query"],
        },
    },
    {
        "name": "estimate_landed_cost",
        "description": (
            "Calculate the total cost to get a product to Jamaica, including shipping, "
            "duties (CIF), and GCT."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "productPriceUsd": {
                    "type": "number",
                    "description": "The price of the item in USD",
                },
                "weightLbs": {
                    "type": "number",
                    "description": (
                        "Estimated weight in pounds (guess if unknown, e.g. laptop=5lbs, "
                        "t-shirt=0.5lbs)"
                    ),
                },
                "category": {
                    "type": "string",
                    "enum": ["electronics", "clothing", "tools", "auto_parts", "general"],
                    "description": "Broad category for duty calculation",
                },
            },
            "required": ["productPriceUsd", "weightLbs"],
        },
    },
]

TOOL_NAMES = frozenset(t["name"] for t in AGENT_TOOLS)

_PROVIDER_FOR_TOOL = {"search_ebay": "ebay", "search_exa": "exa"}


class SearchProvider(Protocol):
    name: str

    async def search(
        self, query: str, filters: dict[str, Any], offset: int, limit: int
    ) -> SearchPage: ...


@dataclass(frozen=True)
class ToolOutcome:
    result: dict[str, Any]
    item_ids: list[str] = field(default_factory=list)

    @property
    def is_error(self) -> bool:
        return "error" in self.result


@dataclass(frozen=True)
class SourcePage:
    items: list[Item]
    meta: PageMeta
    cached: bool


def tool_error(kind: str, message: str) -> ToolOutcome:
    return ToolOutcome(result={"error": {"type": kind, "message": message}})


def describe_call(name: str, arguments: dict[str, Any]) -> str:
    """Progress line shown in the thread while a tool runs."""
    query = str(arguments.get("query") or "").strip()
    if name == "search_ebay":
        return f"Searching eBay for: {query}"
    if name == "search_exa":
        return f"Searching the web for: {query}"
    if name == "estimate_landed_cost":
        return "Estimating the landed cost to Jamaica…"
    return f"Running {name}…"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ToolAdapter:
    def __init__(
        self,
        *,
        providers: dict[str, SearchProvider],
        cache: SearchCacheStore,
        items: ItemStore,
        cost_policy: LandedCostPolicy | None = None,
        cache_ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._providers = providers
        self._cache = cache
        self._items = items
        self._cost_policy = cost_policy or LandedCostPolicy()
        self._cache_ttl = cache_ttl
        self._clock = clock

    async def invoke(self, name: str, arguments: dict[str, Any] | None) -> ToolOutcome:
        if name not in TOOL_NAMES:
            log.warning("tool_unknown", tool=name)
            return tool_error("unknown_tool", f"Unknown tool '{name}'")
        if arguments is not None and not isinstance(arguments, dict):
            return tool_error("invalid_arguments", "Tool arguments must be a JSON object")

        try:
            args = TOOL_ARGUMENTS.validate_python({**(arguments or {}), "tool": name})
        except ValidationError as e:
            log.warning("tool_invalid_arguments", tool=name, errors=e.error_count())
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'][1:]) or 'arguments'}: {err['msg']}"
                for err in e.errors()
            )
            return tool_error("invalid_arguments", problems)

        try:
            if isinstance(args, LandedCostArgs):
                return self._estimate(args)
            return await self._search(_PROVIDER_FOR_TOOL[name], args)
        except ProviderTimeoutError as e:
            log.warning("tool_provider_timeout", tool=name, error=str(e))
            return tool_error("timeout", str(e))
        except ProviderError as e:
            log.warning("tool_provider_error", tool=name, status=e.status_code, error=str(e))
            return tool_error("provider_error", str(e))
        except Exception as e:
            log.exception("tool_failed", tool=name)
            return tool_error("internal_error", f"{type(e).__name__}: {e}")

    def _estimate(self, args: LandedCostArgs) -> ToolOutcome:
        estimate = self._cost_policy.estimate(
            args.product_price_usd, args.weight_lbs, args.category
        )
        return ToolOutcome(result=estimate.model_dump(by_alias=True))

    def has_provider(self, name: str) -> bool:
        return name in self._providers

    async def search_source(
        self,
        source: str,
        query: str,
        filters: dict[str, Any] | None = None,
        *,
        offset: int = 0,
        limit: int | None = None,
    ) -> SourcePage:
        """One provider page with full item rows, for callers outside the agent loop.

        Arguments go through the same validation as the search tools and the
        page shares their cache entries. Raises ``ValidationError`` for bad
        arguments and ``ProviderError`` when the provider fails.
        """
        payload: dict[str, Any] = {**(filters or {}), "query": query, "offset": offset}
        if limit is not None:
            payload["limit"] = limit
        args = TOOL_ARGUMENTS.validate_python({**payload, "tool": f"search_{source}"})
        assert not isinstance(args, LandedCostArgs)

        item_ids, meta, cached = await self._cached_page(source, args)
        log.info(
            "source_search_complete",
            provider=source,
            query=query[:80],
            items=len(item_ids),
            cached=cached,
        )
        return SourcePage(items=await self._items.get_many(item_ids), meta=meta, cached=cached)

    async def _cached_page(
        self, provider_name: str, args: EbaySearchArgs | ExaSearchArgs
    ) -> tuple[list[str], PageMeta, bool]:
        provider = self._providers.get(provider_name)
        if provider is None:
            raise ProviderError(provider_name, "provider is not configured")

        filters = args.filters()
        now = self._clock()
        hit = await self._cache.lookup(
            provider_name, args.query, filters, args.offset, args.limit, now
        )
        if hit is not None:
            return hit.item_ids, hit.meta, True

        page = await provider.search(args.query, filters, args.offset, args.limit)
        item_ids = await self._items.upsert_many(page.items, seen_at=now)
        await self._cache.store(
            provider_name,
            args.query,
            filters,
            args.offset,
            args.limit,
            item_ids,
            page.meta,
            now,
            self._cache_ttl,
        )
        return item_ids, page.meta, False

    async def _search(
        self, provider_name: str, args: EbaySearchArgs | ExaSearchArgs
    ) -> ToolOutcome:
        item_ids, meta, cached = await self._cached_page(provider_name, args)
        log.info(
            "tool_search_complete",
            provider=provider_name,
            query=args.query[:80],
            items=len(item_ids),
            cached=cached,
        )
        return ToolOutcome(
            result=await self._summarize(provider_name, args.query, item_ids, meta, cached),
            item_ids=list(item_ids),
        )

    async def _summarize(
        self, provider: str, query: str, item_ids: list[str], meta: PageMeta, cached: bool
    ) -> dict[str, Any]:
        rows = await self._items.get_many(item_ids[:SUMMARY_ITEM_LIMIT])
        return {
            "provider": provider,
            "query": query,
            "items": [
                {
                    "title": row.title,
                    "price": f"{row.price_usd_cents / 100:.2f}",
                    "url": row.affiliate_url,
                    "source": row.source,
                    "id": str(row.id),
                }
                for row in rows
            ],
            "total": meta.total,
            "nextOffset": meta.next_offset,
            "cached": cached,
        }
