"""Exa web search provider for products outside the eBay catalog.

Exa has no paging cursor, so a page is produced by asking for
``offset + limit`` results and slicing. Results without a recognizable USD
price are dropped because every stored item needs one.
"""

from __future__ import annotations

import re
import urllib.parse
from typing import Any

import httpx
import structlog

from concierge.errors import ProviderError
from concierge.models.contracts import NormalizedItem, PageMeta, SearchPage
from concierge.utils.http import request_json

log = structlog.get_logger("concierge.exa")

PROVIDER = "exa"
EXA_BASE_URL = "https://api.exa.ai"
MAX_RESULTS = 100
MARKETPLACE_DOMAINS = ["amazon.com/dp", "ebay.com/itm"]

_PRICE_RE = re.compile(r"\$\s?[\d,]+(?:\.\d{2})?")
_SEARCH_TYPES = {"marketplace": "auto", "specialized": "neural", "broad": "auto"}
_TEXT_CHARS = {"marketplace": 1000, "specialized": 1000, "broad": 2000}


def _extract_price_text(result: dict[str, Any]) -> str | None:
    """Use Exa's price field when present, else the first dollar amount in page text."""
    if price := result.get("price"):
        return str(price)
    match = _PRICE_RE.search(result.get("text") or "")
    return match.group(0) if match else None


def _price_to_cents(price_text: str | None) -> int | None:
    """'$1,299.00' -> 129900. None when the text is not a parsable amount."""
    if not price_text:
        return None
    cleaned = price_text.replace("$", "").replace(",", "").strip()
    try:
        return round(float(cleaned) * 100)
    except (ValueError, OverflowError):
        return None


def _retailer(url: str) -> str | None:
    domain = urllib.parse.urlparse(url).netloc
    return domain.removeprefix("www.") or None


def build_payload(query: str, filters: dict[str, Any], num_results: int) -> dict[str, Any]:
    strategy = filters.get("searchStrategy") or "marketplace"
    domains = filters.get("includeDomains")
    if not domains and strategy == "marketplace":
        domains = MARKETPLACE_DOMAINS
    payload: dict[str, Any] = {
        "query": query,
        "type": _SEARCH_TYPES[strategy],
        "numResults": num_results,
        "useAutoprompt": True,
        "contents": {"text": {"maxCharacters": _TEXT_CHARS[strategy]}},
    }
    if domains:
        payload["includeDomains"] = list(domains)
    return payload


def normalize_result(result: dict[str, Any]) -> NormalizedItem | None:
    url = result.get("url")
    title = (result.get("title") or "").strip()
    price_cents = _price_to_cents(_extract_price_text(result))
    if not url or not title or price_cents is None:
        return None
    text = (result.get("text") or "").strip()
    return NormalizedItem(
        source=PROVIDER,
        external_id=str(result.get("id") or url),
        title=title,
        price_usd_cents=max(0, price_cents),
        currency="USD",
        image_url=result.get("image"),
        affiliate_url=url,
        seller_username=_retailer(url),
        short_description=text[:300] or None,
    )


class ExaSearchProvider:
    name = PROVIDER

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        api_key: str,
        base_url: str = EXA_BASE_URL,
        timeout: float = 15.0,
    ) -> None:
        self._http = http_client
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    async def search(
        self, query: str, filters: dict[str, Any], offset: int, limit: int
    ) -> SearchPage:
        if not self._api_key:
            raise ProviderError(PROVIDER, "EXA_API_KEY not set")

        num_results = min(MAX_RESULTS, offset + limit)
        data = await request_json(
            self._http,
            "POST",
            f"{self._base_url}/search",
            provider=PROVIDER,
            timeout=self._timeout,
            headers={"x-api-key": self._api_key},
            json=build_payload(query, filters, num_results),
        )
        results: list[dict[str, Any]] = data.get("results") or []
        window = results[offset : offset + limit]
        items = [item for r in window if (item := normalize_result(r)) is not None]

        has_more = len(results) >= offset + limit and offset + limit < MAX_RESULTS
        log.info(
            "exa_search_complete",
            query=query[:80],
            returned=len(window),
            kept=len(items),
        )
        return SearchPage(
            items=items,
            meta=PageMeta(
                total=None,
                offset=offset,
                limit=limit,
                next_offset=offset + limit if has_more else None,
            ),
        )
