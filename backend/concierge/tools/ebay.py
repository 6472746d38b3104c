"""eBay Browse API search provider.

Maps the agent's structured filters onto Browse API query parameters and
normalizes item summaries into ``NormalizedItem``. Application access tokens
come from the OAuth client-credentials grant and are cached per scope for the
life of the process.
"""

from __future__ import annotations

import asyncio
import base64
import time
import urllib.parse
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from concierge.errors import ProviderError
from concierge.models.contracts import NormalizedItem, PageMeta, SearchPage
from concierge.utils.http import request_json

log = structlog.get_logger("concierge.ebay")

PROVIDER = "ebay"
DEFAULT_SCOPE = "https://api.ebay.com/oauth/api_scope"
TOKEN_REFRESH_SKEW_SECONDS = 60

_SORTS = {
    "bestMatch": "BEST_MATCH",
    "priceAsc": "PRICE_PLUS_SHIPPING_LOWEST",
    "priceDesc": "PRICE_PLUS_SHIPPING_HIGHEST",
    "newlyListed": "NEWLY_LISTED",
}
_CONDITION_IDS = {
    "new": "conditionIds:{1000}",
    "used": "conditionIds:{3000}",
    "refurbished": "conditionIds:{2000|2500}",
}
_BUYING_OPTIONS = {
    "fixedPrice": "buyingOptions:{FIXED_PRICE}",
    "auction": "buyingOptions:{AUCTION}",
}


@dataclass
class _CachedToken:
    token: str
    expires_at: float


class EbayTokenCache:
    """Application tokens keyed by OAuth scope, refreshed shortly before expiry."""

    def __init__(self, clock=time.monotonic) -> None:
        self._tokens: dict[str, _CachedToken] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    def get(self, scope: str) -> str | None:
        cached = self._tokens.get(scope)
        if cached and cached.expires_at - TOKEN_REFRESH_SKEW_SECONDS > self._clock():
            return cached.token
        return None

    def put(self, scope: str, token: str, expires_in: float) -> None:
        self._tokens[scope] = _CachedToken(token=token, expires_at=self._clock() + expires_in)

    def discard(self, scope: str, token: str) -> None:
        """Forget ``token`` unless another caller has already replaced it."""
        cached = self._tokens.get(scope)
        if cached and cached.token == token:
            del self._tokens[scope]

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock


_TOKENS = EbayTokenCache()


def _format_usd(value: float) -> str:
    return f"{value:g}"


def build_filter(filters: dict[str, Any]) -> str | None:
    """Compose the Browse API ``filter`` parameter from camelCase tool filters."""
    parts: list[str] = []

    low = filters.get("minPriceUsd")
    high = filters.get("maxPriceUsd")
    if low is not None or high is not None:
        if low is not None and high is not None and low > high:
            low, high = high, low
        lo = _format_usd(max(0.0, low)) if low is not None else ""
        hi = _format_usd(max(0.0, high)) if high is not None else ""
        parts.append(f"price:[{lo}..{hi}]")
        parts.append("priceCurrency:USD")

    if condition := filters.get("condition"):
        parts.append(_CONDITION_IDS[condition])
    if buying := filters.get("buyingFormat"):
        parts.append(_BUYING_OPTIONS[buying])
    if filters.get("freeShippingOnly"):
        # Browse has no free-shipping flag; a zero delivery cost cap is equivalent
        parts.append("maxDeliveryCost:0")
    if filters.get("returnsAcceptedOnly"):
        parts.append("returnsAccepted:true")
    if country := (filters.get("itemLocationCountry") or "").strip():
        parts.append(f"itemLocationCountry:{country.upper()}")

    return ",".join(parts) or None


def build_search_params(
    query: str, filters: dict[str, Any], offset: int, limit: int
) -> dict[str, str]:
    brand = (filters.get("brand") or "").strip()
    params = {
        "q": f"{brand} {query}" if brand else query,
        "limit": str(limit),
        "fieldgroups": "PRODUCT,EXTENDED",
        "sort": _SORTS[filters.get("sort") or "bestMatch"],
    }
    if offset > 0:
        params["offset"] = str(offset)
    if category := (filters.get("categoryId") or "").strip():
        params["category_ids"] = category
    if filter_value := build_filter(filters):
        params["filter"] = filter_value
    return params


def _to_cents(value: Any) -> int | None:
    try:
        return round(float(value) * 100)
    except (TypeError, ValueError):
        return None


def normalize_summary(summary: dict[str, Any]) -> NormalizedItem | None:
    """Map one ``itemSummaries`` entry; None when id, title or price is unusable."""
    item_id = summary.get("itemId")
    title = summary.get("title")
    price = summary.get("price") or {}
    if not item_id or not title or not price.get("value"):
        return None
    price_cents = _to_cents(str(price["value"]).strip())
    if price_cents is None:
        log.warning("ebay_invalid_price", item_id=item_id, value=price.get("value"))
        return None

    seller = summary.get("seller") or {}
    feedback_percent: float | None
    try:
        feedback_percent = float(seller["feedbackPercentage"])
    except (KeyError, TypeError, ValueError):
        feedback_percent = None
    feedback_score = seller.get("feedbackScore")

    shipping = next(
        (
            opt["shippingCost"]
            for opt in summary.get("shippingOptions") or []
            if (opt.get("shippingCost") or {}).get("value") is not None
        ),
        None,
    )

    location = summary.get("itemLocation") or {}
    location_parts = [
        part.strip()
        for part in (location.get("city"), location.get("stateOrProvince"), location.get("country"))
        if isinstance(part, str) and part.strip()
    ]
    buying_options = [
        opt for opt in summary.get("buyingOptions") or [] if isinstance(opt, str) and opt.strip()
    ]

    return NormalizedItem(
        source=PROVIDER,
        external_id=str(item_id),
        title=str(title),
        price_usd_cents=max(0, price_cents),
        currency=price.get("currency"),
        image_url=(summary.get("image") or {}).get("imageUrl"),
        affiliate_url=summary.get("itemWebUrl"),
        condition=summary.get("condition") if isinstance(summary.get("condition"), str) else None,
        buying_options=buying_options or None,
        seller_username=seller.get("username") if isinstance(seller.get("username"), str) else None,
        seller_feedback_percent=feedback_percent,
        seller_feedback_score=feedback_score if isinstance(feedback_score, int) else None,
        shipping_cost_usd_cents=_to_cents(shipping["value"]) if shipping else None,
        shipping_currency=shipping.get("currency") if shipping else None,
        item_location=", ".join(location_parts) or None,
        short_description=summary.get("shortDescription"),
    )


def next_offset_from(next_url: str | None) -> int | None:
    if not next_url:
        return None
    query = urllib.parse.urlparse(next_url).query
    values = urllib.parse.parse_qs(query).get("offset")
    if not values:
        return None
    try:
        return int(values[0])
    except ValueError:
        return None


class EbayBrowseProvider:
    name = PROVIDER

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        client_id: str,
        client_secret: str,
        marketplace_id: str = "EBAY_US",
        base_url: str = "https://api.ebay.com",
        timeout: float = 15.0,
        oauth_timeout: float = 12.0,
        scope: str = DEFAULT_SCOPE,
        token_cache: EbayTokenCache | None = None,
    ) -> None:
        self._http = http_client
        self._client_id = client_id
        self._client_secret = client_secret
        self._marketplace_id = marketplace_id
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._oauth_timeout = oauth_timeout
        self._scope = scope
        self._tokens = token_cache or _TOKENS

    @property
    def marketplace_id(self) -> str:
        return self._marketplace_id

    async def _access_token(self) -> str:
        if token := self._tokens.get(self._scope):
            return token
        async with self._tokens.lock:
            # Another caller may have refreshed while we waited
            if token := self._tokens.get(self._scope):
                return token
            if not self._client_id or not self._client_secret:
                raise ProviderError(PROVIDER, "EBAY_CLIENT_ID / EBAY_CLIENT_SECRET not set")

            basic = base64.b64encode(
                f"{self._client_id}:{self._client_secret}".encode()
            ).decode()
            data = await request_json(
                self._http,
                "POST",
                f"{self._base_url}/identity/v1/oauth2/token",
                provider=PROVIDER,
                timeout=self._oauth_timeout,
                headers={
                    "Authorization": f"Basic {basic}",
                    "Content-Type": "application/x-www-form-urlencoded",
                },
                data={"grant_type": "client_credentials", "scope": self._scope},
            )
            token = data.get("access_token")
            if not token:
                raise ProviderError(PROVIDER, "OAuth response had no access_token")
            expires_in = float(data.get("expires_in") or 0)
            self._tokens.put(self._scope, token, expires_in)
            log.info("ebay_token_refreshed", scope=self._scope, expires_in=expires_in)
            return token

    async def _get(
        self, path: str, token: str, params: dict[str, str] | None, timeout: float | None
    ) -> Any:
        return await request_json(
            self._http,
            "GET",
            f"{self._base_url}{path}",
            provider=PROVIDER,
            timeout=timeout or self._timeout,
            params=params,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
                "X-EBAY-C-MARKETPLACE-ID": self._marketplace_id,
            },
        )

    async def get_json(
        self,
        path: str,
        *,
        params: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """GET an eBay REST resource with the application token.

        A 401 means the cached token was revoked before its expiry; it is
        dropped and the call is retried once with a fresh token.
        """
        token = await self._access_token()
        try:
            return await self._get(path, token, params, timeout)
        except ProviderError as exc:
            if exc.status_code != 401:
                raise
        log.warning("ebay_token_rejected", scope=self._scope)
        self._tokens.discard(self._scope, token)
        return await self._get(path, await self._access_token(), params, timeout)

    async def search(
        self, query: str, filters: dict[str, Any], offset: int, limit: int
    ) -> SearchPage:
        params = build_search_params(query, filters, offset, limit)
        data = await self.get_json("/buy/browse/v1/item_summary/search", params=params)

        summaries = data.get("itemSummaries") or []
        items = [item for s in summaries if (item := normalize_summary(s)) is not None]
        log.info(
            "ebay_search_complete",
            query=query[:80],
            returned=len(summaries),
            kept=len(items),
            total=data.get("total"),
        )
        return SearchPage(
            items=items,
            meta=PageMeta(
                total=data.get("total"),
                offset=offset,
                limit=limit,
                next_offset=next_offset_from(data.get("next")),
            ),
        )
