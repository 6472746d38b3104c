"""Shared HTTP helper for search provider calls.

Every call carries an explicit timeout; transport failures and error
statuses come back as typed provider errors the tool layer can report.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import httpx

import structlog

from concierge.errors import ProviderError, ProviderTimeoutError

logger = structlog.get_logger()

_ERROR_BODY_PREVIEW = 200


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    provider: str,
    timeout: float,
    **kwargs: Any,
) -> Any:
    """Send one request and decode the JSON body."""
    import httpx

    try:
        response = await client.request(method, url, timeout=timeout, **kwargs)
    except httpx.TimeoutException as exc:
        raise ProviderTimeoutError(
            provider, f"request timed out after {timeout:g}s: {url[:100]}"
        ) from exc
    except httpx.RequestError as exc:
        raise ProviderError(
            provider, f"network error: {url[:100]}: {type(exc).__name__}"
        ) from exc

    if response.status_code >= 400:
        preview = response.text[:_ERROR_BODY_PREVIEW]
        logger.warning(
            "provider_http_error",
            provider=provider,
            status=response.status_code,
            body=preview,
        )
        raise ProviderError(
            provider,
            f"HTTP {response.status_code}: {preview}",
            status_code=response.status_code,
        )

    try:
        return response.json()
    except ValueError as exc:
        raise ProviderError(provider, "response was not valid JSON") from exc
