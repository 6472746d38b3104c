"""Operator endpoints, guarded by the ADMIN_TOKEN shared secret."""

from __future__ import annotations

import hmac

import structlog
from fastapi import APIRouter, Query, Request

from concierge.api.deps import error_response, get_services, provider_error_response
from concierge.errors import ProviderError
from concierge.models.contracts import (
    CacheClearResponse,
    ErrorResponse,
    TaxonomyRefreshResponse,
)

logger = structlog.get_logger()

router = APIRouter(tags=["admin"])


def _admin(request: Request) -> bool:
    expected = get_services(request).settings.admin_token
    supplied = request.headers.get("X-Admin-Token", "")
    return bool(expected) and hmac.compare_digest(supplied.encode(), expected.encode())


@router.delete(
    "/admin/search-cache",
    response_model=CacheClearResponse,
    responses={403: {"model": ErrorResponse}},
)
async def clear_search_cache(request: Request):
    """Drop every cached search page. Items are kept."""
    if not _admin(request):
        return error_response(403, "forbidden", "Admin token required")

    deleted = await get_services(request).search_cache.clear_all()
    logger.warning("admin_search_cache_cleared", deleted=deleted)
    return CacheClearResponse(deleted=deleted)


@router.post(
    "/admin/ebay-taxonomy/refresh",
    response_model=TaxonomyRefreshResponse,
    responses={
        403: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
)
async def refresh_ebay_taxonomy(
    request: Request, marketplace_id: str | None = Query(default=None, alias="marketplaceId")
):
    """Re-download the marketplace's category tree (defaults to the configured one)."""
    if not _admin(request):
        return error_response(403, "forbidden", "Admin token required")
    refresher = get_services(request).taxonomy_refresher
    if refresher is None:
        return error_response(503, "source_unavailable", "eBay is not configured")

    try:
        snapshot = await refresher.refresh(marketplace_id)
    except ProviderError as e:
        return provider_error_response(e)
    return TaxonomyRefreshResponse(
        marketplace_id=snapshot.marketplace_id,
        category_tree_id=snapshot.category_tree_id,
        count=snapshot.count,
        fetched_at=snapshot.fetched_at,
    )
