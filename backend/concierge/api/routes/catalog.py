"""Direct catalog access: cached provider search and eBay category lookup.

Both read the same stores the agent writes, so a page the agent fetched is
served here from cache and vice versa.
"""

from __future__ import annotations

from fastapi import APIRouter, Query, Request
from pydantic import ValidationError

from concierge.api.deps import error_response, get_services, provider_error_response
from concierge.errors import ProviderError
from concierge.models.contracts import (
    CategoriesResponse,
    CategoryView,
    ErrorResponse,
    ItemView,
    SearchRequest,
    SearchResponse,
    SearchSource,
)

router = APIRouter(tags=["catalog"])


def _describe(exc: ValidationError) -> str:
    # The first loc part is the tool tag
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc'][1:]) or 'arguments'}: {err['msg']}"
        for err in exc.errors()
    )


@router.post(
    "/search/{source}",
    response_model=SearchResponse,
    responses={
        422: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
)
async def search_source(source: SearchSource, body: SearchRequest, request: Request):
    """One page of a provider's results, cached for the search cache TTL."""
    tools = get_services(request).tools
    if not tools.has_provider(source):
        return error_response(503, "source_unavailable", f"Source '{source}' is not configured")

    try:
        page = await tools.search_source(
            source, body.query, body.filters, offset=body.offset, limit=body.limit
        )
    except ValidationError as e:
        return error_response(422, "validation_error", _describe(e))
    except ProviderError as e:
        return provider_error_response(e)

    return SearchResponse(
        items=[ItemView.model_validate(row) for row in page.items],
        total=page.meta.total,
        next_offset=page.meta.next_offset,
        cached=page.cached,
    )


@router.get("/ebay/categories", response_model=CategoriesResponse)
async def list_ebay_categories(
    request: Request,
    marketplace_id: str | None = Query(default=None, alias="marketplaceId"),
    search: str | None = None,
    parent_category_id: str | None = Query(default=None, alias="parentCategoryId"),
    limit: int | None = None,
):
    """Cached categories, filtered by parent and name. Empty until the first refresh."""
    fetched_at, categories = await get_services(request).taxonomy.find_categories(
        marketplace_id,
        search=search,
        parent_category_id=parent_category_id,
        limit=limit,
    )
    return CategoriesResponse(
        fetched_at=fetched_at,
        categories=[CategoryView.model_validate(c) for c in categories],
    )
