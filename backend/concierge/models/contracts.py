"""Contract models shared by the API, the tool layer and the agent runner.

HTTP bodies and tool arguments are camelCase on the wire; Python code uses
the snake_case field names.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

JobStatus = Literal["queued", "running", "completed", "failed"]
MessageRole = Literal["user", "assistant", "system"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# === Normalized search results ===


class NormalizedItem(BaseModel):
    """A product reference in the common shape every provider maps into."""

    source: str
    external_id: str
    title: str
    price_usd_cents: int = Field(ge=0)
    currency: str | None = None
    image_url: str | None = None
    affiliate_url: str | None = None
    condition: str | None = None
    buying_options: list[str] | None = None
    seller_username: str | None = None
    seller_feedback_percent: float | None = None
    seller_feedback_score: int | None = None
    shipping_cost_usd_cents: int | None = None
    shipping_currency: str | None = None
    item_location: str | None = None
    short_description: str | None = None


class PageMeta(BaseModel):
    total: int | None = None
    offset: int = 0
    limit: int
    next_offset: int | None = None


class SearchPage(BaseModel):
    items: list[NormalizedItem] = []
    meta: PageMeta


# === Tool arguments (tagged by tool name) ===

Condition = Literal["new", "used", "refurbished"]
BuyingFormat = Literal["fixedPrice", "auction"]
SortOrder = Literal["bestMatch", "priceAsc", "priceDesc", "newlyListed"]
SearchStrategy = Literal["marketplace", "specialized", "broad"]
CostCategory = Literal["electronics", "clothing", "tools", "auto_parts", "general"]


class EbaySearchArgs(CamelModel):
    tool: Literal["search_ebay"] = "search_ebay"
    query: str = Field(min_length=1, max_length=300)
    min_price_usd: float | None = Field(default=None, ge=0)
    max_price_usd: float | None = Field(default=None, ge=0)
    condition: Condition | None = None
    buying_format: BuyingFormat | None = None
    sort: SortOrder | None = None
    free_shipping_only: bool | None = None
    returns_accepted_only: bool | None = None
    item_location_country: str | None = Field(default=None, min_length=2, max_length=2)
    brand: str | None = None
    category_id: str | None = None
    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=20, ge=1, le=50)

    def filters(self) -> dict:
        return self.model_dump(
            by_alias=True,
            exclude_none=True,
            exclude={"tool", "query", "offset", "limit"},
        )


class ExaSearchArgs(CamelModel):
    tool: Literal["search_exa"] = "search_exa"
    query: str = Field(min_length=1, max_length=300)
    include_domains: list[str] | None = None
    search_strategy: SearchStrategy = "marketplace"
    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=10, ge=1, le=25)

    def filters(self) -> dict:
        data = self.model_dump(
            by_alias=True,
            exclude_none=True,
            exclude={"tool", "query", "offset", "limit"},
        )
        if "includeDomains" in data:
            data["includeDomains"] = sorted({d.strip().lower() for d in data["includeDomains"]})
        return data


class LandedCostArgs(CamelModel):
    tool: Literal["estimate_landed_cost"] = "estimate_landed_cost"
    product_price_usd: float = Field(ge=0)
    weight_lbs: float = Field(gt=0, le=2000)
    category: CostCategory = "general"


ToolArguments = Annotated[
    EbaySearchArgs | ExaSearchArgs | LandedCostArgs,
    Field(discriminator="tool"),
]

TOOL_ARGUMENTS = TypeAdapter(ToolArguments)


class LandedCostEstimate(CamelModel):
    product_price_usd_cents: int
    shipping_usd_cents: int
    duty_usd_cents: int
    gct_usd_cents: int
    total_usd_cents: int
    rationale: str


# === HTTP API ===


class CreateJobRequest(CamelModel):
    prompt: str = ""
    session_id: str | None = None
    thread_id: uuid.UUID | None = None


class CreateJobResponse(CamelModel):
    job_id: uuid.UUID
    thread_id: uuid.UUID


class JobView(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: uuid.UUID
    session_id: str
    user_id: str | None = None
    thread_id: uuid.UUID | None = None
    status: JobStatus
    prompt: str
    intent: dict | None = None
    result_item_ids: list[str] | None = None
    error: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


class MessageView(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int
    job_id: uuid.UUID
    thread_id: uuid.UUID
    role: MessageRole
    content: str
    created_at: datetime


class ThreadView(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: uuid.UUID
    session_id: str
    user_id: str | None = None
    title: str | None = None
    created_at: datetime
    last_message_at: datetime


class ItemView(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: uuid.UUID
    source: str
    external_id: str
    title: str
    price_usd_cents: int
    currency: str | None = None
    image_url: str | None = None
    affiliate_url: str | None = None
    condition: str | None = None
    seller_username: str | None = None
    shipping_cost_usd_cents: int | None = None
    item_location: str | None = None
    short_description: str | None = None
    last_seen_at: datetime


class PushKeys(BaseModel):
    p256dh: str = Field(min_length=1)
    auth: str = Field(min_length=1)


class PushSubscriptionBody(BaseModel):
    endpoint: str = Field(min_length=1)
    keys: PushKeys


class RegisterPushRequest(CamelModel):
    session_id: str = Field(min_length=1)
    subscription: PushSubscriptionBody
    user_agent: str | None = None


class CacheClearResponse(BaseModel):
    deleted: int


class ErrorResponse(BaseModel):
    error: str
    message: str
    retryable: bool
    detail: str | None = None


class VapidKeyResponse(CamelModel):
    public_key: str


# === Direct search and category lookup ===


SearchSource = Literal["ebay", "exa"]


class SearchRequest(CamelModel):
    """Search one provider without an agent job. ``filters`` use the tool's camelCase names."""

    query: str
    filters: dict = Field(default_factory=dict)
    offset: int = 0
    limit: int | None = None


class SearchResponse(CamelModel):
    items: list[ItemView]
    total: int | None = None
    next_offset: int | None = None
    cached: bool


class CategoryView(CamelModel):
    category_id: str
    name: str
    parent_category_id: str | None = None
    level: int


class CategoriesResponse(CamelModel):
    fetched_at: datetime | None = None
    categories: list[CategoryView]


class TaxonomyRefreshResponse(CamelModel):
    marketplace_id: str
    category_tree_id: str
    count: int
    fetched_at: datetime
