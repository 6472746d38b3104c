"""Tests for the Pydantic contract models.

Covers the camelCase wire format, the tagged tool-argument union and the
Field constraints that turn bad model arguments into validation errors.
"""

import uuid
from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from concierge.models.contracts import (
    TOOL_ARGUMENTS,
    CreateJobRequest,
    CreateJobResponse,
    EbaySearchArgs,
    ErrorResponse,
    ExaSearchArgs,
    JobView,
    LandedCostArgs,
    NormalizedItem,
    RegisterPushRequest,
)


class TestToolArguments:
    """The ``tool`` tag selects the argument model."""

    def test_ebay_selected_by_tag(self):
        args = TOOL_ARGUMENTS.validate_python(
            {"tool": "search_ebay", "query": "drill", "maxPriceUsd": 90, "condition": "used"}
        )
        assert isinstance(args, EbaySearchArgs)
        assert args.max_price_usd == 90
        assert args.limit == 20

    def test_exa_defaults(self):
        args = TOOL_ARGUMENTS.validate_python({"tool": "search_exa", "query": "drill"})
        assert isinstance(args, ExaSearchArgs)
        assert args.search_strategy == "marketplace"
        assert args.limit == 10

    def test_landed_cost_defaults_to_general(self):
        args = TOOL_ARGUMENTS.validate_python(
            {"tool": "estimate_landed_cost", "productPriceUsd": 40, "weightLbs": 2}
        )
        assert isinstance(args, LandedCostArgs)
        assert args.category == "general"

    def test_unknown_tag_rejected(self):
        with pytest.raises(ValidationError):
            TOOL_ARGUMENTS.validate_python({"tool": "search_amazon", "query": "drill"})

    @pytest.mark.parametrize(
        "overrides",
        [
            {"query": ""},
            {"limit": 0},
            {"limit": 51},
            {"offset": -1},
            {"minPriceUsd": -5},
            {"condition": "mint"},
            {"itemLocationCountry": "USA"},
        ],
    )
    def test_ebay_constraints(self, overrides):
        with pytest.raises(ValidationError):
            EbaySearchArgs.model_validate({"query": "drill", **overrides})

    def test_exa_limit_cap(self):
        with pytest.raises(ValidationError):
            ExaSearchArgs.model_validate({"query": "drill", "limit": 26})

    @pytest.mark.parametrize("weight", [0, 2001])
    def test_weight_bounds(self, weight):
        with pytest.raises(ValidationError):
            LandedCostArgs.model_validate({"productPriceUsd": 10, "weightLbs": weight})

    def test_ebay_filters_are_camel_case_without_paging(self):
        args = EbaySearchArgs.model_validate(
            {"query": "drill", "freeShippingOnly": True, "offset": 20, "sort": "priceAsc"}
        )
        assert args.filters() == {"freeShippingOnly": True, "sort": "priceAsc"}

    def test_exa_domains_are_canonical(self):
        """Order and case of domains must not split the cache."""
        args = ExaSearchArgs.model_validate(
            {"query": "drill", "includeDomains": ["Zoro.com ", "amazon.com", "zoro.com"]}
        )
        assert args.filters()["includeDomains"] == ["amazon.com", "zoro.com"]


class TestNormalizedItem:
    def test_negative_price_fails(self):
        with pytest.raises(ValidationError):
            NormalizedItem(source="ebay", external_id="1", title="x", price_usd_cents=-1)

    def test_optional_fields_default_none(self):
        item = NormalizedItem(source="exa", external_id="u", title="x", price_usd_cents=0)
        assert item.seller_username is None
        assert item.buying_options is None


class TestHttpContracts:
    def test_create_request_accepts_camel_case(self):
        thread = uuid.uuid4()
        body = CreateJobRequest.model_validate(
            {"prompt": "hi", "sessionId": "s", "threadId": str(thread)}
        )
        assert body.session_id == "s"
        assert body.thread_id == thread

    def test_create_request_fields_optional(self):
        """Missing session and prompt are reported by the dispatcher, not the model."""
        body = CreateJobRequest.model_validate({})
        assert body.prompt == ""
        assert body.session_id is None

    def test_create_response_serializes_camel_case(self):
        response = CreateJobResponse(job_id=uuid.uuid4(), thread_id=uuid.uuid4())
        assert set(response.model_dump(by_alias=True)) == {"jobId", "threadId"}

    def test_job_view_from_attributes(self):
        class Row:
            id = uuid.uuid4()
            session_id = "s"
            user_id = None
            thread_id = None
            status = "queued"
            prompt = "hi"
            intent = None
            result_item_ids = None
            error = None
            created_at = datetime(2026, 3, 1, tzinfo=UTC)
            started_at = None
            completed_at = None

        view = JobView.model_validate(Row())
        dumped = view.model_dump(by_alias=True)
        assert dumped["status"] == "queued"
        assert "resultItemIds" in dumped

    def test_job_view_rejects_unknown_status(self):
        with pytest.raises(ValidationError):
            JobView(
                id=uuid.uuid4(),
                session_id="s",
                status="paused",
                prompt="hi",
                created_at=datetime(2026, 3, 1, tzinfo=UTC),
            )

    def test_push_registration_requires_keys(self):
        with pytest.raises(ValidationError):
            RegisterPushRequest.model_validate(
                {"sessionId": "s", "subscription": {"endpoint": "https://push.example"}}
            )

    def test_error_response_detail_optional(self):
        err = ErrorResponse(error="job_not_found", message="Job not found", retryable=False)
        assert err.detail is None
