"""Wiring for the engine's stores, tools, runner and dispatcher.

The API process and the Temporal worker each build one ``Services``
container at startup. Tests build one around an in-memory database and stub
collaborators.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

import httpx
import structlog

from concierge.activities.agent_runner import AgentRunner
from concierge.activities.notify import PushNotifier, PushTransport, WebPushTransport
from concierge.config import Settings
from concierge.database import Database
from concierge.dispatch import InProcessScheduler, JobDispatcher, JobScheduler
from concierge.stores.conversations import ConversationStore
from concierge.stores.items import ItemStore
from concierge.stores.jobs import JobStore
from concierge.stores.push_subscriptions import PushSubscriptionStore
from concierge.stores.search_cache import SearchCacheStore
from concierge.stores.taxonomy import TaxonomyStore
from concierge.tools.ebay import EbayBrowseProvider
from concierge.tools.ebay_taxonomy import EbayTaxonomyRefresher
from concierge.tools.exa import ExaSearchProvider
from concierge.tools.landed_cost import LandedCostPolicy
from concierge.tools.registry import SearchProvider, ToolAdapter
from concierge.utils.llm import AnthropicModel, LanguageModel

logger = structlog.get_logger()


@dataclass
class Services:
    settings: Settings
    db: Database
    http: httpx.AsyncClient
    jobs: JobStore
    conversations: ConversationStore
    items: ItemStore
    search_cache: SearchCacheStore
    push_subscriptions: PushSubscriptionStore
    taxonomy: TaxonomyStore
    tools: ToolAdapter
    notifier: PushNotifier
    runner: AgentRunner
    dispatcher: JobDispatcher
    taxonomy_refresher: EbayTaxonomyRefresher | None = None

    async def aclose(self) -> None:
        await self.http.aclose()
        await self.db.dispose()


def default_providers(settings: Settings, http: httpx.AsyncClient) -> dict[str, SearchProvider]:
    providers: dict[str, SearchProvider] = {}
    if settings.ebay_client_id and settings.ebay_client_secret:
        providers["ebay"] = EbayBrowseProvider(
            http,
            client_id=settings.ebay_client_id,
            client_secret=settings.ebay_client_secret,
            marketplace_id=settings.ebay_marketplace_id,
            base_url=settings.ebay_api_base_url,
            timeout=settings.provider_timeout_seconds,
            oauth_timeout=settings.ebay_oauth_timeout_seconds,
        )
    if settings.exa_api_key:
        providers["exa"] = ExaSearchProvider(
            http, api_key=settings.exa_api_key, timeout=settings.provider_timeout_seconds
        )
    return providers


def default_push_transport(settings: Settings) -> PushTransport | None:
    if not settings.vapid_private_key:
        return None
    return WebPushTransport(private_key=settings.vapid_private_key, subject=settings.vapid_subject)


def build_services(
    settings: Settings,
    *,
    db: Database | None = None,
    http: httpx.AsyncClient | None = None,
    model: LanguageModel | None = None,
    providers: dict[str, SearchProvider] | None = None,
    push_transport: PushTransport | None = None,
    scheduler: JobScheduler | None = None,
    clock=None,
) -> Services:
    """Assemble the engine. Any collaborator left as None gets its production adapter."""
    db = db or Database.from_url(settings.database_url, pool_pre_ping=True)
    http = http or httpx.AsyncClient()

    jobs = JobStore(db)
    conversations = ConversationStore(db)
    items = ItemStore(db)
    search_cache = SearchCacheStore(db, version=settings.search_cache_version)
    push_subscriptions = PushSubscriptionStore(db)
    taxonomy = TaxonomyStore(db)

    if providers is None:
        providers = default_providers(settings, http)
    if push_transport is None:
        push_transport = default_push_transport(settings)
    if model is None:
        model = AnthropicModel(
            api_key=settings.anthropic_api_key,
            model=settings.anthropic_model,
            max_tokens=settings.model_max_tokens,
            timeout=settings.model_timeout_seconds,
        )

    clock_kwargs = {"clock": clock} if clock is not None else {}
    tools = ToolAdapter(
        providers=providers,
        cache=search_cache,
        items=items,
        cost_policy=LandedCostPolicy(),
        cache_ttl=timedelta(seconds=settings.search_cache_ttl_seconds),
        **clock_kwargs,
    )
    notifier = PushNotifier(push_subscriptions, push_transport, app_name=settings.app_name)
    runner = AgentRunner(
        jobs=jobs,
        conversations=conversations,
        tools=tools,
        model=model,
        notifier=notifier,
        max_iterations=settings.agent_max_iterations,
        history_turns=settings.agent_history_turns,
        deadline_seconds=settings.agent_job_deadline_seconds,
        **clock_kwargs,
    )
    dispatcher = JobDispatcher(jobs, scheduler or InProcessScheduler(runner))

    taxonomy_refresher = None
    ebay = providers.get("ebay")
    if isinstance(ebay, EbayBrowseProvider):
        taxonomy_refresher = EbayTaxonomyRefresher(
            ebay,
            taxonomy,
            timeout=settings.ebay_taxonomy_timeout_seconds,
            deadline=settings.ebay_taxonomy_refresh_deadline_seconds,
            **clock_kwargs,
        )

    logger.info(
        "services_built",
        providers=sorted(providers),
        push_enabled=push_transport is not None,
        scheduler=type(dispatcher.scheduler).__name__,
    )
    return Services(
        settings=settings,
        db=db,
        http=http,
        jobs=jobs,
        conversations=conversations,
        items=items,
        search_cache=search_cache,
        push_subscriptions=push_subscriptions,
        taxonomy=taxonomy,
        tools=tools,
        notifier=notifier,
        runner=runner,
        dispatcher=dispatcher,
        taxonomy_refresher=taxonomy_refresher,
    )
