"""Temporal worker: executes AgentJobWorkflow and its run_agent_job activity.

Run locally with:
    python -m concierge.worker

The API process only starts workflows (USE_TEMPORAL=true); this process owns
the runner, its database pool and HTTP client. It also purges expired search
cache rows on a fixed interval so the table does not grow without bound.
"""

from __future__ import annotations

import asyncio
import contextlib
import sys
from collections.abc import Callable
from datetime import UTC, datetime

import structlog
from temporalio.client import Client
from temporalio.contrib.pydantic import pydantic_data_converter
from temporalio.worker import Worker

from concierge.activities import agent_runner
from concierge.config import settings
from concierge.logging import configure_logging
from concierge.services import build_services
from concierge.stores.search_cache import SearchCacheStore
from concierge.workflows.agent_job import AgentJobWorkflow

logger = structlog.get_logger()

ACTIVITIES = [agent_runner.run_agent_job]

WORKFLOWS = [AgentJobWorkflow]


async def create_temporal_client() -> Client:
    """Connect to Temporal; an API key switches on TLS for Temporal Cloud."""
    options: dict = {
        "target_host": settings.temporal_address,
        "namespace": settings.temporal_namespace,
        "data_converter": pydantic_data_converter,
    }
    if settings.temporal_api_key:
        options["tls"] = True
        options["api_key"] = settings.temporal_api_key
    return await Client.connect(**options)


async def purge_search_cache_forever(
    cache: SearchCacheStore,
    interval_seconds: float,
    clock: Callable[[], datetime] = lambda: datetime.now(UTC),
) -> None:
    """Delete expired cache rows every ``interval_seconds`` until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await cache.purge_expired(clock())
        except Exception:
            # Next tick retries; lookups already ignore expired rows
            logger.exception("search_cache_purge_failed")


async def run_worker() -> None:
    """Connect to Temporal and run the worker until interrupted."""
    logger.info(
        "worker_connecting",
        address=settings.temporal_address,
        namespace=settings.temporal_namespace,
        task_queue=settings.temporal_task_queue,
    )
    try:
        client = await create_temporal_client()
    except Exception:
        logger.exception(
            "worker_connection_failed",
            address=settings.temporal_address,
            namespace=settings.temporal_namespace,
        )
        raise

    services = build_services(settings)
    agent_runner.install_runner(services.runner)
    purger = asyncio.create_task(
        purge_search_cache_forever(
            services.search_cache, settings.search_cache_purge_interval_seconds
        )
    )

    worker = Worker(
        client,
        task_queue=settings.temporal_task_queue,
        workflows=WORKFLOWS,
        activities=ACTIVITIES,
        max_concurrent_activities=settings.worker_max_concurrent_jobs,
    )
    logger.info(
        "worker_started",
        task_queue=settings.temporal_task_queue,
        max_concurrent_jobs=settings.worker_max_concurrent_jobs,
    )
    try:
        await worker.run()
    finally:
        purger.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await purger
        await services.runner.wait_for_background()
        await services.aclose()
        logger.info("worker_stopped")


def main() -> None:
    """Entrypoint for `python -m concierge.worker` and the concierge-worker script."""
    configure_logging()
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        pass
    except Exception:
        logger.exception("worker_fatal_error")
        sys.exit(1)


if __name__ == "__main__":
    main()
