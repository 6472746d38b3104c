"""Health check endpoint with real connectivity checks.

Each check has a short timeout. A check reporting "disconnected" does not
change the overall status: the endpoint always answers 200 so load balancers
keep routing.
"""

from __future__ import annotations

import asyncio

import structlog
from fastapi import APIRouter, Request

from concierge.api.deps import get_services

logger = structlog.get_logger()

router = APIRouter(tags=["health"])

_CHECK_TIMEOUT = 3.0  # seconds per service check


async def _check_database(request: Request) -> str:
    try:
        await asyncio.wait_for(get_services(request).db.ping(), timeout=_CHECK_TIMEOUT)
        return "connected"
    except Exception as exc:
        logger.debug("health_database_failed", error=str(exc))
        return "disconnected"


async def _check_temporal(request: Request) -> str:
    client = getattr(request.app.state, "temporal_client", None)
    if client is None:
        return "disabled"
    try:
        await asyncio.wait_for(client.service_client.check_health(), timeout=_CHECK_TIMEOUT)
        return "connected"
    except Exception as exc:
        logger.debug("health_temporal_failed", error=str(exc))
        return "disconnected"


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Check the database and Temporal in parallel."""
    database, temporal = await asyncio.gather(
        _check_database(request),
        _check_temporal(request),
    )
    settings = get_services(request).settings
    return {
        "status": "ok",
        "version": "0.1.0",
        "environment": settings.environment,
        "database": database,
        "temporal": temporal,
    }
