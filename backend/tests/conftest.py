"""Shared fixtures: in-memory database and a wired Services factory."""

from __future__ import annotations

from typing import Any

import httpx
import pytest
from fakes import ScriptedModel
from sqlalchemy.pool import StaticPool

from concierge.config import Settings
from concierge.database import Database
from concierge.services import build_services


@pytest.fixture
async def db():
    """Fresh in-memory SQLite database with the full schema."""
    database = Database.from_url("sqlite+aiosqlite://", poolclass=StaticPool)
    await database.create_all()
    yield database
    await database.dispose()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite://",
        anthropic_api_key="test-key",
        admin_token="admin-secret",
        vapid_private_key="",
        ebay_client_id="",
        ebay_client_secret="",
        exa_api_key="",
        use_temporal=False,
    )


@pytest.fixture
async def make_services(db, test_settings):
    """Factory for a Services container around the test database.

    Settings fields can be overridden per call, e.g.
    ``make_services(agent_max_iterations=2)``.
    """
    built = []

    def factory(
        *,
        model=None,
        providers=None,
        push_transport=None,
        clock=None,
        **overrides: Any,
    ):
        cfg = test_settings.model_copy(update=overrides) if overrides else test_settings
        services = build_services(
            cfg,
            db=db,
            http=httpx.AsyncClient(),
            model=model or ScriptedModel([]),
            providers=providers if providers is not None else {},
            push_transport=push_transport,
            clock=clock,
        )
        built.append(services)
        return services

    yield factory

    for services in built:
        await services.dispatcher.scheduler.drain()
        await services.http.aclose()
