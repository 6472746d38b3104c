"""Async SQLAlchemy engine/session wiring and dialect-aware upserts."""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import Insert, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from concierge.models.db import Base

logger = structlog.get_logger()


class Database:
    """Owns the engine and the session factory for one process."""

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self.sessions: async_sessionmaker[AsyncSession] = async_sessionmaker(
            engine, expire_on_commit=False
        )

    @classmethod
    def from_url(cls, url: str, **engine_kwargs: Any) -> Database:
        return cls(create_async_engine(url, **engine_kwargs))

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def upsert(
        self,
        model: type[Base],
        values: dict[str, Any] | list[dict[str, Any]],
        *,
        conflict_columns: list[str],
        update_columns: list[str],
    ) -> Insert:
        """Build ``INSERT ... ON CONFLICT (...) DO UPDATE`` for the active dialect."""
        if self.dialect == "postgresql":
            stmt = postgresql.insert(model).values(values)
        elif self.dialect == "sqlite":
            stmt = sqlite.insert(model).values(values)
        else:
            raise NotImplementedError(f"Upsert not supported for dialect '{self.dialect}'")
        return stmt.on_conflict_do_update(
            index_elements=conflict_columns,
            set_={col: stmt.excluded[col] for col in update_columns},
        )

    async def create_all(self) -> None:
        """Create tables directly from metadata. Production uses Alembic."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> None:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def dispose(self) -> None:
        await self.engine.dispose()
        logger.info("database_disposed")
