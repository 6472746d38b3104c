"""Push subscription store, keyed by the unique endpoint URL."""

from __future__ import annotations

from datetime import UTC, datetime

import structlog
from sqlalchemy import delete, select

from concierge.database import Database
from concierge.models.db import PushSubscription

logger = structlog.get_logger()


class PushSubscriptionStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def upsert(
        self,
        *,
        session_id: str,
        user_id: str | None,
        endpoint: str,
        p256dh: str,
        auth: str,
        user_agent: str | None = None,
        at: datetime | None = None,
    ) -> None:
        """Register or refresh an endpoint. A re-registration moves it to this session."""
        now = at or datetime.now(UTC)
        stmt = self._db.upsert(
            PushSubscription,
            {
                "session_id": session_id,
                "user_id": user_id,
                "endpoint": endpoint,
                "p256dh": p256dh,
                "auth": auth,
                "user_agent": user_agent,
                "created_at": now,
                "last_seen_at": now,
            },
            conflict_columns=["endpoint"],
            update_columns=[
                "session_id", "user_id", "p256dh", "auth", "user_agent", "last_seen_at"
            ],
        )
        async with self._db.sessions.begin() as session:
            await session.execute(stmt)
        logger.info("push_subscription_saved", session_id=session_id)

    async def latest_for_session(self, session_id: str) -> PushSubscription | None:
        async with self._db.sessions() as session:
            return await session.scalar(
                select(PushSubscription)
                .where(PushSubscription.session_id == session_id)
                .order_by(PushSubscription.last_seen_at.desc())
                .limit(1)
            )

    async def delete_by_endpoint(self, endpoint: str) -> int:
        async with self._db.sessions.begin() as session:
            result = await session.execute(
                delete(PushSubscription)
                .where(PushSubscription.endpoint == endpoint)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount
