"""Conversation store: threads and their append-only message log."""

from __future__ import annotations

import uuid
from datetime import datetime

import structlog
from sqlalchemy import case, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from concierge.database import Database
from concierge.errors import ThreadNotFoundError
from concierge.models.db import AgentMessage, AgentThread, UTCDateTime

logger = structlog.get_logger()

MAX_LIST_LIMIT = 50
DEFAULT_LIST_LIMIT = 20


def clamp_limit(limit: int | None) -> int:
    if limit is None:
        return DEFAULT_LIST_LIMIT
    return max(1, min(MAX_LIST_LIMIT, limit))


async def add_message(
    session: AsyncSession,
    *,
    job_id: uuid.UUID,
    thread_id: uuid.UUID,
    role: str,
    content: str,
    at: datetime,
) -> AgentMessage:
    """Insert a message and advance thread recency inside the caller's transaction."""
    stamp = literal(at, UTCDateTime())
    result = await session.execute(
        update(AgentThread)
        .where(AgentThread.id == thread_id)
        .values(
            last_message_at=case(
                (AgentThread.last_message_at < stamp, stamp),
                else_=AgentThread.last_message_at,
            )
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise ThreadNotFoundError(f"Thread {thread_id} not found")
    message = AgentMessage(
        job_id=job_id, thread_id=thread_id, role=role, content=content, created_at=at
    )
    session.add(message)
    await session.flush()
    return message


class ConversationStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def append_message(
        self,
        job_id: uuid.UUID,
        thread_id: uuid.UUID,
        role: str,
        content: str,
        at: datetime,
    ) -> AgentMessage:
        """Append one message; the message and thread recency commit together."""
        async with self._db.sessions.begin() as session:
            message = await add_message(
                session, job_id=job_id, thread_id=thread_id, role=role, content=content, at=at
            )
        logger.debug(
            "message_appended",
            job_id=str(job_id),
            thread_id=str(thread_id),
            role=role,
            message_id=message.id,
        )
        return message

    async def list_thread_messages(self, thread_id: uuid.UUID) -> list[AgentMessage]:
        async with self._db.sessions() as session:
            result = await session.scalars(
                select(AgentMessage)
                .where(AgentMessage.thread_id == thread_id)
                .order_by(AgentMessage.created_at, AgentMessage.id)
            )
            return list(result)

    async def list_job_messages(self, job_id: uuid.UUID) -> list[AgentMessage]:
        async with self._db.sessions() as session:
            result = await session.scalars(
                select(AgentMessage)
                .where(AgentMessage.job_id == job_id)
                .order_by(AgentMessage.created_at, AgentMessage.id)
            )
            return list(result)

    async def get_thread(self, thread_id: uuid.UUID) -> AgentThread | None:
        async with self._db.sessions() as session:
            return await session.get(AgentThread, thread_id)

    async def list_threads_for_user(
        self, session_id: str, user_id: str, limit: int | None = None
    ) -> list[AgentThread]:
        """Threads owned by this session and user, most recently active first."""
        async with self._db.sessions() as session:
            result = await session.scalars(
                select(AgentThread)
                .where(AgentThread.session_id == session_id, AgentThread.user_id == user_id)
                .order_by(AgentThread.last_message_at.desc())
                .limit(clamp_limit(limit))
            )
            return list(result)
