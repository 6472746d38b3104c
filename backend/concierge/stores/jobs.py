"""Job store: durable job records and the job state machine.

Allowed transitions are queued -> running -> completed and
queued -> running -> failed. Every transition is a conditional UPDATE on
the expected current status, so a second executor for the same job fails
loudly instead of overwriting a terminal state.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import select, update

from concierge.database import Database
from concierge.errors import (
    InvalidJobTransitionError,
    JobNotFoundError,
    ThreadNotFoundError,
    ThreadOwnershipError,
)
from concierge.models.db import AgentJob, AgentThread
from concierge.stores.conversations import add_message, clamp_limit

logger = structlog.get_logger()

THREAD_TITLE_MAX = 80


@dataclass(frozen=True)
class CreatedJob:
    job_id: uuid.UUID
    thread_id: uuid.UUID


class JobStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def create_job(
        self,
        session_id: str,
        user_id: str | None,
        prompt: str,
        thread_id: uuid.UUID | None = None,
        *,
        at: datetime | None = None,
    ) -> CreatedJob:
        """Create a queued job and its opening user message in one transaction.

        A new thread is started when ``thread_id`` is None. An existing thread
        must belong to the same session.
        """
        now = at or datetime.now(UTC)
        async with self._db.sessions.begin() as session:
            if thread_id is None:
                thread = AgentThread(
                    session_id=session_id,
                    user_id=user_id,
                    title=prompt[:THREAD_TITLE_MAX],
                    created_at=now,
                    last_message_at=now,
                )
                session.add(thread)
                await session.flush()
            else:
                thread = await session.get(AgentThread, thread_id)
                if thread is None:
                    raise ThreadNotFoundError(f"Thread {thread_id} not found")
                if thread.session_id != session_id:
                    raise ThreadOwnershipError(
                        f"Thread {thread_id} does not belong to this session"
                    )

            job = AgentJob(
                session_id=session_id,
                user_id=user_id,
                thread_id=thread.id,
                status="queued",
                prompt=prompt,
                created_at=now,
            )
            session.add(job)
            await session.flush()

            await add_message(
                session, job_id=job.id, thread_id=thread.id, role="user", content=prompt, at=now
            )
            created = CreatedJob(job_id=job.id, thread_id=thread.id)

        logger.info(
            "agent_job_created",
            job_id=str(created.job_id),
            thread_id=str(created.thread_id),
            new_thread=thread_id is None,
        )
        return created

    async def get_job(self, job_id: uuid.UUID) -> AgentJob | None:
        async with self._db.sessions() as session:
            return await session.get(AgentJob, job_id)

    async def list_jobs_for_session(
        self, session_id: str, limit: int | None = None
    ) -> list[AgentJob]:
        async with self._db.sessions() as session:
            result = await session.scalars(
                select(AgentJob)
                .where(AgentJob.session_id == session_id)
                .order_by(AgentJob.created_at.desc())
                .limit(clamp_limit(limit))
            )
            return list(result)

    # --- transitions ---

    async def mark_running(self, job_id: uuid.UUID, started_at: datetime) -> None:
        await self._transition(job_id, "queued", "running", started_at=started_at)

    async def mark_completed(
        self,
        job_id: uuid.UUID,
        completed_at: datetime,
        intent: dict[str, Any] | None = None,
        result_item_ids: list[str] | None = None,
    ) -> None:
        await self._transition(
            job_id,
            "running",
            "completed",
            completed_at=completed_at,
            intent=intent,
            result_item_ids=result_item_ids,
        )

    async def mark_failed(self, job_id: uuid.UUID, completed_at: datetime, error: str) -> None:
        await self._transition(job_id, "running", "failed", completed_at=completed_at, error=error)

    async def _transition(
        self, job_id: uuid.UUID, expected: str, target: str, **values: Any
    ) -> None:
        async with self._db.sessions.begin() as session:
            result = await session.execute(
                update(AgentJob)
                .where(AgentJob.id == job_id, AgentJob.status == expected)
                .values(status=target, **values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                logger.info("agent_job_transition", job_id=str(job_id), status=target)
                return
            actual = await session.scalar(select(AgentJob.status).where(AgentJob.id == job_id))

        if actual is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        logger.error(
            "agent_job_invalid_transition",
            job_id=str(job_id),
            expected=expected,
            actual=actual,
            target=target,
        )
        raise InvalidJobTransitionError(str(job_id), expected, actual, target)
