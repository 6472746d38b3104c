"""Job dispatcher: create the job synchronously, run it asynchronously.

``JobDispatcher.submit`` is the only place a job is scheduled, and it
schedules exactly once, right after the creating transaction commits.
Two schedulers are available:

- ``InProcessScheduler`` runs the agent as an asyncio task in the API
  process (development and tests, ``USE_TEMPORAL=false``).
- ``TemporalScheduler`` starts an ``AgentJobWorkflow`` that a separate
  worker executes.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import TYPE_CHECKING, Protocol

import structlog

from concierge.errors import InvalidJobRequestError
from concierge.stores.jobs import CreatedJob, JobStore

if TYPE_CHECKING:
    from temporalio.client import Client

    from concierge.activities.agent_runner import AgentRunner

logger = structlog.get_logger()

MAX_PROMPT_CHARS = 4000


class JobScheduler(Protocol):
    async def schedule(self, job_id: uuid.UUID) -> None: ...


class InProcessScheduler:
    def __init__(self, runner: AgentRunner) -> None:
        self._runner = runner
        self._tasks: set[asyncio.Task[None]] = set()

    async def schedule(self, job_id: uuid.UUID) -> None:
        task = asyncio.create_task(self._run(job_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, job_id: uuid.UUID) -> None:
        try:
            await self._runner.run(job_id)
        except Exception:
            # Nothing awaits this task; surface the failure in logs
            logger.exception("agent_job_run_crashed", job_id=str(job_id))

    async def drain(self) -> None:
        """Wait for in-flight runs and their notifications."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self._runner.wait_for_background()

    async def shutdown(self, grace_seconds: float) -> None:
        """Drain for up to ``grace_seconds``, then cancel whatever is still running.

        Cancelled runs record themselves as failed before their task ends.
        """
        if self._tasks:
            # asyncio.wait leaves pending tasks alone, so each is cancelled exactly once
            _done, pending = await asyncio.wait(list(self._tasks), timeout=grace_seconds)
            if pending:
                logger.warning("agent_job_runs_cancelled", count=len(pending))
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
        await self._runner.wait_for_background()


class TemporalScheduler:
    def __init__(self, client: Client, task_queue: str) -> None:
        self._client = client
        self._task_queue = task_queue

    async def schedule(self, job_id: uuid.UUID) -> None:
        from temporalio.service import RPCError

        from concierge.workflows.agent_job import AgentJobWorkflow, workflow_id_for

        try:
            await self._client.start_workflow(
                AgentJobWorkflow.run,
                str(job_id),
                id=workflow_id_for(str(job_id)),
                task_queue=self._task_queue,
            )
        except RPCError:
            logger.exception("workflow_start_failed", job_id=str(job_id))
            raise
        logger.info("agent_job_workflow_started", job_id=str(job_id))


class JobDispatcher:
    def __init__(self, jobs: JobStore, scheduler: JobScheduler) -> None:
        self._jobs = jobs
        self.scheduler = scheduler

    async def submit(
        self,
        *,
        session_id: str | None,
        user_id: str | None,
        prompt: str,
        thread_id: uuid.UUID | None = None,
    ) -> CreatedJob:
        """Validate, create the queued job and schedule its single run."""
        if not session_id or not session_id.strip():
            raise InvalidJobRequestError("missing_session", "Missing session, refresh and retry")
        prompt = (prompt or "").strip()
        if not prompt:
            raise InvalidJobRequestError("empty_prompt", "Prompt must not be empty")
        if len(prompt) > MAX_PROMPT_CHARS:
            raise InvalidJobRequestError(
                "prompt_too_long", f"Prompt must be at most {MAX_PROMPT_CHARS} characters"
            )

        created = await self._jobs.create_job(session_id.strip(), user_id, prompt, thread_id)
        await self.scheduler.schedule(created.job_id)
        return created
