"""Agent runner: the bounded tool-calling loop behind every agent job.

One run per job:
1. Load the job and mark it running; post "Analyzing your request…".
2. Rebuild model context: system prompt, the last few user/assistant turns
   from earlier jobs in the thread, then this job's prompt.
3. Loop up to ``max_iterations`` model calls. Tool calls run one at a time in
   the order the model returned them, each preceded by a progress message.
   A text reply ends the loop; an empty reply ends it with a fallback.
4. Hitting the cap still completes the job with whatever items were found.
5. Any exception (including the overall deadline) posts an apology and
   fails the job. Cancellation (worker or API shutdown) does the same under
   ``asyncio.shield`` and then propagates. That is the only route to ``failed``.
6. After ``completed`` is written, the push notification runs as a detached
   task so it can never change the job outcome.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from temporalio import activity
from temporalio.exceptions import ApplicationError

from concierge.errors import InvalidJobTransitionError, JobNotFoundError
from concierge.stores.conversations import ConversationStore
from concierge.stores.jobs import JobStore
from concierge.tools.registry import AGENT_TOOLS, ToolAdapter, describe_call
from concierge.utils.llm import LanguageModel, Turn, dump_tool_result
from concierge.utils.text import strip_markdown, truncate

if TYPE_CHECKING:
    from concierge.activities.notify import PushNotifier
    from concierge.models.db import AgentJob, AgentMessage

log = structlog.get_logger("concierge.agent")

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"

ANALYZING_MESSAGE = "Analyzing your request…"
FALLBACK_REPLY = (
    "I wasn't able to put an answer together for that. "
    "Could you tell me a bit more about what you're looking for?"
)
PARTIAL_REPLY = "Here is what I found so far. Tell me if you'd like me to narrow it down."
PARTIAL_REPLY_EMPTY = (
    "I couldn't finish searching for that. Could you try rephrasing your request?"
)
MISSING_THREAD_ERROR = "Missing thread"
CANCELLED_ERROR = "The request was interrupted before it finished."
ERROR_SUMMARY_LIMIT = 300

_system_prompt_cache: str | None = None


def load_system_prompt() -> str:
    """Load the agent system prompt (cached after first read)."""
    global _system_prompt_cache  # noqa: PLW0603
    if _system_prompt_cache is None:
        _system_prompt_cache = (PROMPTS_DIR / "agent_system.txt").read_text().strip()
    return _system_prompt_cache


def build_history(
    messages: list[AgentMessage], current_job_id: uuid.UUID, max_turns: int
) -> list[Turn]:
    """Replay window: the last ``max_turns`` exchanges from earlier jobs.

    System progress lines are never replayed, and the current job's own
    messages are left out because its prompt is appended separately.
    """
    prior = [
        m
        for m in messages
        if m.job_id != current_job_id and m.role in ("user", "assistant")
    ]
    window = prior[-max(1, max_turns * 2) :]
    return [Turn(role=m.role, content=m.content) for m in window]  # type: ignore[arg-type]


def apology(summary: str) -> str:
    return f"Sorry, I couldn't complete that request.\n\nError: {summary}"


def error_summary(exc: BaseException, deadline: float) -> str:
    if isinstance(exc, TimeoutError):
        return f"The request took longer than {deadline:g} seconds."
    text = str(exc).strip() or type(exc).__name__
    return truncate(text, ERROR_SUMMARY_LIMIT)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class _LoopResult:
    outcome: str
    iterations: int
    item_ids: list[str] = field(default_factory=list)
    tool_calls: list[dict[str, Any]] = field(default_factory=list)

    def intent(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome,
            "iterations": self.iterations,
            "toolCalls": self.tool_calls,
        }


class AgentRunner:
    def __init__(
        self,
        *,
        jobs: JobStore,
        conversations: ConversationStore,
        tools: ToolAdapter,
        model: LanguageModel,
        notifier: PushNotifier | None = None,
        max_iterations: int = 5,
        history_turns: int = 6,
        deadline_seconds: float = 120.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._jobs = jobs
        self._conversations = conversations
        self._tools = tools
        self._model = model
        self._notifier = notifier
        self._max_iterations = max_iterations
        self._history_turns = history_turns
        self._deadline = deadline_seconds
        self._clock = clock
        self._background: set[asyncio.Task[None]] = set()

    async def run(self, job_id: uuid.UUID) -> str | None:
        """Drive one job to a terminal status and return it (None if the job is unknown).

        Raises ``InvalidJobTransitionError`` when the job is not queued, which
        means it was dispatched twice.
        """
        job = await self._jobs.get_job(job_id)
        if job is None:
            log.error("agent_job_not_found", job_id=str(job_id))
            return None

        with structlog.contextvars.bound_contextvars(
            job_id=str(job.id), thread_id=str(job.thread_id) if job.thread_id else None
        ):
            if job.thread_id is None:
                # No thread to post an apology to; the job still passes through running
                await self._jobs.mark_running(job.id, self._clock())
                await self._jobs.mark_failed(job.id, self._clock(), MISSING_THREAD_ERROR)
                log.error("agent_job_missing_thread")
                return "failed"

            await self._jobs.mark_running(job.id, self._clock())
            log.info("agent_job_started", prompt_chars=len(job.prompt))

            try:
                await self._post(job, "system", ANALYZING_MESSAGE)
                result = await asyncio.wait_for(self._loop(job), timeout=self._deadline)
                await self._jobs.mark_completed(
                    job.id,
                    self._clock(),
                    intent=result.intent(),
                    result_item_ids=result.item_ids,
                )
            except asyncio.CancelledError:
                log.warning("agent_job_cancelled")
                await asyncio.shield(self._fail_unfinished(job.id, CANCELLED_ERROR))
                raise
            except Exception as exc:
                summary = error_summary(exc, self._deadline)
                log.exception("agent_job_failed", error_type=type(exc).__name__)
                await self._fail(job, summary)
                return "failed"

            log.info(
                "agent_job_completed",
                outcome=result.outcome,
                iterations=result.iterations,
                item_count=len(result.item_ids),
                tool_calls=len(result.tool_calls),
            )
            self._schedule_notification(job)
            return "completed"

    async def _loop(self, job: AgentJob) -> _LoopResult:
        assert job.thread_id is not None
        thread_messages = await self._conversations.list_thread_messages(job.thread_id)
        turns = build_history(thread_messages, job.id, self._history_turns)
        turns.append(Turn(role="user", content=job.prompt))
        system = load_system_prompt()

        item_ids: list[str] = []
        seen: set[str] = set()
        tool_log: list[dict[str, Any]] = []

        for iteration in range(1, self._max_iterations + 1):
            reply = await self._model.complete(system, turns, AGENT_TOOLS)

            if reply.tool_calls:
                turns.append(
                    Turn(
                        role="assistant",
                        content=reply.content or "",
                        tool_calls=list(reply.tool_calls),
                    )
                )
                for call in reply.tool_calls:
                    await self._post(job, "system", describe_call(call.name, call.arguments))
                    outcome = await self._tools.invoke(call.name, call.arguments)
                    turns.append(
                        Turn(
                            role="tool",
                            content=dump_tool_result(outcome.result),
                            tool_call_id=call.id,
                        )
                    )
                    for ref in outcome.item_ids:
                        if ref not in seen:
                            seen.add(ref)
                            item_ids.append(ref)
                    tool_log.append(
                        {
                            "tool": call.name,
                            "arguments": call.arguments,
                            "itemCount": len(outcome.item_ids),
                            "error": outcome.result["error"]["type"] if outcome.is_error else None,
                        }
                    )
                continue

            if reply.content and (text := strip_markdown(reply.content)):
                await self._post(job, "assistant", text)
                return _LoopResult("replied", iteration, item_ids, tool_log)

            log.warning("agent_empty_reply", iteration=iteration, stop_reason=reply.stop_reason)
            await self._post(job, "assistant", FALLBACK_REPLY)
            return _LoopResult("fallback", iteration, item_ids, tool_log)

        log.warning("agent_iteration_cap", max_iterations=self._max_iterations)
        await self._post(job, "assistant", PARTIAL_REPLY if item_ids else PARTIAL_REPLY_EMPTY)
        return _LoopResult("iteration_cap", self._max_iterations, item_ids, tool_log)

    async def _post(self, job: AgentJob, role: str, content: str) -> None:
        assert job.thread_id is not None
        await self._conversations.append_message(
            job.id, job.thread_id, role, content, self._clock()
        )

    async def _fail(self, job: AgentJob, summary: str) -> None:
        try:
            await self._post(job, "assistant", apology(summary))
        except Exception:
            log.exception("agent_apology_append_failed")
        await self._jobs.mark_failed(job.id, self._clock(), summary)

    async def _fail_unfinished(self, job_id: uuid.UUID, summary: str) -> None:
        # The cancel may land after mark_completed already committed
        job = await self._jobs.get_job(job_id)
        if job is None or job.status != "running":
            return
        await self._fail(job, summary)

    # --- notification ---

    def _schedule_notification(self, job: AgentJob) -> None:
        if self._notifier is None:
            return
        task = asyncio.create_task(self._notify(job.id, job.session_id, job.prompt))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _notify(self, job_id: uuid.UUID, session_id: str, prompt: str) -> None:
        assert self._notifier is not None
        try:
            await self._notifier.notify_job_completed(job_id, session_id, prompt)
        except Exception:
            log.exception("agent_notify_failed", job_id=str(job_id))

    async def wait_for_background(self) -> None:
        """Wait for detached notification tasks (tests and shutdown)."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)


# --- Temporal activity ---

_runner: AgentRunner | None = None


def install_runner(runner: AgentRunner) -> None:
    """Use a runner built by the worker process instead of a lazily built one."""
    global _runner  # noqa: PLW0603
    _runner = runner


def _get_runner() -> AgentRunner:
    """Lazily build the worker's runner on first activity execution."""
    global _runner  # noqa: PLW0603
    if _runner is None:
        from concierge.config import settings
        from concierge.services import build_services

        _runner = build_services(settings).runner
    return _runner


@activity.defn
async def run_agent_job(job_id: str) -> str:
    """Run one agent job. Double execution and unknown jobs are not retried."""
    try:
        status = await _get_runner().run(uuid.UUID(job_id))
    except (InvalidJobTransitionError, JobNotFoundError) as e:
        raise ApplicationError(str(e), non_retryable=True) from e
    if status is None:
        raise ApplicationError(f"Job {job_id} not found", non_retryable=True)
    return status
