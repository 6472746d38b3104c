"""Agent job endpoints: create a job, then poll its status and messages.

Creation returns as soon as the job row exists; the agent runs in the
background (in-process task or Temporal workflow) and the client polls.
"""

from __future__ import annotations

from fastapi import APIRouter, Query, Request

from concierge.api.deps import error_response, get_services, parse_uuid, verified_user_id
from concierge.models.contracts import (
    CreateJobRequest,
    CreateJobResponse,
    ErrorResponse,
    ItemView,
    JobView,
    MessageView,
    ThreadView,
)

router = APIRouter(tags=["agent"])

_JOB_NOT_FOUND = ("job_not_found", "Job not found")
_THREAD_NOT_FOUND = ("thread_not_found", "Thread not found")


@router.post(
    "/agent/jobs",
    status_code=201,
    response_model=CreateJobResponse,
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)
async def create_job(body: CreateJobRequest, request: Request):
    """Queue an agent job for a prompt, starting or continuing a thread.

    Validation and thread errors propagate to the app's exception handlers.
    """
    created = await get_services(request).dispatcher.submit(
        session_id=body.session_id,
        user_id=verified_user_id(request),
        prompt=body.prompt,
        thread_id=body.thread_id,
    )
    return CreateJobResponse(job_id=created.job_id, thread_id=created.thread_id)


@router.get(
    "/agent/jobs/{job_id}",
    response_model=JobView,
    responses={404: {"model": ErrorResponse}},
)
async def get_job(job_id: str, request: Request):
    """Current job record. Clients poll this until status is terminal."""
    parsed = parse_uuid(job_id)
    job = await get_services(request).jobs.get_job(parsed) if parsed else None
    if job is None:
        return error_response(404, *_JOB_NOT_FOUND)
    return JobView.model_validate(job)


@router.get(
    "/agent/jobs/{job_id}/messages",
    response_model=list[MessageView],
    responses={404: {"model": ErrorResponse}},
)
async def list_job_messages(job_id: str, request: Request):
    services = get_services(request)
    parsed = parse_uuid(job_id)
    if parsed is None or await services.jobs.get_job(parsed) is None:
        return error_response(404, *_JOB_NOT_FOUND)
    messages = await services.conversations.list_job_messages(parsed)
    return [MessageView.model_validate(m) for m in messages]


@router.get(
    "/agent/jobs/{job_id}/items",
    response_model=list[ItemView],
    responses={404: {"model": ErrorResponse}},
)
async def list_job_items(job_id: str, request: Request):
    """Full result items, in the order the agent found them."""
    services = get_services(request)
    parsed = parse_uuid(job_id)
    job = await services.jobs.get_job(parsed) if parsed else None
    if job is None:
        return error_response(404, *_JOB_NOT_FOUND)
    items = await services.items.get_many(list(job.result_item_ids or []))
    return [ItemView.model_validate(i) for i in items]


@router.get(
    "/agent/threads/{thread_id}/messages",
    response_model=list[MessageView],
    responses={404: {"model": ErrorResponse}},
)
async def list_thread_messages(thread_id: str, request: Request):
    services = get_services(request)
    parsed = parse_uuid(thread_id)
    if parsed is None or await services.conversations.get_thread(parsed) is None:
        return error_response(404, *_THREAD_NOT_FOUND)
    messages = await services.conversations.list_thread_messages(parsed)
    return [MessageView.model_validate(m) for m in messages]


@router.get("/agent/sessions/{session_id}/jobs", response_model=list[JobView])
async def list_session_jobs(
    session_id: str, request: Request, limit: int = Query(default=20)
):
    """Newest jobs for a session. ``limit`` is clamped to 1..50."""
    jobs = await get_services(request).jobs.list_jobs_for_session(session_id, limit)
    return [JobView.model_validate(j) for j in jobs]


@router.get(
    "/agent/sessions/{session_id}/threads",
    response_model=list[ThreadView],
    responses={401: {"model": ErrorResponse}},
)
async def list_session_threads(
    session_id: str, request: Request, limit: int = Query(default=20)
):
    """Thread history for a signed-in user on this session."""
    user_id = verified_user_id(request)
    if user_id is None:
        return error_response(401, "unauthenticated", "Sign in to view conversation history")
    threads = await get_services(request).conversations.list_threads_for_user(
        session_id, user_id, limit
    )
    return [ThreadView.model_validate(t) for t in threads]
