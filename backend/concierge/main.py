"""FastAPI application: agent job, push, catalog and admin endpoints.

Every error leaves the API in the ErrorResponse shape and every response
carries X-Request-ID, which is also bound into the log context.
"""

import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from concierge.api.deps import error_response
from concierge.api.routes import admin, agent, catalog, health, push
from concierge.config import settings
from concierge.dispatch import InProcessScheduler, TemporalScheduler
from concierge.errors import InvalidJobRequestError, ThreadNotFoundError, ThreadOwnershipError
from concierge.logging import configure_logging
from concierge.services import build_services

configure_logging()

logger = structlog.get_logger()

REQUEST_ID_HEADER = "X-Request-ID"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build services once per process; tests install their own beforehand."""
    owned = getattr(app.state, "services", None) is None
    if owned:
        scheduler = None
        if settings.use_temporal:
            from concierge.worker import create_temporal_client

            app.state.temporal_client = await create_temporal_client()
            scheduler = TemporalScheduler(app.state.temporal_client, settings.temporal_task_queue)
        app.state.services = build_services(settings, scheduler=scheduler)
    logger.info("api_started", use_temporal=settings.use_temporal)
    yield
    if owned:
        scheduler = app.state.services.dispatcher.scheduler
        if isinstance(scheduler, InProcessScheduler):
            await scheduler.shutdown(settings.shutdown_grace_seconds)
        await app.state.services.aclose()
    logger.info("api_stopped")


app = FastAPI(
    title="Concierge API",
    version="0.1.0",
    redoc_url=None,
    lifespan=lifespan,
)


def _tagged(request: Request, response: JSONResponse) -> JSONResponse:
    # Exception handlers run outside the middleware's response path
    response.headers[REQUEST_ID_HEADER] = getattr(
        request.state, "request_id", request.headers.get(REQUEST_ID_HEADER, "")
    )
    return response


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """Bind a request id into the log context and echo it on the response."""
    request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
    request.state.request_id = request_id
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)

    started = time.perf_counter()
    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request_id
    logger.debug(
        "http_request",
        method=request.method,
        path=request.url.path,
        status=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 1),
    )
    return response


def _describe_validation(exc: RequestValidationError) -> str:
    problems = []
    for err in exc.errors():
        # Drop the "body"/"query" prefix so the message names the client's field
        loc = [str(part) for part in err["loc"][1:]] or [str(part) for part in err["loc"]]
        problems.append(f"{'.'.join(loc)}: {err['msg']}")
    return "; ".join(problems)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return _tagged(request, error_response(422, "validation_error", _describe_validation(exc)))


@app.exception_handler(InvalidJobRequestError)
async def invalid_job_request_handler(
    request: Request, exc: InvalidJobRequestError
) -> JSONResponse:
    return _tagged(request, error_response(400, exc.code, exc.message))


@app.exception_handler(ThreadNotFoundError)
async def thread_not_found_handler(request: Request, exc: ThreadNotFoundError) -> JSONResponse:
    return _tagged(request, error_response(404, "thread_not_found", "Thread not found"))


@app.exception_handler(ThreadOwnershipError)
async def thread_ownership_handler(request: Request, exc: ThreadOwnershipError) -> JSONResponse:
    return _tagged(
        request, error_response(403, "thread_forbidden", "Thread belongs to another session")
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything unexpected becomes a retryable 500 in the usual JSON shape."""
    logger.error(
        "unhandled_exception",
        method=request.method,
        path=request.url.path,
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    return _tagged(
        request,
        error_response(500, "internal_error", "An unexpected error occurred", retryable=True),
    )


app.include_router(health.router)
for router in (agent.router, push.router, catalog.router, admin.router):
    app.include_router(router, prefix="/api/v1")
