"""Request-scoped helpers shared by the route modules."""

from __future__ import annotations

import uuid

from fastapi import Request
from fastapi.responses import JSONResponse

from concierge.errors import ProviderError, ProviderTimeoutError
from concierge.models.contracts import ErrorResponse
from concierge.services import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


def verified_user_id(request: Request) -> str | None:
    """User id asserted by the auth gateway in front of the API, if any."""
    services = get_services(request)
    value = request.headers.get(services.settings.user_id_header, "").strip()
    return value or None


def parse_uuid(value: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


def error_response(
    status: int, code: str, message: str, *, retryable: bool = False
) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content=ErrorResponse(error=code, message=message, retryable=retryable).model_dump(),
    )


def provider_error_response(exc: ProviderError) -> JSONResponse:
    """Upstream failures outside the agent loop: 504 on timeout, 502 otherwise."""
    if isinstance(exc, ProviderTimeoutError):
        return error_response(504, "provider_timeout", str(exc), retryable=True)
    return error_response(502, "provider_error", str(exc), retryable=True)
