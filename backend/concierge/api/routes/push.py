"""Web Push subscription registration and the VAPID public key."""

from __future__ import annotations

from fastapi import APIRouter, Request, Response

from concierge.api.deps import error_response, get_services, verified_user_id
from concierge.models.contracts import ErrorResponse, RegisterPushRequest, VapidKeyResponse

router = APIRouter(tags=["push"])


@router.post("/push/subscriptions", status_code=204)
async def register_subscription(body: RegisterPushRequest, request: Request) -> Response:
    """Upsert the browser's push subscription, keyed by endpoint."""
    await get_services(request).push_subscriptions.upsert(
        session_id=body.session_id,
        user_id=verified_user_id(request),
        endpoint=body.subscription.endpoint,
        p256dh=body.subscription.keys.p256dh,
        auth=body.subscription.keys.auth,
        user_agent=body.user_agent,
    )
    return Response(status_code=204)


@router.get(
    "/push/vapid-public-key",
    response_model=VapidKeyResponse,
    responses={404: {"model": ErrorResponse}},
)
async def vapid_public_key(request: Request):
    """Application server key the browser needs before it can subscribe."""
    key = get_services(request).settings.vapid_public_key
    if not key:
        return error_response(404, "push_disabled", "Push notifications are not configured")
    return VapidKeyResponse(public_key=key)
