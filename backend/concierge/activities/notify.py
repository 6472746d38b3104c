"""Results-ready push notifications.

Best effort only: every failure is logged and swallowed here so a completed
job stays completed. Endpoints the push service reports as gone (404/410)
are deleted so later jobs stop trying them.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from typing import Protocol

import structlog
from pywebpush import WebPushException, webpush

from concierge.errors import PushDeliveryError
from concierge.models.db import PushSubscription
from concierge.stores.push_subscriptions import PushSubscriptionStore
from concierge.utils.text import truncate

log = structlog.get_logger("concierge.notify")

PUSH_TTL_SECONDS = 60 * 60
PUSH_TIMEOUT_SECONDS = 10.0
BODY_QUERY_LIMIT = 80


def build_payload(app_name: str, job_id: uuid.UUID, prompt: str) -> dict[str, str]:
    return {
        "title": f"{app_name}: Results ready",
        "body": f"Tap to view results for: {truncate(prompt.strip(), BODY_QUERY_LIMIT)}",
        "url": f"/app?agent=1&jobId={job_id}",
    }


class PushTransport(Protocol):
    async def send(self, subscription: PushSubscription, payload: dict[str, str]) -> None:
        """Deliver one payload; raise ``PushDeliveryError`` on failure."""
        ...


class WebPushTransport:
    """Web Push with VAPID via pywebpush (blocking, so run in a worker thread)."""

    def __init__(self, *, private_key: str, subject: str, timeout: float = PUSH_TIMEOUT_SECONDS):
        self._private_key = private_key
        self._claims = {"sub": subject}
        self._timeout = timeout

    def _send_blocking(self, subscription: PushSubscription, data: str) -> None:
        try:
            webpush(
                subscription_info={
                    "endpoint": subscription.endpoint,
                    "keys": {"p256dh": subscription.p256dh, "auth": subscription.auth},
                },
                data=data,
                vapid_private_key=self._private_key,
                vapid_claims=dict(self._claims),
                ttl=PUSH_TTL_SECONDS,
                timeout=self._timeout,
            )
        except WebPushException as e:
            status = e.response.status_code if e.response is not None else None
            raise PushDeliveryError(f"Web push rejected: {e.message}", status_code=status) from e

    async def send(self, subscription: PushSubscription, payload: dict[str, str]) -> None:
        await asyncio.to_thread(self._send_blocking, subscription, json.dumps(payload))


class PushNotifier:
    def __init__(
        self,
        subscriptions: PushSubscriptionStore,
        transport: PushTransport | None,
        *,
        app_name: str = "Concierge",
    ) -> None:
        self._subscriptions = subscriptions
        self._transport = transport
        self._app_name = app_name

    async def notify_job_completed(self, job_id: uuid.UUID, session_id: str, prompt: str) -> None:
        if self._transport is None:
            log.debug("push_skipped_no_transport", job_id=str(job_id))
            return
        try:
            subscription = await self._subscriptions.latest_for_session(session_id)
        except Exception:
            log.exception("push_subscription_lookup_failed", job_id=str(job_id))
            return
        if subscription is None:
            log.debug("push_skipped_no_subscription", job_id=str(job_id))
            return

        payload = build_payload(self._app_name, job_id, prompt)
        try:
            await self._transport.send(subscription, payload)
        except PushDeliveryError as e:
            log.warning(
                "push_delivery_failed",
                job_id=str(job_id),
                status=e.status_code,
                gone=e.gone,
            )
            if e.gone:
                await self._prune(subscription.endpoint)
            return
        except Exception:
            log.exception("push_delivery_error", job_id=str(job_id))
            return
        log.info("push_delivered", job_id=str(job_id))

    async def _prune(self, endpoint: str) -> None:
        try:
            deleted = await self._subscriptions.delete_by_endpoint(endpoint)
        except Exception:
            log.exception("push_subscription_prune_failed")
            return
        log.info("push_subscription_pruned", deleted=deleted)
