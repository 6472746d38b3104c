"""Tests for results-ready push notifications."""

import uuid
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fakes import RecordingTransport
from pywebpush import WebPushException

from concierge.activities.notify import PushNotifier, WebPushTransport, build_payload
from concierge.errors import PushDeliveryError
from concierge.stores.push_subscriptions import PushSubscriptionStore

JOB_ID = uuid.UUID("6f1c1e2a-7f50-4e0e-9a53-3a2f1f0b9c11")


@pytest.fixture
def subscriptions(db) -> PushSubscriptionStore:
    return PushSubscriptionStore(db)


async def _subscribe(subscriptions, endpoint="https://push.example/1", session_id="sess-1"):
    await subscriptions.upsert(
        session_id=session_id, user_id=None, endpoint=endpoint, p256dh="key", auth="secret"
    )


class TestBuildPayload:
    def test_shape(self):
        assert build_payload("Concierge", JOB_ID, "  tent  ") == {
            "title": "Concierge: Results ready",
            "body": "Tap to view results for: tent",
            "url": f"/app?agent=1&jobId={JOB_ID}",
        }

    def test_long_prompt_truncated(self):
        body = build_payload("Concierge", JOB_ID, "x" * 300)["body"]
        assert body.endswith("…")
        assert len(body) < 120


class TestPushSubscriptionStore:
    @pytest.mark.asyncio
    async def test_reregistration_moves_endpoint(self, subscriptions):
        await _subscribe(subscriptions, session_id="sess-1")
        await _subscribe(subscriptions, session_id="sess-2")

        assert await subscriptions.latest_for_session("sess-1") is None
        moved = await subscriptions.latest_for_session("sess-2")
        assert moved.endpoint == "https://push.example/1"

    @pytest.mark.asyncio
    async def test_delete_by_endpoint(self, subscriptions):
        await _subscribe(subscriptions)
        assert await subscriptions.delete_by_endpoint("https://push.example/1") == 1
        assert await subscriptions.delete_by_endpoint("https://push.example/1") == 0


class TestPushNotifier:
    @pytest.mark.asyncio
    async def test_sends_to_latest_subscription(self, subscriptions):
        transport = RecordingTransport()
        await _subscribe(subscriptions)
        notifier = PushNotifier(subscriptions, transport, app_name="Concierge")

        await notifier.notify_job_completed(JOB_ID, "sess-1", "tent")

        assert transport.sent == [
            ("https://push.example/1", build_payload("Concierge", JOB_ID, "tent"))
        ]

    @pytest.mark.asyncio
    async def test_no_subscription_is_a_no_op(self, subscriptions):
        transport = RecordingTransport()
        await PushNotifier(subscriptions, transport).notify_job_completed(JOB_ID, "sess-9", "x")
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_no_transport_configured(self, subscriptions):
        await _subscribe(subscriptions)
        await PushNotifier(subscriptions, None).notify_job_completed(JOB_ID, "sess-1", "x")

    @pytest.mark.asyncio
    async def test_gone_endpoint_deleted(self, subscriptions):
        transport = RecordingTransport(error=PushDeliveryError("gone", status_code=404))
        await _subscribe(subscriptions)

        await PushNotifier(subscriptions, transport).notify_job_completed(JOB_ID, "sess-1", "x")

        assert await subscriptions.latest_for_session("sess-1") is None

    @pytest.mark.asyncio
    async def test_transient_failure_keeps_endpoint(self, subscriptions):
        transport = RecordingTransport(error=PushDeliveryError("busy", status_code=503))
        await _subscribe(subscriptions)

        await PushNotifier(subscriptions, transport).notify_job_completed(JOB_ID, "sess-1", "x")

        assert await subscriptions.latest_for_session("sess-1") is not None

    @pytest.mark.asyncio
    async def test_lookup_failure_swallowed(self):
        broken = MagicMock()
        broken.latest_for_session = AsyncMock(side_effect=RuntimeError("db down"))
        transport = RecordingTransport()

        await PushNotifier(broken, transport).notify_job_completed(JOB_ID, "sess-1", "x")

        assert transport.sent == []


class TestWebPushTransport:
    def _subscription(self):
        return SimpleNamespace(endpoint="https://push.example/1", p256dh="key", auth="secret")

    @pytest.mark.asyncio
    @patch("concierge.activities.notify.webpush")
    async def test_sends_vapid_request(self, mock_webpush: MagicMock):
        transport = WebPushTransport(private_key="vapid-key", subject="mailto:ops@example.com")

        await transport.send(self._subscription(), {"title": "t"})

        kwargs = mock_webpush.call_args.kwargs
        assert kwargs["subscription_info"] == {
            "endpoint": "https://push.example/1",
            "keys": {"p256dh": "key", "auth": "secret"},
        }
        assert kwargs["data"] == '{"title": "t"}'
        assert kwargs["vapid_private_key"] == "vapid-key"
        assert kwargs["vapid_claims"] == {"sub": "mailto:ops@example.com"}

    @pytest.mark.asyncio
    @patch("concierge.activities.notify.webpush")
    async def test_rejection_mapped_with_status(self, mock_webpush: MagicMock):
        mock_webpush.side_effect = WebPushException(
            "Push failed: 410 Gone", response=SimpleNamespace(status_code=410)
        )
        transport = WebPushTransport(private_key="vapid-key", subject="mailto:ops@example.com")

        with pytest.raises(PushDeliveryError) as exc_info:
            await transport.send(self._subscription(), {"title": "t"})
        assert exc_info.value.status_code == 410
        assert exc_info.value.gone
