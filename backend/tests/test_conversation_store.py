"""Tests for ConversationStore: message log ordering and thread recency."""

import uuid
from datetime import UTC, datetime, timedelta

import pytest

from concierge.errors import ThreadNotFoundError
from concierge.stores.conversations import ConversationStore, clamp_limit
from concierge.stores.jobs import JobStore

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def jobs(db) -> JobStore:
    return JobStore(db)


@pytest.fixture
def conversations(db) -> ConversationStore:
    return ConversationStore(db)


class TestClampLimit:
    def test_default(self):
        assert clamp_limit(None) == 20

    def test_bounds(self):
        assert clamp_limit(0) == 1
        assert clamp_limit(-5) == 1
        assert clamp_limit(51) == 50
        assert clamp_limit(7) == 7


class TestAppendMessage:
    """append_message writes the message and advances last_message_at."""

    @pytest.mark.asyncio
    async def test_advances_thread_recency(self, jobs, conversations):
        created = await jobs.create_job("sess-1", None, "tents", at=T0)
        later = T0 + timedelta(seconds=30)

        await conversations.append_message(
            created.job_id, created.thread_id, "assistant", "Here are some tents.", later
        )

        thread = await conversations.get_thread(created.thread_id)
        assert thread.last_message_at == later

    @pytest.mark.asyncio
    async def test_recency_never_moves_backwards(self, jobs, conversations):
        created = await jobs.create_job("sess-1", None, "tents", at=T0)

        await conversations.append_message(
            created.job_id, created.thread_id, "system", "late clock", T0 - timedelta(hours=1)
        )

        thread = await conversations.get_thread(created.thread_id)
        assert thread.last_message_at == T0

    @pytest.mark.asyncio
    async def test_missing_thread(self, jobs, conversations):
        created = await jobs.create_job("sess-1", None, "tents", at=T0)
        with pytest.raises(ThreadNotFoundError):
            await conversations.append_message(created.job_id, uuid.uuid4(), "system", "x", T0)

    @pytest.mark.asyncio
    async def test_equal_timestamps_keep_insertion_order(self, jobs, conversations):
        created = await jobs.create_job("sess-1", None, "tents", at=T0)
        for content in ["first", "second", "third"]:
            await conversations.append_message(
                created.job_id, created.thread_id, "system", content, T0
            )

        messages = await conversations.list_thread_messages(created.thread_id)
        assert [m.content for m in messages] == ["tents", "first", "second", "third"]


class TestListing:
    @pytest.mark.asyncio
    async def test_job_messages_scoped_to_job(self, jobs, conversations):
        first = await jobs.create_job("sess-1", None, "tents", at=T0)
        second = await jobs.create_job(
            "sess-1", None, "cheaper ones", first.thread_id, at=T0 + timedelta(minutes=1)
        )

        assert [m.content for m in await conversations.list_job_messages(first.job_id)] == [
            "tents"
        ]
        assert [m.content for m in await conversations.list_job_messages(second.job_id)] == [
            "cheaper ones"
        ]
        assert len(await conversations.list_thread_messages(first.thread_id)) == 2

    @pytest.mark.asyncio
    async def test_threads_for_user_most_recent_first(self, jobs, conversations):
        older = await jobs.create_job("sess-1", "user-1", "tents", at=T0)
        newer = await jobs.create_job("sess-1", "user-1", "stoves", at=T0 + timedelta(minutes=1))
        await jobs.create_job("sess-1", "user-2", "someone else", at=T0)
        await conversations.append_message(
            older.job_id, older.thread_id, "assistant", "bump", T0 + timedelta(minutes=5)
        )

        threads = await conversations.list_threads_for_user("sess-1", "user-1")
        assert [t.id for t in threads] == [older.thread_id, newer.thread_id]

    @pytest.mark.asyncio
    async def test_threads_for_user_respects_limit(self, jobs, conversations):
        for i in range(3):
            await jobs.create_job("sess-1", "user-1", f"p{i}", at=T0 + timedelta(minutes=i))
        threads = await conversations.list_threads_for_user("sess-1", "user-1", 2)
        assert len(threads) == 2
