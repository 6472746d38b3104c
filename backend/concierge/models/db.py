"""SQLAlchemy ORM models for the shopping agent engine.

Jobs, threads and messages are the durable record of each request. Items,
cached search pages, push subscriptions and the eBay category tree are
shared across sessions and written with upserts on their natural keys.
"""

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp that always round-trips as UTC.

    SQLite drops tzinfo on storage; values read back are re-tagged as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    pass


class AgentThread(Base):
    __tablename__ = "agent_threads"
    __table_args__ = (
        Index("idx_agent_threads_session_last", "session_id", "last_message_at"),
        Index("idx_agent_threads_user_last", "user_id", "last_message_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[str] = mapped_column(String(255), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    last_message_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class AgentJob(Base):
    __tablename__ = "agent_jobs"
    __table_args__ = (
        Index("idx_agent_jobs_session_created", "session_id", "created_at"),
        Index("idx_agent_jobs_user_created", "user_id", "created_at"),
        Index("idx_agent_jobs_status_created", "status", "created_at"),
        Index("idx_agent_jobs_thread_created", "thread_id", "created_at"),
        CheckConstraint(
            "status IN ('queued', 'running', 'completed', 'failed')",
            name="ck_agent_jobs_status",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[str] = mapped_column(String(255), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    thread_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("agent_threads.id"), nullable=True
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="queued")
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    intent: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    result_item_ids: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class AgentMessage(Base):
    """One turn in a thread. Integer ids break ties between equal timestamps."""

    __tablename__ = "agent_messages"
    __table_args__ = (
        Index("idx_agent_messages_thread_created", "thread_id", "created_at"),
        Index("idx_agent_messages_job_created", "job_id", "created_at"),
        CheckConstraint("role IN ('user', 'assistant', 'system')", name="ck_agent_messages_role"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("agent_jobs.id"), nullable=False)
    thread_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("agent_threads.id"), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class Item(Base):
    __tablename__ = "items"
    __table_args__ = (
        UniqueConstraint("source", "external_id", name="uq_items_source_external"),
        Index("idx_items_last_seen", "last_seen_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    source: Mapped[str] = mapped_column(String(50), nullable=False)
    external_id: Mapped[str] = mapped_column(String(500), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    price_usd_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str | None] = mapped_column(String(10), nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    affiliate_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    condition: Mapped[str | None] = mapped_column(String(100), nullable=True)
    buying_options: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    seller_username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    seller_feedback_percent: Mapped[float | None] = mapped_column(nullable=True)
    seller_feedback_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    shipping_cost_usd_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    shipping_currency: Mapped[str | None] = mapped_column(String(10), nullable=True)
    item_location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    short_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_seen_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class SearchCacheEntry(Base):
    __tablename__ = "search_cache"
    __table_args__ = (
        UniqueConstraint("key", name="uq_search_cache_key"),
        Index("idx_search_cache_expires", "expires_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    key: Mapped[str] = mapped_column(String(64), nullable=False)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    query: Mapped[str] = mapped_column(Text, nullable=False)
    filters: Mapped[dict] = mapped_column(JSONType, nullable=False)
    item_ids: Mapped[list] = mapped_column(JSONType, nullable=False)
    total: Mapped[int | None] = mapped_column(Integer, nullable=True)
    offset: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    limit: Mapped[int] = mapped_column(Integer, nullable=False)
    next_offset: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class PushSubscription(Base):
    __tablename__ = "push_subscriptions"
    __table_args__ = (
        UniqueConstraint("endpoint", name="uq_push_subscriptions_endpoint"),
        Index("idx_push_subscriptions_session", "session_id", "last_seen_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[str] = mapped_column(String(255), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    endpoint: Mapped[str] = mapped_column(Text, nullable=False)
    p256dh: Mapped[str] = mapped_column(Text, nullable=False)
    auth: Mapped[str] = mapped_column(Text, nullable=False)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, server_default=func.now()
    )
    last_seen_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class EbayTaxonomy(Base):
    """Flattened eBay category tree, one row per marketplace."""

    __tablename__ = "ebay_taxonomy"
    __table_args__ = (UniqueConstraint("marketplace_id", name="uq_ebay_taxonomy_marketplace"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    marketplace_id: Mapped[str] = mapped_column(String(32), nullable=False)
    category_tree_id: Mapped[str] = mapped_column(String(32), nullable=False)
    categories: Mapped[list] = mapped_column(JSONType, nullable=False)
    fetched_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
