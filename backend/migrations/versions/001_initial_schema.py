"""Initial schema: agent jobs, threads, messages, items, search cache, push subscriptions.

Revision ID: 001
Revises: (none)
Create Date: 2026-10-19
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str, *, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    # --- agent_threads ---
    op.create_table(
        "agent_threads",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("session_id", sa.String(255), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=True),
        sa.Column("title", sa.String(255), nullable=True),
        _timestamp("created_at"),
        _timestamp("last_message_at"),
    )
    op.create_index(
        "idx_agent_threads_session_last", "agent_threads", ["session_id", "last_message_at"]
    )
    op.create_index("idx_agent_threads_user_last", "agent_threads", ["user_id", "last_message_at"])

    # --- agent_jobs ---
    op.create_table(
        "agent_jobs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("session_id", sa.String(255), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=True),
        sa.Column(
            "thread_id",
            UUID(as_uuid=True),
            sa.ForeignKey("agent_threads.id"),
            nullable=True,
        ),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("intent", JSONB(), nullable=True),
        sa.Column("result_item_ids", JSONB(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("started_at", nullable=True),
        _timestamp("completed_at", nullable=True),
        sa.CheckConstraint(
            "status IN ('queued', 'running', 'completed', 'failed')",
            name="ck_agent_jobs_status",
        ),
    )
    op.create_index("idx_agent_jobs_session_created", "agent_jobs", ["session_id", "created_at"])
    op.create_index("idx_agent_jobs_user_created", "agent_jobs", ["user_id", "created_at"])
    op.create_index("idx_agent_jobs_status_created", "agent_jobs", ["status", "created_at"])
    op.create_index("idx_agent_jobs_thread_created", "agent_jobs", ["thread_id", "created_at"])

    # --- agent_messages ---
    op.create_table(
        "agent_messages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("job_id", UUID(as_uuid=True), sa.ForeignKey("agent_jobs.id"), nullable=False),
        sa.Column(
            "thread_id",
            UUID(as_uuid=True),
            sa.ForeignKey("agent_threads.id"),
            nullable=False,
        ),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        _timestamp("created_at"),
        sa.CheckConstraint(
            "role IN ('user', 'assistant', 'system')", name="ck_agent_messages_role"
        ),
    )
    op.create_index(
        "idx_agent_messages_thread_created", "agent_messages", ["thread_id", "created_at"]
    )
    op.create_index("idx_agent_messages_job_created", "agent_messages", ["job_id", "created_at"])

    # --- items ---
    op.create_table(
        "items",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("external_id", sa.String(500), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("price_usd_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(10), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("affiliate_url", sa.Text(), nullable=True),
        sa.Column("condition", sa.String(100), nullable=True),
        sa.Column("buying_options", JSONB(), nullable=True),
        sa.Column("seller_username", sa.String(255), nullable=True),
        sa.Column("seller_feedback_percent", sa.Float(), nullable=True),
        sa.Column("seller_feedback_score", sa.Integer(), nullable=True),
        sa.Column("shipping_cost_usd_cents", sa.Integer(), nullable=True),
        sa.Column("shipping_currency", sa.String(10), nullable=True),
        sa.Column("item_location", sa.String(255), nullable=True),
        sa.Column("short_description", sa.Text(), nullable=True),
        _timestamp("last_seen_at"),
        sa.UniqueConstraint("source", "external_id", name="uq_items_source_external"),
    )
    op.create_index("idx_items_last_seen", "items", ["last_seen_at"])

    # --- search_cache ---
    op.create_table(
        "search_cache",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("key", sa.String(64), nullable=False),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("query", sa.Text(), nullable=False),
        sa.Column("filters", JSONB(), nullable=False),
        sa.Column("item_ids", JSONB(), nullable=False),
        sa.Column("total", sa.Integer(), nullable=True),
        sa.Column("offset", sa.Integer(), nullable=False),
        sa.Column("limit", sa.Integer(), nullable=False),
        sa.Column("next_offset", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        _timestamp("expires_at"),
        sa.UniqueConstraint("key", name="uq_search_cache_key"),
    )
    op.create_index("idx_search_cache_expires", "search_cache", ["expires_at"])

    # --- push_subscriptions ---
    op.create_table(
        "push_subscriptions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("session_id", sa.String(255), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=True),
        sa.Column("endpoint", sa.Text(), nullable=False),
        sa.Column("p256dh", sa.Text(), nullable=False),
        sa.Column("auth", sa.Text(), nullable=False),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        _timestamp("last_seen_at"),
        sa.UniqueConstraint("endpoint", name="uq_push_subscriptions_endpoint"),
    )
    op.create_index(
        "idx_push_subscriptions_session", "push_subscriptions", ["session_id", "last_seen_at"]
    )


def downgrade() -> None:
    # Children before parents
    op.drop_table("push_subscriptions")
    op.drop_table("search_cache")
    op.drop_table("items")
    op.drop_table("agent_messages")
    op.drop_table("agent_jobs")
    op.drop_table("agent_threads")
