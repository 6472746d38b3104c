"""Add ebay_taxonomy: the flattened category tree per marketplace.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19

Written by the admin taxonomy refresh and read by the category lookup
endpoint. Additive only.
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "ebay_taxonomy",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("marketplace_id", sa.String(32), nullable=False),
        sa.Column("category_tree_id", sa.String(32), nullable=False),
        sa.Column("categories", JSONB(), nullable=False),
        sa.Column("fetched_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("marketplace_id", name="uq_ebay_taxonomy_marketplace"),
    )


def downgrade() -> None:
    op.drop_table("ebay_taxonomy")
