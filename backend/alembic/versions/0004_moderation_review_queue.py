"""manual moderation review queue

Revision ID: 0004_moderation_review_queue
Revises: 0003_leads
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0004_moderation_review_queue"
down_revision = "0003_leads"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "moderation_review_queue",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("property_image_id", sa.Integer(), sa.ForeignKey("property_images.id"), nullable=False),
        sa.Column("reason_for_review", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="OPEN"),
        sa.Column("reviewer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("review_notes", sa.Text(), nullable=False, server_default=""),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_moderation_review_queue_property_image_id", "moderation_review_queue", ["property_image_id"], unique=False)
    op.create_index("ix_moderation_review_queue_status", "moderation_review_queue", ["status"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_moderation_review_queue_status", table_name="moderation_review_queue")
    op.drop_index("ix_moderation_review_queue_property_image_id", table_name="moderation_review_queue")
    op.drop_table("moderation_review_queue")
