"""buyer interaction ledger (view_owner / chat_owner)

Revision ID: 0002_buyer_interaction_limits
Revises: 0001_initial
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0002_buyer_interaction_limits"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "buyer_interaction_limits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("buyer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("property_id", sa.Integer(), nullable=False),
        sa.Column("action_type", sa.String(length=20), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_buyer_interaction_limits_buyer_id", "buyer_interaction_limits", ["buyer_id"], unique=False)
    op.create_index("ix_buyer_interaction_limits_property_id", "buyer_interaction_limits", ["property_id"], unique=False)
    # Windowed count: WHERE buyer_id = ? AND timestamp >= ?
    op.create_index("ix_interaction_buyer_time", "buyer_interaction_limits", ["buyer_id", "timestamp"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_interaction_buyer_time", table_name="buyer_interaction_limits")
    op.drop_index("ix_buyer_interaction_limits_property_id", table_name="buyer_interaction_limits")
    op.drop_index("ix_buyer_interaction_limits_buyer_id", table_name="buyer_interaction_limits")
    op.drop_table("buyer_interaction_limits")
