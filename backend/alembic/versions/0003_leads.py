"""leads: one row per (buyer, property) contact request

Revision ID: 0003_leads
Revises: 0002_buyer_interaction_limits
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0003_leads"
down_revision = "0002_buyer_interaction_limits"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "leads",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("buyer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id"), nullable=False),
        sa.Column("seller_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("buyer_id", "property_id", name="uq_leads_buyer_property"),
    )
    op.create_index("ix_leads_buyer_id", "leads", ["buyer_id"], unique=False)
    op.create_index("ix_leads_property_id", "leads", ["property_id"], unique=False)
    op.create_index("ix_leads_seller_id", "leads", ["seller_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_leads_seller_id", table_name="leads")
    op.drop_index("ix_leads_property_id", table_name="leads")
    op.drop_index("ix_leads_buyer_id", table_name="leads")
    op.drop_table("leads")
