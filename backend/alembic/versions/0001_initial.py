"""initial schema: users, properties, property images, moderation logs

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("phone", sa.String(length=32), nullable=False, server_default=""),
        sa.Column("role", sa.String(length=32), nullable=False, server_default="buyer"),
        sa.Column("status", sa.String(length=40), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_phone", "users", ["phone"], unique=False)
    op.create_index("ix_users_role", "users", ["role"], unique=False)

    op.create_table(
        "properties",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("city", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=40), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_properties_owner_id", "properties", ["owner_id"], unique=False)
    op.create_index("ix_properties_city", "properties", ["city"], unique=False)

    op.create_table(
        "property_images",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id"), nullable=False),
        sa.Column("file_path", sa.String(length=512), nullable=False),
        sa.Column("original_filename", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("content_type", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("size_bytes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("moderation_status", sa.String(length=40), nullable=False, server_default="PENDING"),
        sa.Column("moderation_reason", sa.Text(), nullable=False, server_default=""),
        sa.Column("confidence_scores", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("blur_score", sa.Float(), nullable=True),
        sa.Column("blur_variance", sa.Float(), nullable=True),
        sa.Column("manual_reviewed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("manual_reviewer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("manual_review_notes", sa.Text(), nullable=False, server_default=""),
        sa.Column("checked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_property_images_property_id", "property_images", ["property_id"], unique=False)
    op.create_index("ix_property_images_moderation_status", "property_images", ["moderation_status"], unique=False)

    op.create_table(
        "moderation_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("entity_type", sa.String(length=40), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(length=40), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_moderation_logs_actor_user_id", "moderation_logs", ["actor_user_id"], unique=False)
    op.create_index("ix_moderation_logs_entity_type", "moderation_logs", ["entity_type"], unique=False)
    op.create_index("ix_moderation_logs_entity_id", "moderation_logs", ["entity_id"], unique=False)
    op.create_index("ix_moderation_logs_action", "moderation_logs", ["action"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_moderation_logs_action", table_name="moderation_logs")
    op.drop_index("ix_moderation_logs_entity_id", table_name="moderation_logs")
    op.drop_index("ix_moderation_logs_entity_type", table_name="moderation_logs")
    op.drop_index("ix_moderation_logs_actor_user_id", table_name="moderation_logs")
    op.drop_table("moderation_logs")
    op.drop_index("ix_property_images_moderation_status", table_name="property_images")
    op.drop_index("ix_property_images_property_id", table_name="property_images")
    op.drop_table("property_images")
    op.drop_index("ix_properties_city", table_name="properties")
    op.drop_index("ix_properties_owner_id", table_name="properties")
    op.drop_table("properties")
    op.drop_index("ix_users_role", table_name="users")
    op.drop_index("ix_users_phone", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
