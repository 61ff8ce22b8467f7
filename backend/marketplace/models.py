from __future__ import annotations

import datetime as dt

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255), default="")
    phone: Mapped[str] = mapped_column(String(32), default="", index=True)
    role: Mapped[str] = mapped_column(String(32), default="buyer", index=True)  # buyer | seller | agent | admin
    status: Mapped[str] = mapped_column(String(40), default="active")  # active | suspended
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    properties = relationship("Property", back_populates="owner")


class Property(Base):
    __tablename__ = "properties"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # Current owner (seller or agent). Leads copy this at creation time.
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    title: Mapped[str] = mapped_column(String(255), default="")
    city: Mapped[str] = mapped_column(String(120), default="", index=True)
    status: Mapped[str] = mapped_column(String(40), default="active")
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    owner = relationship("User", back_populates="properties")
    images = relationship("PropertyImage", back_populates="property", cascade="all, delete-orphan")


class PropertyImage(Base):
    __tablename__ = "property_images"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    property_id: Mapped[int] = mapped_column(ForeignKey("properties.id"), index=True)
    # Relative to the uploads dir: review/<f>, properties/<pid>/<f> or rejected/<f>.
    file_path: Mapped[str] = mapped_column(String(512))
    original_filename: Mapped[str] = mapped_column(String(255), default="")
    content_type: Mapped[str] = mapped_column(String(100), default="")
    size_bytes: Mapped[int] = mapped_column(Integer, default=0)

    moderation_status: Mapped[str] = mapped_column(String(40), default="PENDING", index=True)  # PENDING | NEEDS_REVIEW | SAFE | REJECTED
    moderation_reason: Mapped[str] = mapped_column(Text, default="")
    confidence_scores: Mapped[str] = mapped_column(Text, default="{}")  # JSON-encoded dict
    blur_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    blur_variance: Mapped[float | None] = mapped_column(Float, nullable=True)

    manual_reviewed: Mapped[bool] = mapped_column(Boolean, default=False)
    manual_reviewer_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    manual_review_notes: Mapped[str] = mapped_column(Text, default="")
    checked_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    property = relationship("Property", back_populates="images")


class InteractionRecord(Base):
    """
    Append-only ledger of gated buyer actions. Rows are never updated or deleted;
    the rows inside the trailing window are the only source of truth for quota.
    """

    __tablename__ = "buyer_interaction_limits"
    __table_args__ = (Index("ix_interaction_buyer_time", "buyer_id", "timestamp"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    buyer_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    # Informational only; does not influence the quota.
    property_id: Mapped[int] = mapped_column(Integer, index=True)
    action_type: Mapped[str] = mapped_column(String(20))  # view_owner | chat_owner
    timestamp: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class Lead(Base):
    __tablename__ = "leads"
    __table_args__ = (UniqueConstraint("buyer_id", "property_id", name="uq_leads_buyer_property"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    buyer_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    property_id: Mapped[int] = mapped_column(ForeignKey("properties.id"), index=True)
    # Owner of the property when the lead was created.
    seller_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class ModerationQueueItem(Base):
    __tablename__ = "moderation_review_queue"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    property_image_id: Mapped[int] = mapped_column(ForeignKey("property_images.id"), index=True)
    reason_for_review: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(20), default="OPEN", index=True)  # OPEN | APPROVED | REJECTED
    reviewer_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    review_notes: Mapped[str] = mapped_column(Text, default="")
    reviewed_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    image = relationship("PropertyImage")


class ModerationLog(Base):
    __tablename__ = "moderation_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    entity_type: Mapped[str] = mapped_column(String(40), index=True)  # property_image | moderation_queue
    entity_id: Mapped[int] = mapped_column(Integer, index=True)
    action: Mapped[str] = mapped_column(String(40), index=True)  # approve | reject | enqueue | auto_reject
    reason: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
