"""SQLAlchemy ORM models for DIY Genie.

Two tables: ``projects`` (one row per project, including the preview job
state) and ``profiles`` (one row per user, holding the monthly quota
counter). Both are only read and conditionally updated by the API.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class Project(Base):
    __tablename__ = "projects"
    __table_args__ = (
        Index("idx_projects_owner", "owner_id"),
        CheckConstraint(
            "preview_status IN ('none', 'queued', 'processing', 'done', 'error')",
            name="ck_projects_preview_status",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    goal: Mapped[str | None] = mapped_column(Text, nullable=True)
    room_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default="draft", server_default="draft"
    )
    input_image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    preview_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="none", server_default="none"
    )
    preview_job_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    preview_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    preview_meta: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class Profile(Base):
    __tablename__ = "profiles"
    __table_args__ = (
        CheckConstraint("credits_used_this_period >= 0", name="ck_profiles_credits_non_negative"),
        CheckConstraint("tier IN ('free', 'casual', 'pro')", name="ck_profiles_tier"),
    )

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    tier: Mapped[str] = mapped_column(
        String(20), nullable=False, default="free", server_default="free"
    )
    credits_used_this_period: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    period_key: Mapped[str] = mapped_column(String(6), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
