"""Initial schema: projects and profiles, matching db.py models.

Revision ID: 001
Revises: (none)
Create Date: 2025-01-14
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # --- projects ---
    op.create_table(
        "projects",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_id", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("goal", sa.Text(), nullable=True),
        sa.Column("room_type", sa.String(100), nullable=True),
        sa.Column("status", sa.String(50), server_default="draft", nullable=False),
        sa.Column("input_image_url", sa.Text(), nullable=True),
        sa.Column("preview_status", sa.String(20), server_default="none", nullable=False),
        sa.Column("preview_job_id", sa.String(255), nullable=True),
        sa.Column("preview_url", sa.Text(), nullable=True),
        sa.Column("preview_meta", JSONB, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint(
            "preview_status IN ('none', 'queued', 'processing', 'done', 'error')",
            name="ck_projects_preview_status",
        ),
    )
    op.create_index("idx_projects_owner", "projects", ["owner_id"])

    # --- profiles ---
    op.create_table(
        "profiles",
        sa.Column("user_id", sa.String(255), primary_key=True),
        sa.Column("tier", sa.String(20), server_default="free", nullable=False),
        sa.Column("credits_used_this_period", sa.Integer(), server_default="0", nullable=False),
        sa.Column("period_key", sa.String(6), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint(
            "credits_used_this_period >= 0", name="ck_profiles_credits_non_negative"
        ),
        sa.CheckConstraint("tier IN ('free', 'casual', 'pro')", name="ck_profiles_tier"),
    )


def downgrade() -> None:
    op.drop_table("profiles")
    op.drop_index("idx_projects_owner", table_name="projects")
    op.drop_table("projects")
