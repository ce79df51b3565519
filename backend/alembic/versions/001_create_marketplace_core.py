"""create profiles, jobs, proposals and deals

Revision ID: 001
Revises:
Create Date: 2026-09-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("auth_user_id", sa.String(64), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("user_type", sa.String(20), server_default="client", nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("avatar_url", sa.String(512), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_profiles_auth_user_id", "profiles", ["auth_user_id"], unique=True)

    op.create_table(
        "jobs",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category", sa.String(100), nullable=False),
        sa.Column("location", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), server_default="open", nullable=False),
        sa.Column("budget_min", sa.Numeric(12, 2), nullable=False),
        sa.Column("budget_max", sa.Numeric(12, 2), nullable=False),
        sa.Column("urgent", sa.Boolean(), server_default="false", nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_jobs_status_created", "jobs", ["status", "created_at"])

    op.create_table(
        "proposals",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("job_id", sa.Integer(), sa.ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("provider_id", sa.Integer(), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("author_id", sa.Integer(), sa.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True),
        sa.Column("previous_proposal_id", sa.Integer(), sa.ForeignKey("proposals.id", ondelete="SET NULL"), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), server_default="pending", nullable=False),
        *_timestamps(),
    )
    op.create_index(
        "ix_proposals_job_provider_created", "proposals", ["job_id", "provider_id", "created_at"]
    )
    op.create_index(
        "uq_proposals_open_per_provider",
        "proposals",
        ["job_id", "provider_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'accepted')"),
    )
    op.create_index(
        "uq_proposals_accepted_per_job",
        "proposals",
        ["job_id"],
        unique=True,
        postgresql_where=sa.text("status = 'accepted'"),
    )

    op.create_table(
        "deals",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("job_id", sa.Integer(), sa.ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("provider_id", sa.Integer(), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("proposal_id", sa.Integer(), sa.ForeignKey("proposals.id", ondelete="SET NULL"), nullable=True),
        sa.Column("agreed_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(20), server_default="active", nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("proposal_id", name="uq_deals_proposal_id"),
    )
    op.create_index(
        "uq_deals_active_per_job",
        "deals",
        ["job_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )


def downgrade() -> None:
    op.drop_table("deals")
    op.drop_table("proposals")
    op.drop_table("jobs")
    op.drop_table("profiles")
