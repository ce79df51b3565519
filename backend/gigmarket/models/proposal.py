from decimal import Decimal

from sqlalchemy import ForeignKey, Index, Integer, Numeric, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gigmarket.db.base import Base


class Proposal(Base):
    """A provider's bid on a job.

    Successive counters form a chain of rows for the same (job, provider);
    only the newest row of a chain can still be pending.
    """

    __tablename__ = "proposals"

    job_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    author_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True
    )
    previous_proposal_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("proposals.id", ondelete="SET NULL"), nullable=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), default="pending", server_default="pending"
    )

    # Relationships
    job = relationship("Job", backref="proposals", lazy="selectin")
    provider = relationship("Profile", foreign_keys=[provider_id], lazy="selectin")

    __table_args__ = (
        # One live (pending or accepted) row per provider per job
        Index(
            "uq_proposals_open_per_provider",
            "job_id",
            "provider_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'accepted')"),
            sqlite_where=text("status IN ('pending', 'accepted')"),
        ),
        Index(
            "uq_proposals_accepted_per_job",
            "job_id",
            unique=True,
            postgresql_where=text("status = 'accepted'"),
            sqlite_where=text("status = 'accepted'"),
        ),
        Index("ix_proposals_job_provider_created", "job_id", "provider_id", "created_at"),
    )
