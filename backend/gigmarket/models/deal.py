from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gigmarket.db.base import Base


class Deal(Base):
    __tablename__ = "deals"

    job_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    client_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    proposal_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("proposals.id", ondelete="SET NULL"),
        nullable=True,
        unique=True,
    )
    agreed_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default="active", server_default="active"
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    job = relationship("Job", lazy="selectin")
    client = relationship("Profile", foreign_keys=[client_id], lazy="selectin")
    provider = relationship("Profile", foreign_keys=[provider_id], lazy="selectin")

    __table_args__ = (
        Index(
            "uq_deals_active_per_job",
            "job_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )
