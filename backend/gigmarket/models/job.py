from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gigmarket.db.base import Base


class Job(Base):
    __tablename__ = "jobs"

    client_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    location: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default="open", server_default="open"
    )
    budget_min: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    budget_max: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    urgent: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )

    # Relationships
    client = relationship("Profile", lazy="selectin")

    __table_args__ = (
        Index("ix_jobs_status_created", "status", "created_at"),
    )
