from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from gigmarket.db.base import Base


class Profile(Base):
    __tablename__ = "profiles"

    auth_user_id: Mapped[str] = mapped_column(
        String(64), unique=True, index=True, nullable=False
    )
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_type: Mapped[str] = mapped_column(
        String(20), default="client", server_default="client"
    )
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
