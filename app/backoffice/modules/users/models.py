from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.backoffice.models import Base


class Profile(Base):
    """
    Store profile. `id` is the auth identity id; there is no FK because identities
    are owned by the auth provider, so orphaned profiles can exist and are cleaned
    up by the user-creation flow.
    """

    __tablename__ = "profiles"
    __table_args__ = (
        Index("idx_profiles_created_at", "created_at"),
        Index("idx_profiles_name", "name"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    profile_image: Mapped[str | None] = mapped_column(Text, nullable=True)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="USD")
    store_username: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    address: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    def store_summary(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "store_username": self.store_username,
            "currency": self.currency,
        }
