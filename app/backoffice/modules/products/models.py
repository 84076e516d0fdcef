from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.backoffice.models import Base, new_uuid

if TYPE_CHECKING:
    from app.backoffice.modules.users.models import Profile


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        Index("idx_products_store_id", "store_id"),
        Index("idx_products_category", "category"),
        Index("idx_products_status", "status"),
        Index("idx_products_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    store_id: Mapped[str] = mapped_column(ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(64), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    cover_image: Mapped[str] = mapped_column(Text, nullable=False)
    other_images: Mapped[list] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=list
    )

    availability_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="available")  # available, out_of_stock

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    store: Mapped["Profile | None"] = relationship("Profile", lazy="joined")

    def image_urls(self) -> list[str]:
        urls = [self.cover_image] if self.cover_image else []
        urls.extend(u for u in (self.other_images or []) if u)
        return urls
