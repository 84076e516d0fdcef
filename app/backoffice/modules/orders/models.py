from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.backoffice.models import Base, new_uuid

if TYPE_CHECKING:
    from app.backoffice.modules.products.models import Product
    from app.backoffice.modules.users.models import Profile


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        Index("idx_orders_seller_id", "seller_id"),
        Index("idx_orders_product_id", "product_id"),
        Index("idx_orders_status", "status"),
        Index("idx_orders_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    order_code: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)

    seller_id: Mapped[str] = mapped_column(ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[str] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    buyer_email: Mapped[str] = mapped_column(String(320), nullable=False)
    buyer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    # {street, city, state, country, postal_code}
    shipping_address: Mapped[dict] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict
    )

    transaction_code: Mapped[str] = mapped_column(String(128), nullable=False)
    transaction_uuid: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    seller: Mapped["Profile | None"] = relationship("Profile", lazy="joined")
    product: Mapped["Product | None"] = relationship("Product", lazy="joined")
