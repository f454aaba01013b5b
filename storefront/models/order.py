import uuid
from datetime import datetime
from typing import Any, List

from sqlalchemy import JSON, DateTime, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.models.base import Base, uuidpk, created_ts, updated_ts, money


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[uuidpk]
    order_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    shipping_address: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    subtotal: Mapped[money]
    shipping_cost: Mapped[money]
    tax_amount: Mapped[money]
    total_amount: Mapped[money]
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    status: Mapped[str] = mapped_column(String(50), default="pending", nullable=False)
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    payment_status: Mapped[str] = mapped_column(String(50), default="pending", nullable=False)
    estimated_delivery: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[created_ts]
    updated_at: Mapped[updated_ts]

    items: Mapped[List["OrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
