import uuid

from sqlalchemy import ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.models.base import Base, uuidpk, created_ts, money
from storefront.models.order import Order


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[uuidpk]
    order_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    # снимок товара: позиция заказа не зависит от дальнейших правок каталога
    product_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    product_title: Mapped[str] = mapped_column(Text, nullable=False)
    selected_size: Mapped[str | None] = mapped_column(String(50), nullable=True)
    selected_color: Mapped[str | None] = mapped_column(String(50), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[money]
    total_price: Mapped[money]
    created_at: Mapped[created_ts]

    order: Mapped[Order] = relationship(back_populates="items")
