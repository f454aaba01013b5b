import uuid

from sqlalchemy import ForeignKey, Index, Integer, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.models.base import Base, uuidpk, created_ts, updated_ts, money
from storefront.models.product import Product


class CartItem(Base):
    __tablename__ = "cart_items"

    id: Mapped[uuidpk]
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    product_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    selected_size: Mapped[str | None] = mapped_column(String(50), nullable=True)
    selected_color: Mapped[str | None] = mapped_column(String(50), nullable=True)
    # цена фиксируется в момент добавления в корзину
    unit_price: Mapped[money]
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[created_ts]
    updated_at: Mapped[updated_ts]

    product: Mapped[Product] = relationship()


# одна строка на (пользователь, товар, размер, цвет); NULL-варианты через coalesce,
# иначе уникальность не срабатывает на пустом размере/цвете
Index(
    "uq_cart_items_user_product_variant",
    CartItem.user_id,
    CartItem.product_id,
    func.coalesce(CartItem.selected_size, ""),
    func.coalesce(CartItem.selected_color, ""),
    unique=True,
)
