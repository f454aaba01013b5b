from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.core.config import settings
from storefront.core.errors import (
    CartItemNotFound,
    InsufficientStock,
    InvalidQuantity,
    ProductNotFound,
    StorefrontError,
)
from storefront.core.metrics import CART_DB_OPERATIONS_TOTAL
from storefront.models.cart_item import CartItem
from storefront.models.product import Product
from storefront.schemas.cart import CartItemCreate, CartItemOut, CartOut, CartSummary
from storefront.service.pricing import line_total, to_money


def _count(operation: str, status: str) -> None:
    CART_DB_OPERATIONS_TOTAL.labels(
        service=settings.SERVICE_NAME,
        operation=operation,
        status=status,
    ).inc()


def _same_variant(column, value: str | None):
    # NULL не равен NULL в SQL, поэтому пустой вариант ищем через IS NULL
    return column.is_(None) if value is None else column == value


async def _get_owned_item(db: AsyncSession, user_id: UUID, item_id: UUID) -> CartItem | None:
    q = (
        select(CartItem)
        .options(selectinload(CartItem.product))
        .where(CartItem.id == item_id, CartItem.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return (await db.execute(q)).scalar_one_or_none()


async def get_cart_lines(db: AsyncSession, user_id: UUID) -> list[CartItem]:
    """
    Все строки корзины пользователя вместе с товаром (title, price, stock).
    Ошибки БД пробрасываются как есть, их классифицирует вызывающий код.
    """
    _count("get_lines", "attempt")
    logger.info(
        "Fetching cart lines from DB for user_id='{user_id}'",
        user_id=str(user_id),
    )
    q = (
        select(CartItem)
        .options(selectinload(CartItem.product))
        .where(CartItem.user_id == user_id)
        .order_by(CartItem.created_at.desc())
        .execution_options(populate_existing=True)
    )
    lines = list((await db.execute(q)).scalars().all())
    logger.info(
        "Fetched {count} cart lines for user_id='{user_id}'",
        count=len(lines),
        user_id=str(user_id),
    )
    _count("get_lines", "success")
    return lines


async def clear_cart(db: AsyncSession, user_id: UUID) -> int:
    _count("clear", "attempt")
    logger.info(
        "Clearing cart in DB for user_id='{user_id}'",
        user_id=str(user_id),
    )
    res = await db.execute(delete(CartItem).where(CartItem.user_id == user_id))
    await db.commit()
    logger.info(
        "Cart cleared for user_id='{user_id}', removed={removed}",
        user_id=str(user_id),
        removed=res.rowcount,
    )
    _count("clear", "success")
    return res.rowcount


async def get_cart(db: AsyncSession, user_id: UUID) -> CartOut:
    lines = await get_cart_lines(db, user_id)
    subtotal = sum((line_total(line) for line in lines), Decimal("0"))
    return CartOut(
        items=[CartItemOut.model_validate(line) for line in lines],
        summary=CartSummary(
            subtotal=to_money(subtotal),
            total_items=sum(line.quantity for line in lines),
            currency=settings.CURRENCY_BASE,
        ),
    )


async def _find_variant(db: AsyncSession, user_id: UUID, data: CartItemCreate) -> CartItem | None:
    q = (
        select(CartItem)
        .where(
            CartItem.user_id == user_id,
            CartItem.product_id == data.product_id,
            _same_variant(CartItem.selected_size, data.selected_size),
            _same_variant(CartItem.selected_color, data.selected_color),
        )
        .execution_options(populate_existing=True)
    )
    return (await db.execute(q)).scalar_one_or_none()


async def add_to_cart(db: AsyncSession, user_id: UUID, data: CartItemCreate) -> CartItem:
    _count("add", "attempt")
    logger.info(
        "Attempt to add product '{product_id}' x{quantity} to cart of user_id='{user_id}'",
        product_id=str(data.product_id),
        quantity=data.quantity,
        user_id=str(user_id),
    )
    product = (
        await db.execute(select(Product).where(Product.id == data.product_id))
    ).scalar_one_or_none()
    if not product or not product.is_active:
        logger.warning(
            "Product '{product_id}' not found or inactive while adding to cart",
            product_id=str(data.product_id),
        )
        _count("add", "product_not_found")
        raise ProductNotFound()

    # rollback ниже экспайрит product, поэтому нужные поля снимаем заранее
    stock, price = product.stock, product.price

    # вставка может проиграть гонку параллельному add того же варианта:
    # тогда уникальный индекс даёт IntegrityError и повторяем как слияние
    for attempt in range(2):
        existing = await _find_variant(db, user_id, data)

        requested = data.quantity + (existing.quantity if existing else 0)
        if stock < requested:
            logger.warning(
                "Insufficient stock for product '{product_id}': requested={requested}, stock={stock}",
                product_id=str(data.product_id),
                requested=requested,
                stock=stock,
            )
            _count("add", "insufficient_stock")
            raise InsufficientStock()

        try:
            if existing:
                item_id = existing.id
                # инкремент на стороне БД, чтобы параллельные слияния не теряли количество
                existing.quantity = CartItem.quantity + data.quantity
                existing.unit_price = price
                existing.version = CartItem.version + 1
                logger.debug(
                    "Merging cart line '{item_id}' to quantity={quantity}",
                    item_id=str(item_id),
                    quantity=requested,
                )
            else:
                new_item = CartItem(
                    user_id=user_id,
                    product_id=data.product_id,
                    quantity=data.quantity,
                    selected_size=data.selected_size,
                    selected_color=data.selected_color,
                    unit_price=price,
                )
                db.add(new_item)
                await db.flush()
                item_id = new_item.id
            await db.commit()
        except IntegrityError:
            await db.rollback()
            if attempt == 0 and not existing:
                logger.info(
                    "Cart line for product '{product_id}' was created concurrently, merging instead",
                    product_id=str(data.product_id),
                )
                _count("add", "merge_retry")
                continue
            logger.exception(
                "Failed to add product '{product_id}' to cart of user_id='{user_id}'",
                product_id=str(data.product_id),
                user_id=str(user_id),
            )
            _count("add", "error")
            raise StorefrontError("Failed to add to cart")
        except SQLAlchemyError:
            await db.rollback()
            logger.exception(
                "Failed to add product '{product_id}' to cart of user_id='{user_id}'",
                product_id=str(data.product_id),
                user_id=str(user_id),
            )
            _count("add", "error")
            raise StorefrontError("Failed to add to cart")
        break

    logger.info(
        "Cart line '{item_id}' saved for user_id='{user_id}'",
        item_id=str(item_id),
        user_id=str(user_id),
    )
    _count("add", "success")
    return await _get_owned_item(db, user_id, item_id)


async def update_cart_item(db: AsyncSession, user_id: UUID, item_id: UUID, quantity: int) -> CartItem:
    _count("update", "attempt")
    logger.info(
        "Attempt to update cart line '{item_id}' to quantity={quantity}",
        item_id=str(item_id),
        quantity=quantity,
    )
    if quantity < 1:
        _count("update", "invalid_quantity")
        raise InvalidQuantity()

    item = await _get_owned_item(db, user_id, item_id)
    if not item:
        logger.warning(
            "Cart line '{item_id}' not found for user_id='{user_id}'",
            item_id=str(item_id),
            user_id=str(user_id),
        )
        _count("update", "not_found")
        raise CartItemNotFound()

    if not item.product.is_active:
        logger.warning(
            "Product '{product_id}' of cart line '{item_id}' is inactive",
            product_id=str(item.product_id),
            item_id=str(item_id),
        )
        _count("update", "product_not_found")
        raise ProductNotFound()

    if item.product.stock < quantity:
        _count("update", "insufficient_stock")
        raise InsufficientStock()

    try:
        item.quantity = quantity
        item.version += 1
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception(
            "Failed to update cart line '{item_id}'",
            item_id=str(item_id),
        )
        _count("update", "error")
        raise StorefrontError("Failed to update cart item")

    _count("update", "success")
    return await _get_owned_item(db, user_id, item_id)


async def remove_cart_item(db: AsyncSession, user_id: UUID, item_id: UUID) -> None:
    _count("remove", "attempt")
    logger.info(
        "Attempt to remove cart line '{item_id}' of user_id='{user_id}'",
        item_id=str(item_id),
        user_id=str(user_id),
    )
    try:
        await db.execute(
            delete(CartItem).where(CartItem.id == item_id, CartItem.user_id == user_id)
        )
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception(
            "Failed to remove cart line '{item_id}'",
            item_id=str(item_id),
        )
        _count("remove", "error")
        raise StorefrontError("Failed to remove cart item")
    _count("remove", "success")
