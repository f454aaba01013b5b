"""
Оформление заказа из корзины.

Шаги выполняются последовательно, каждый со своим commit:

    FETCH_CART -> VALIDATE -> COMPUTE -> CREATE_ORDER -> CREATE_ITEMS -> CLEAR_CART -> DONE

Общей транзакции нет, поэтому сбой вставки позиций компенсируется удалением
уже созданного заказа. Ошибка очистки корзины не считается ошибкой заказа:
заказ уже создан, устаревшая корзина меньшее зло, чем потерянный заказ.
"""
from __future__ import annotations

import asyncio
import uuid
import weakref
from datetime import datetime, timedelta, timezone
from typing import Any, Sequence
from uuid import UUID

from loguru import logger
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import settings
from storefront.core.errors import (
    CartClearFailed,
    CartUnavailable,
    EmptyCart,
    InvalidShippingAddress,
    OrderCreationFailed,
    OrderItemsCreationFailed,
)
from storefront.core.metrics import CHECKOUT_STEPS_TOTAL
from storefront.crud import cart_items as cart_crud
from storefront.crud import orders as orders_crud
from storefront.models.cart_item import CartItem
from storefront.models.order import Order
from storefront.models.order_item import OrderItem
from storefront.schemas.order import ShippingAddress
from storefront.service.pricing import (
    DEFAULT_POLICY,
    PricingPolicy,
    calculate_totals,
    format_currency,
    line_total,
    to_money,
)


# один checkout на пользователя в пределах процесса
_checkout_locks: weakref.WeakValueDictionary[UUID, asyncio.Lock] = weakref.WeakValueDictionary()


def _checkout_lock(user_id: UUID) -> asyncio.Lock:
    lock = _checkout_locks.get(user_id)
    if lock is None:
        lock = asyncio.Lock()
        _checkout_locks[user_id] = lock
    return lock


def _step(step: str, status: str) -> None:
    CHECKOUT_STEPS_TOTAL.labels(
        service=settings.SERVICE_NAME,
        step=step,
        status=status,
    ).inc()


def validate_shipping_address(raw: Any) -> dict[str, Any]:
    """Возвращает адрес в том виде, в котором он хранится в заказе (camelCase)."""
    if not isinstance(raw, dict):
        raise InvalidShippingAddress()
    try:
        address = ShippingAddress.model_validate(raw)
    except ValidationError as e:
        logger.warning(
            "Shipping address rejected: {errors}",
            errors=[err["loc"] for err in e.errors()],
        )
        raise InvalidShippingAddress() from e
    return address.model_dump(by_alias=True, exclude_none=True)


def build_order_items(lines: Sequence[CartItem]) -> list[dict[str, Any]]:
    return [
        {
            "id": uuid.uuid4(),
            "product_id": line.product_id,
            "product_title": line.product.title,
            "selected_size": line.selected_size,
            "selected_color": line.selected_color,
            "quantity": line.quantity,
            "unit_price": to_money(line.unit_price),
            "total_price": to_money(line_total(line)),
        }
        for line in lines
    ]


async def create_order_from_cart(
    db: AsyncSession,
    user_id: UUID,
    shipping_address: Any,
    payment_method: str | None,
    policy: PricingPolicy | None = None,
) -> Order:
    address = validate_shipping_address(shipping_address)
    async with _checkout_lock(user_id):
        return await _checkout(db, user_id, address, payment_method, policy or DEFAULT_POLICY)


async def _checkout(
    db: AsyncSession,
    user_id: UUID,
    address: dict[str, Any],
    payment_method: str | None,
    policy: PricingPolicy,
) -> Order:
    logger.info(
        "Checkout started for user_id='{user_id}'",
        user_id=str(user_id),
    )

    # FETCH_CART
    try:
        lines = await cart_crud.get_cart_lines(db, user_id)
    except Exception as e:
        await db.rollback()
        logger.exception(
            "Checkout could not read cart for user_id='{user_id}'",
            user_id=str(user_id),
        )
        _step("fetch_cart", "error")
        raise CartUnavailable() from e

    # VALIDATE
    if not lines:
        logger.warning(
            "Checkout rejected, cart is empty for user_id='{user_id}'",
            user_id=str(user_id),
        )
        _step("validate", "empty_cart")
        raise EmptyCart()

    # COMPUTE
    totals = calculate_totals(lines, policy)
    items = build_order_items(lines)
    logger.info(
        "Checkout totals for user_id='{user_id}': subtotal={subtotal}, shipping={shipping}, "
        "tax={tax}, total={total}",
        user_id=str(user_id),
        subtotal=format_currency(totals.subtotal, settings.CURRENCY_BASE),
        shipping=format_currency(totals.shipping_cost, settings.CURRENCY_BASE),
        tax=format_currency(totals.tax_amount, settings.CURRENCY_BASE),
        total=format_currency(totals.total_amount, settings.CURRENCY_BASE),
    )

    # CREATE_ORDER
    try:
        order_number = await orders_crud.generate_order_number(db)
        order = await orders_crud.insert_order(
            db,
            order_number=order_number,
            user_id=user_id,
            shipping_address=address,
            totals=totals,
            payment_method=payment_method,
            estimated_delivery=datetime.now(timezone.utc) + timedelta(days=settings.DELIVERY_DAYS),
        )
    except Exception as e:
        await db.rollback()
        logger.exception(
            "Checkout failed to create order for user_id='{user_id}'",
            user_id=str(user_id),
        )
        _step("create_order", "error")
        raise OrderCreationFailed() from e
    _step("create_order", "success")
    order_id = order.id
    # снимок до commit-ов следующих шагов: rollback очистки корзины экспайрит order
    snapshot = _order_snapshot(order, items)

    # CREATE_ITEMS
    try:
        await orders_crud.insert_order_items(db, order_id, items)
    except Exception as e:
        await db.rollback()
        logger.exception(
            "Checkout failed to create items for order_id='{order_id}', rolling back order",
            order_id=str(order_id),
        )
        _step("create_items", "error")
        await _rollback_order(db, order_id)
        raise OrderItemsCreationFailed() from e
    _step("create_items", "success")

    # CLEAR_CART
    try:
        await _clear_cart(db, user_id)
    except CartClearFailed:
        logger.exception(
            "Cart of user_id='{user_id}' was not cleared after order_id='{order_id}'; order stands",
            user_id=str(user_id),
            order_id=str(order_id),
        )
        _step("clear_cart", "error")
    else:
        _step("clear_cart", "success")

    # DONE
    try:
        created = await orders_crud.get_order(db, order_id, user_id)
    except Exception:
        # заказ и позиции уже закоммичены, отдаём то, что записали
        logger.exception(
            "Could not re-read order_id='{order_id}', returning order as written",
            order_id=str(order_id),
        )
        _step("done", "reread_error")
        created = snapshot
    if created is None:
        logger.error(
            "Order lost after creation. order_id='{order_id}'",
            order_id=str(order_id),
        )
        _step("done", "order_lost")
        raise OrderCreationFailed()

    logger.info(
        "Checkout completed. order_id='{order_id}', order_number='{order_number}', user_id='{user_id}'",
        order_id=str(created.id),
        order_number=created.order_number,
        user_id=str(user_id),
    )
    _step("done", "success")
    return created


def _order_snapshot(order: Order, items: list[dict[str, Any]]) -> Order:
    """Отсоединённая копия только что вставленного заказа вместе с позициями."""
    return Order(
        id=order.id,
        order_number=order.order_number,
        user_id=order.user_id,
        shipping_address=order.shipping_address,
        subtotal=order.subtotal,
        shipping_cost=order.shipping_cost,
        tax_amount=order.tax_amount,
        total_amount=order.total_amount,
        currency=order.currency,
        status=order.status,
        payment_method=order.payment_method,
        payment_status=order.payment_status,
        estimated_delivery=order.estimated_delivery,
        items=[OrderItem(order_id=order.id, **item) for item in items],
    )


async def _rollback_order(db: AsyncSession, order_id: UUID) -> None:
    try:
        await orders_crud.delete_order(db, order_id)
    except Exception:
        await db.rollback()
        logger.exception(
            "Compensating delete failed, order_id='{order_id}' left without items",
            order_id=str(order_id),
        )
        _step("rollback_order", "error")
        return
    _step("rollback_order", "success")


async def _clear_cart(db: AsyncSession, user_id: UUID) -> None:
    try:
        await cart_crud.clear_cart(db, user_id)
    except Exception as e:
        await db.rollback()
        raise CartClearFailed() from e
