from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import select, insert, delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.core.config import settings
from storefront.core.metrics import ORDERS_DB_OPERATIONS_TOTAL
from storefront.models.order import Order
from storefront.models.order_item import OrderItem
from storefront.service.pricing import OrderTotals


def _count(operation: str, status: str) -> None:
    ORDERS_DB_OPERATIONS_TOTAL.labels(
        service=settings.SERVICE_NAME,
        operation=operation,
        status=status,
    ).inc()


def fallback_order_number() -> str:
    return f"ORD-{int(time.time() * 1000)}"


async def generate_order_number(db: AsyncSession) -> str:
    """
    Номер заказа берётся из функции БД generate_order_number() (см. миграцию).
    Если функция недоступна, используется номер на основе времени.
    """
    _count("generate_number", "attempt")
    try:
        number = await db.scalar(select(func.generate_order_number()))
    except SQLAlchemyError as e:
        await db.rollback()
        logger.warning(
            "Order number generator unavailable, falling back to timestamp: {error}",
            error=str(e),
        )
        _count("generate_number", "fallback")
        return fallback_order_number()

    if not number:
        logger.warning("Order number generator returned empty value, falling back to timestamp")
        _count("generate_number", "fallback")
        return fallback_order_number()

    _count("generate_number", "success")
    return str(number)


async def insert_order(
    db: AsyncSession,
    *,
    order_number: str,
    user_id: UUID,
    shipping_address: dict[str, Any],
    totals: OrderTotals,
    payment_method: str | None,
    estimated_delivery: datetime,
) -> Order:
    _count("create", "attempt")
    logger.info(
        "Inserting order '{order_number}' for user_id='{user_id}'",
        order_number=order_number,
        user_id=str(user_id),
    )
    money = totals.rounded()
    order = Order(
        order_number=order_number,
        user_id=user_id,
        shipping_address=shipping_address,
        subtotal=money.subtotal,
        shipping_cost=money.shipping_cost,
        tax_amount=money.tax_amount,
        total_amount=money.total_amount,
        currency=settings.CURRENCY_BASE,
        # оплата симулируется: заказ сразу считается оплаченным
        status="paid",
        payment_method=payment_method,
        payment_status="completed",
        estimated_delivery=estimated_delivery,
    )
    db.add(order)
    await db.commit()
    logger.info(
        "Order persisted in DB. order_id='{order_id}', order_number='{order_number}'",
        order_id=str(order.id),
        order_number=order_number,
    )
    _count("create", "success")
    return order


async def insert_order_items(
    db: AsyncSession,
    order_id: UUID,
    items: Sequence[dict[str, Any]],
) -> None:
    _count("create_items", "attempt")
    logger.info(
        "Bulk inserting {count} order items for order_id='{order_id}'",
        count=len(items),
        order_id=str(order_id),
    )
    await db.execute(
        insert(OrderItem),
        [{**item, "order_id": order_id} for item in items],
    )
    await db.commit()
    _count("create_items", "success")


async def delete_order(db: AsyncSession, order_id: UUID) -> bool:
    _count("delete", "attempt")
    logger.info(
        "Deleting order from DB. order_id='{order_id}'",
        order_id=str(order_id),
    )
    # позиции удаляем явно, не полагаясь на ON DELETE CASCADE в БД
    await db.execute(delete(OrderItem).where(OrderItem.order_id == order_id))
    res = await db.execute(delete(Order).where(Order.id == order_id))
    await db.commit()
    deleted = res.rowcount > 0
    logger.info(
        "Delete order completed. order_id='{order_id}', deleted={deleted}",
        order_id=str(order_id),
        deleted=deleted,
    )
    _count("delete", "success")
    return deleted


async def get_order(db: AsyncSession, order_id: UUID, user_id: UUID) -> Order | None:
    _count("get", "attempt")
    logger.info(
        "Fetching order from DB. order_id='{order_id}', user_id='{user_id}'",
        order_id=str(order_id),
        user_id=str(user_id),
    )
    q = (
        select(Order)
        .options(selectinload(Order.items))
        .where(Order.id == order_id, Order.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    order = (await db.execute(q)).scalar_one_or_none()
    _count("get", "success" if order else "not_found")
    return order


async def list_orders(db: AsyncSession, user_id: UUID, page: int, limit: int) -> list[Order]:
    _count("list", "attempt")
    logger.info(
        "Listing orders for user_id='{user_id}', page={page}, limit={limit}",
        user_id=str(user_id),
        page=page,
        limit=limit,
    )
    q = (
        select(Order)
        .options(selectinload(Order.items))
        .where(Order.user_id == user_id)
        .order_by(Order.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    orders = list((await db.execute(q)).scalars().all())
    _count("list", "success")
    return orders
