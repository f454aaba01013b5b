from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import settings
from storefront.core.errors import OrderNotFound
from storefront.core.kafka import kafka_producer
from storefront.core.metrics import ORDERS_API_REQUESTS_TOTAL
from storefront.crud import orders as orders_crud
from storefront.db import get_db
from storefront.dependencies.depend import current_user_id
from storefront.models.order import Order
from storefront.schemas.order import OrderCreate, OrderOut
from storefront.schemas.response import ApiResponse
from storefront.service.checkout import create_order_from_cart


router = APIRouter(prefix="/orders", tags=["Orders"])


def _count(endpoint: str, method: str, status_: str) -> None:
    ORDERS_API_REQUESTS_TOTAL.labels(
        service=settings.SERVICE_NAME,
        endpoint=endpoint,
        method=method,
        status=status_,
    ).inc()


def order_created_event(order: Order) -> dict:
    return {
        "event": "ORDER_CREATED",
        "order_id": str(order.id),
        "order_number": order.order_number,
        "user_id": str(order.user_id),
        "currency": order.currency,
        "items": [
            {
                "product_id": str(i.product_id) if i.product_id else None,
                "quantity": i.quantity,
                "unit_price": str(i.unit_price),
            }
            for i in order.items
        ],
        "subtotal": str(order.subtotal),
        "shipping_cost": str(order.shipping_cost),
        "tax_amount": str(order.tax_amount),
        "total_amount": str(order.total_amount),
        "status": order.status,
    }


@router.post(
    "/",
    response_model=ApiResponse[OrderOut],
    status_code=status.HTTP_201_CREATED,
)
async def create_order(
    payload: OrderCreate,
    db: AsyncSession = Depends(get_db),
    user_id: UUID = Depends(current_user_id),
):
    logger.info(
        "Create order request received for user_id='{user_id}'",
        user_id=str(user_id),
    )
    order = await create_order_from_cart(
        db,
        user_id=user_id,
        shipping_address=payload.shipping_address,
        payment_method=payload.payment_method,
    )

    await kafka_producer.send(
        settings.KAFKA_ORDER_TOPIC,
        order_created_event(order),
        key=str(order.id),
    )

    _count("/orders/", "POST", "success")
    return ApiResponse[OrderOut](
        data=OrderOut.model_validate(order),
        message="Order created successfully",
    )


@router.get("/", response_model=ApiResponse[List[OrderOut]])
async def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    user_id: UUID = Depends(current_user_id),
):
    orders = await orders_crud.list_orders(db, user_id, page, limit)
    _count("/orders/", "GET", "success")
    return ApiResponse[List[OrderOut]](
        data=[OrderOut.model_validate(o) for o in orders],
    )


@router.get("/{order_id}", response_model=ApiResponse[OrderOut])
async def get_order(
    order_id: UUID,
    db: AsyncSession = Depends(get_db),
    user_id: UUID = Depends(current_user_id),
):
    order = await orders_crud.get_order(db, order_id, user_id)
    if not order:
        logger.warning(
            "Order '{order_id}' not found for user_id='{user_id}'",
            order_id=str(order_id),
            user_id=str(user_id),
        )
        _count("/orders/{order_id}", "GET", "not_found")
        raise OrderNotFound()
    _count("/orders/{order_id}", "GET", "success")
    return ApiResponse[OrderOut](data=OrderOut.model_validate(order))
