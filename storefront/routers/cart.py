from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import settings
from storefront.core.metrics import CART_API_REQUESTS_TOTAL
from storefront.crud import cart_items as cart_crud
from storefront.db import get_db
from storefront.dependencies.depend import current_user_id
from storefront.schemas.cart import CartItemCreate, CartItemOut, CartItemUpdate, CartOut
from storefront.schemas.response import ApiResponse


router = APIRouter(prefix="/cart", tags=["Cart"])


def _count(endpoint: str, method: str, status_: str) -> None:
    CART_API_REQUESTS_TOTAL.labels(
        service=settings.SERVICE_NAME,
        endpoint=endpoint,
        method=method,
        status=status_,
    ).inc()


@router.get("/", response_model=ApiResponse[CartOut])
async def get_cart(
    db: AsyncSession = Depends(get_db),
    user_id: UUID = Depends(current_user_id),
):
    cart = await cart_crud.get_cart(db, user_id)
    _count("/cart/", "GET", "success")
    return ApiResponse[CartOut](data=cart)


@router.post(
    "/",
    response_model=ApiResponse[CartItemOut],
    status_code=status.HTTP_201_CREATED,
)
async def add_to_cart(
    payload: CartItemCreate,
    db: AsyncSession = Depends(get_db),
    user_id: UUID = Depends(current_user_id),
):
    item = await cart_crud.add_to_cart(db, user_id, payload)
    _count("/cart/", "POST", "success")
    return ApiResponse[CartItemOut](
        data=CartItemOut.model_validate(item),
        message="Item added to cart",
    )


@router.patch("/{item_id}", response_model=ApiResponse[CartItemOut])
async def update_cart_item(
    item_id: UUID,
    payload: CartItemUpdate,
    db: AsyncSession = Depends(get_db),
    user_id: UUID = Depends(current_user_id),
):
    item = await cart_crud.update_cart_item(db, user_id, item_id, payload.quantity)
    _count("/cart/{item_id}", "PATCH", "success")
    return ApiResponse[CartItemOut](
        data=CartItemOut.model_validate(item),
        message="Cart item updated",
    )


@router.delete("/{item_id}", response_model=ApiResponse[None])
async def remove_cart_item(
    item_id: UUID,
    db: AsyncSession = Depends(get_db),
    user_id: UUID = Depends(current_user_id),
):
    await cart_crud.remove_cart_item(db, user_id, item_id)
    _count("/cart/{item_id}", "DELETE", "success")
    return ApiResponse[None](message="Cart item removed")
