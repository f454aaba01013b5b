from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, List, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StringConstraints


NonBlankStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class ShippingAddress(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    full_name: NonBlankStr = Field(alias="fullName")
    address_line1: NonBlankStr = Field(alias="addressLine1")
    address_line2: Optional[str] = Field(default=None, alias="addressLine2")
    city: NonBlankStr
    state: NonBlankStr
    postal_code: NonBlankStr = Field(alias="postalCode")
    country: Optional[str] = None
    phone: Optional[str] = None


class OrderCreate(BaseModel):
    # адрес проверяется в сервисе, чтобы отдать "Invalid shipping address", а не 422
    shipping_address: Optional[Any] = Field(
        default=None,
        validation_alias=AliasChoices("shipping_address", "shippingAddress"),
    )
    payment_method: Optional[str] = Field(
        default=None,
        max_length=50,
        validation_alias=AliasChoices("payment_method", "paymentMethod"),
    )


class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: Optional[UUID]
    product_title: str
    selected_size: Optional[str]
    selected_color: Optional[str]
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    user_id: UUID
    shipping_address: dict[str, Any]
    subtotal: Decimal
    shipping_cost: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    currency: str
    status: str
    payment_method: Optional[str]
    payment_status: str
    estimated_delivery: Optional[datetime]
    created_at: Optional[datetime]
    items: List[OrderItemOut]
