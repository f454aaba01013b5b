from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CartItemCreate(BaseModel):
    product_id: UUID
    quantity: int = Field(gt=0)
    selected_size: Optional[str] = Field(default=None, max_length=50)
    selected_color: Optional[str] = Field(default=None, max_length=50)


class CartItemUpdate(BaseModel):
    quantity: int


class CartProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    slug: str
    title: str
    price: Decimal
    stock: int


class CartItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    quantity: int
    selected_size: Optional[str]
    selected_color: Optional[str]
    unit_price: Decimal
    version: int
    created_at: Optional[datetime]
    product: Optional[CartProductOut] = None


class CartSummary(BaseModel):
    subtotal: Decimal
    total_items: int
    currency: str


class CartOut(BaseModel):
    items: List[CartItemOut]
    summary: CartSummary
