from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from cafe.models.order import OrderStatus, PaymentStatus


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrderItemRequest(_CamelModel):
    product_id: str = Field(..., min_length=1)
    quantity: int


class CreateOrderRequest(_CamelModel):
    items: list[OrderItemRequest] = Field(default_factory=list)
    table_booking_id: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=500)


class UpdateOrderStatusRequest(_CamelModel):
    status: str = Field(..., min_length=1)
    chef_id: Optional[str] = None
    waiter_id: Optional[str] = None


class AssignChefRequest(_CamelModel):
    chef_id: str = Field(..., min_length=1)


class AssignWaiterRequest(_CamelModel):
    waiter_id: str = Field(..., min_length=1)


class OrderItemRead(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    product_id: str
    product_name: str
    unit_price: Decimal
    quantity: int
    subtotal: Decimal


class OrderRead(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    user_id: str
    customer_name: Optional[str] = None
    items: list[OrderItemRead] = Field(default_factory=list)
    total_price: Decimal
    status: OrderStatus
    payment_status: PaymentStatus
    assigned_chef_id: Optional[str] = None
    assigned_waiter_id: Optional[str] = None
    table_booking_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrderPage(_CamelModel):
    items: list[OrderRead]
    page: int
    size: int
    total: int
