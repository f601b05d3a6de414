from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ProductCreate(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str = Field(..., min_length=1)
    price: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    stock: int = Field(0, ge=0)
    stock_threshold: int = Field(5, ge=0)
    category: str = Field(..., min_length=1)
    description: Optional[str] = Field(default=None, max_length=500)
    active: bool = True


class StockUpdateRequest(BaseModel):
    stock: int = Field(..., ge=0)


class QuantityAdjustmentRequest(BaseModel):
    delta: int


class ProductRead(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    name: str
    category: str
    description: Optional[str] = None
    price: Decimal
    stock: int
    stock_threshold: int
    is_low_stock: bool
    is_out_of_stock: bool
    active: bool
    updated_at: Optional[datetime] = None
