from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from typing import List


class OrderItemIn(BaseModel):
    product_id: int
    quantity: int = 1

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class OrderCreate(BaseModel):
    items: List[OrderItemIn]


class OrderItemOut(BaseModel):
    product_id: int
    order_id: int
    quantity: int
    unit_price: Decimal

    class Config:
        from_attributes = True
        alias_generator = to_camel
        populate_by_name = True


class OrderOut(BaseModel):
    id: int
    total_price: Decimal
    created_at: datetime
    items: List[OrderItemOut]

    class Config:
        from_attributes = True
        alias_generator = to_camel
        populate_by_name = True
