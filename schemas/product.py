from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from typing import Optional


class ProductCreate(BaseModel):
    name: str
    price: Decimal
    description: Optional[str] = None
    sku: Optional[str] = None
    stock_quantity: Optional[int] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    price: Optional[Decimal] = None
    description: Optional[str] = None
    sku: Optional[str] = None
    stock_quantity: Optional[int] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class ProductOut(BaseModel):
    id: int
    name: str
    price: Decimal
    description: Optional[str] = None
    sku: Optional[str] = None
    stock_quantity: int
    created_at: datetime

    class Config:
        from_attributes = True
        alias_generator = to_camel
        populate_by_name = True
