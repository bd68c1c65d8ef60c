from datetime import datetime
from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from typing import Optional


class ReviewCreate(BaseModel):
    product_id: int
    rating: int
    comment: Optional[str] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class ReviewOut(BaseModel):
    id: int
    product_id: int
    rating: int
    comment: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
        alias_generator = to_camel
        populate_by_name = True
