from datetime import datetime
from decimal import Decimal
from typing import List
from sqlalchemy import DateTime, Numeric, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("total_price >= 0", name="ck_orders_total_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Read-only view of the join rows; writes go through the coordinator
    items: Mapped[List["OrderProduct"]] = relationship(
        "OrderProduct",
        order_by="OrderProduct.product_id",
        viewonly=True,
    )
