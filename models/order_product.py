from decimal import Decimal
from sqlalchemy import ForeignKey, Integer, Numeric, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base


class OrderProduct(Base):
    __tablename__ = "order_products"
    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_products_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_order_products_unit_price_non_negative"),
    )

    product_id: Mapped[int] = mapped_column(ForeignKey("products.id"), primary_key=True, index=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), primary_key=True, index=True)
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    # Price snapshot taken when the order was placed
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2))
