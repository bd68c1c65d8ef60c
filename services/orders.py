"""
Order creation and cancellation as single all-or-nothing transactions.

Stock is checked against rows read inside the transaction (locked with
``SELECT ... FOR UPDATE`` where the database supports it) and then
decremented with a conditional ``UPDATE``: if another writer drained the
stock in between, the update matches no row and the whole order is rolled
back with ``InsufficientStockError``.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, TypeVar

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from core.db import SessionFactory, transaction
from core.errors import InsufficientStockError, NotFoundError, StorageFailure, ValidationError
from models.order import Order
from models.order_product import OrderProduct
from models.product import Product
from services.cascade import CascadeExecutor
from services.invariants import Rule, order_total, validate_line_items
from services.repository import raise_for_violation

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class LineItem:
    product_id: int
    quantity: int = 1


def to_line_items(items: Iterable[Any]) -> List[LineItem]:
    result: List[LineItem] = []
    for item in items:
        if isinstance(item, LineItem):
            result.append(item)
        elif isinstance(item, Mapping):
            result.append(LineItem(product_id=item.get("product_id"), quantity=item.get("quantity", 1)))
        else:
            raise ValidationError("items", Rule.LINE_ITEM_INVALID)
    return result


class OrderCoordinator:
    def __init__(
        self,
        session_factory: SessionFactory,
        cascade: Optional[CascadeExecutor] = None,
        max_attempts: int = 3,
        retry_backoff: float = 0.05,
    ):
        self.session_factory = session_factory
        self.cascade = cascade or CascadeExecutor()
        self.max_attempts = max(1, max_attempts)
        self.retry_backoff = retry_backoff

    def create_order(self, line_items: Iterable[Any]) -> Order:
        """Place an order and return it with its ``items`` loaded."""
        items = to_line_items(line_items)
        raise_for_violation(validate_line_items(items))
        order = self._with_retry("create_order", lambda: self._create(items))
        logger.info("Order %s created: %d line(s), total %s", order.id, len(order.items), order.total_price)
        return order

    def cancel_order(self, order_id: int) -> None:
        """Delete the order and put its quantities back in stock."""
        self._with_retry("cancel_order", lambda: self._cancel(order_id))
        logger.info("Order %s cancelled", order_id)

    def _with_retry(self, operation: str, fn: Callable[[], T]) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return fn()
            except StorageFailure as exc:
                if not exc.retryable or attempt >= self.max_attempts:
                    raise
                logger.warning(
                    "%s conflicted with a concurrent transaction, retrying (%d/%d)",
                    operation, attempt, self.max_attempts,
                )
                time.sleep(self.retry_backoff * attempt)

    def _create(self, items: List[LineItem]) -> Order:
        with transaction(self.session_factory) as db:
            products = self._load_products(db, [item.product_id for item in items])
            for item in items:
                if item.product_id not in products:
                    raise NotFoundError("Product", item.product_id)

            lines = [
                OrderProduct(
                    product_id=item.product_id,
                    quantity=item.quantity,
                    unit_price=products[item.product_id].price,
                )
                for item in items
            ]
            self._check_stock(products, items)

            order = Order(total_price=order_total(lines))
            db.add(order)
            db.flush()
            for line in lines:
                line.order_id = order.id
            db.add_all(lines)
            db.flush()

            for item in sorted(items, key=lambda i: i.product_id):
                self._decrement_stock(db, item.product_id, item.quantity)

            return self._reload(db, order.id)

    def _cancel(self, order_id: Any) -> None:
        if not isinstance(order_id, int) or isinstance(order_id, bool):
            raise NotFoundError("Order", order_id)
        with transaction(self.session_factory) as db:
            order = self._reload(db, order_id, for_update=True)
            if order is None:
                raise NotFoundError("Order", order_id)
            for line in order.items:
                self._restore_stock(db, line.product_id, line.quantity)
            self.cascade.delete(db, Order, Order.id == order_id)

    @staticmethod
    def _load_products(db: Session, product_ids: List[int]) -> Dict[int, Product]:
        # Lock in id order so two orders over the same products cannot deadlock
        stmt = (
            select(Product)
            .where(Product.id.in_(product_ids))
            .order_by(Product.id)
            .with_for_update()
        )
        return {product.id: product for product in db.scalars(stmt)}

    @staticmethod
    def _check_stock(products: Dict[int, Product], items: List[LineItem]) -> None:
        for item in items:
            available = products[item.product_id].stock_quantity
            if available < item.quantity:
                raise InsufficientStockError(item.product_id, item.quantity, available)

    @staticmethod
    def _decrement_stock(db: Session, product_id: int, quantity: int) -> None:
        stmt = (
            update(Product)
            .where(Product.id == product_id, Product.stock_quantity >= quantity)
            .values(stock_quantity=Product.stock_quantity - quantity)
            .execution_options(synchronize_session=False)
        )
        if db.execute(stmt).rowcount != 1:
            raise InsufficientStockError(product_id, quantity)

    @staticmethod
    def _restore_stock(db: Session, product_id: int, quantity: int) -> None:
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(stock_quantity=Product.stock_quantity + quantity)
            .execution_options(synchronize_session=False)
        )
        db.execute(stmt)

    @staticmethod
    def _reload(db: Session, order_id: int, for_update: bool = False) -> Optional[Order]:
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .options(selectinload(Order.items))
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        return db.scalars(stmt).one_or_none()
