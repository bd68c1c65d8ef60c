"""
CRUD primitives per entity.

Each public operation runs as one transaction against the store obtained
from the injected session factory. Validation always happens before any
write, so a rejected call leaves no trace.
"""
import logging
from typing import Any, Dict, Iterator, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from core.db import SessionFactory, transaction
from core.errors import ConflictError, NotFoundError, ValidationError
from models.order import Order
from models.order_product import OrderProduct
from models.product import Product
from models.review import Review
from services.cascade import CascadeExecutor
from services.invariants import (
    PRODUCT_FIELDS,
    Rule,
    Violation,
    order_total,
    parse_money,
    round_money,
    validate_product,
    validate_product_update,
    validate_review,
)

logger = logging.getLogger(__name__)


def raise_for_violation(violation: Optional[Violation]) -> None:
    if violation is not None:
        raise ValidationError(violation.field, violation.rule)


class Repository:
    model: type
    entity: str

    def __init__(self, session_factory: SessionFactory, cascade: Optional[CascadeExecutor] = None):
        self.session_factory = session_factory
        self.cascade = cascade or CascadeExecutor()

    def _load_options(self) -> tuple:
        return ()

    def _get(self, db: Session, entity_id: Any, for_update: bool = False):
        if not isinstance(entity_id, int) or isinstance(entity_id, bool):
            raise NotFoundError(self.entity, entity_id)
        stmt = select(self.model).where(self.model.id == entity_id).options(*self._load_options())
        if for_update:
            stmt = stmt.with_for_update()
        obj = db.scalars(stmt).one_or_none()
        if obj is None:
            raise NotFoundError(self.entity, entity_id)
        return obj

    def get_by_id(self, entity_id: int):
        with transaction(self.session_factory) as db:
            return self._get(db, entity_id)

    def iter_all(self, batch_size: int = 100) -> Iterator:
        """Yield every row in id order, one short transaction per batch."""
        last_id = 0
        while True:
            with transaction(self.session_factory) as db:
                stmt = (
                    select(self.model)
                    .where(self.model.id > last_id)
                    .order_by(self.model.id)
                    .limit(batch_size)
                    .options(*self._load_options())
                )
                batch = list(db.scalars(stmt))
            if not batch:
                return
            last_id = batch[-1].id
            yield from batch
            if len(batch) < batch_size:
                return

    def list(self) -> List:
        return list(self.iter_all())

    def _delete(self, entity_id: int) -> Dict[str, int]:
        with transaction(self.session_factory) as db:
            self._get(db, entity_id, for_update=True)
            counts = self._delete_cascade(db, entity_id)
        logger.info("%s %s deleted (%s)", self.entity, entity_id, counts)
        return counts

    def _delete_cascade(self, db: Session, entity_id: int) -> Dict[str, int]:
        return self.cascade.delete(db, self.model, self.model.id == entity_id)


class ProductRepository(Repository):
    model = Product
    entity = "Product"

    @staticmethod
    def _normalize(fields: Mapping[str, Any]) -> Dict[str, Any]:
        values = dict(fields)
        if "price" in values:
            values["price"] = round_money(parse_money(values["price"]))
        if "stock_quantity" in values and values["stock_quantity"] is None:
            values["stock_quantity"] = 0
        return values

    @staticmethod
    def _ensure_sku_free(db: Session, sku: Optional[str], exclude_id: Optional[int] = None) -> None:
        if sku is None:
            return
        stmt = select(Product.id).where(Product.sku == sku)
        if exclude_id is not None:
            stmt = stmt.where(Product.id != exclude_id)
        if db.scalars(stmt).first() is not None:
            raise ConflictError("sku", Rule.SKU_DUPLICATE)

    @staticmethod
    def _flush(db: Session) -> None:
        # A concurrent writer may take the sku between the check and the insert
        try:
            db.flush()
        except IntegrityError as exc:
            if "unique" in str(exc.orig).lower():
                raise ConflictError("sku", Rule.SKU_DUPLICATE) from exc
            raise

    def create(self, fields: Mapping[str, Any]) -> Product:
        raise_for_violation(validate_product(fields))
        values = self._normalize(fields)
        values.setdefault("stock_quantity", 0)
        with transaction(self.session_factory) as db:
            self._ensure_sku_free(db, values.get("sku"))
            product = Product(**values)
            db.add(product)
            self._flush(db)
        logger.info("Product %s created", product.id)
        return product

    def update(self, product_id: int, fields: Mapping[str, Any]) -> Product:
        """Apply only the supplied fields, then revalidate the whole record."""
        raise_for_violation(validate_product_update(fields))
        with transaction(self.session_factory) as db:
            product = self._get(db, product_id, for_update=True)
            merged = {name: getattr(product, name) for name in PRODUCT_FIELDS}
            merged.update(fields)
            raise_for_violation(validate_product(merged))

            values = self._normalize({key: merged[key] for key in fields})
            if values.get("sku") is not None and values["sku"] != product.sku:
                self._ensure_sku_free(db, values["sku"], exclude_id=product.id)
            for key, value in values.items():
                setattr(product, key, value)
            self._flush(db)
        return product

    def delete(self, product_id: int) -> None:
        """Delete the product with its reviews and order lines.

        Orders that lose a line are repriced from their remaining lines, and
        orders left without any line are deleted, in the same transaction.
        """
        self._delete(product_id)

    def _delete_cascade(self, db: Session, product_id: int) -> Dict[str, int]:
        stmt = select(OrderProduct.order_id).where(OrderProduct.product_id == product_id)
        order_ids = sorted(set(db.scalars(stmt)))
        counts = super()._delete_cascade(db, product_id)
        if order_ids:
            for table, deleted in self._settle_orders(db, order_ids).items():
                counts[table] = counts.get(table, 0) + deleted
        return counts

    def _settle_orders(self, db: Session, order_ids: List[int]) -> Dict[str, int]:
        stmt = (
            select(Order)
            .where(Order.id.in_(order_ids))
            .order_by(Order.id)
            .options(selectinload(Order.items))
            .execution_options(populate_existing=True)
            .with_for_update()
        )
        emptied = []
        for order in db.scalars(stmt).all():
            if not order.items:
                emptied.append(order.id)
                continue
            order.total_price = order_total(order.items)
            logger.info("Order %s repriced to %s", order.id, order.total_price)
        if not emptied:
            return {}
        logger.info("Orders %s deleted, no lines left", emptied)
        return self.cascade.delete(db, Order, Order.id.in_(emptied))


class ReviewRepository(Repository):
    model = Review
    entity = "Review"

    def create(self, fields: Mapping[str, Any]) -> Review:
        raise_for_violation(validate_review(fields))
        with transaction(self.session_factory) as db:
            if db.get(Product, fields["product_id"]) is None:
                raise NotFoundError("Product", fields["product_id"])
            review = Review(**fields)
            db.add(review)
            db.flush()
        return review

    def delete(self, review_id: int) -> None:
        self._delete(review_id)


class OrderRepository(Repository):
    """Read access to orders; writes belong to ``OrderCoordinator``."""

    model = Order
    entity = "Order"

    def _load_options(self) -> tuple:
        return (selectinload(Order.items),)
