"""
Field constraints and relationship rules for the catalog.

Every validator is a pure function of the proposed field values: it returns
``None`` when the record is valid, or the first ``Violation`` found. The
repository and the order coordinator call these before touching the store.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence

from sqlalchemy.orm import InstrumentedAttribute

from models.order import Order
from models.order_product import OrderProduct
from models.product import Product
from models.review import Review

CENT = Decimal("0.01")
RATING_MIN = 1
RATING_MAX = 5

PRODUCT_FIELDS = ("name", "price", "description", "sku", "stock_quantity")
PRODUCT_IMMUTABLE_FIELDS = ("id", "created_at")
REVIEW_FIELDS = ("product_id", "rating", "comment")


class Rule(str, Enum):
    REQUIRED = "Required"
    NAME_EMPTY = "NameEmpty"
    PRICE_INVALID = "PriceInvalid"
    PRICE_NEGATIVE = "PriceNegative"
    PRICE_PRECISION = "PricePrecision"
    SKU_BLANK = "SkuBlank"
    SKU_DUPLICATE = "SkuDuplicate"
    STOCK_INVALID = "StockInvalid"
    STOCK_NEGATIVE = "StockNegative"
    RATING_OUT_OF_RANGE = "RatingOutOfRange"
    TEXT_INVALID = "TextInvalid"
    ID_INVALID = "IdInvalid"
    LINE_ITEMS_EMPTY = "LineItemsEmpty"
    LINE_ITEM_INVALID = "LineItemInvalid"
    QUANTITY_NOT_POSITIVE = "QuantityNotPositive"
    PRODUCT_REPEATED = "ProductRepeated"
    UNKNOWN_FIELD = "UnknownField"
    IMMUTABLE_FIELD = "ImmutableField"

    def __str__(self) -> str:
        return self.value


class Violation(NamedTuple):
    field: str
    rule: Rule


class Dependency(NamedTuple):
    """``child.foreign_key`` references ``parent_key`` on the parent model."""

    child: type
    foreign_key: InstrumentedAttribute
    parent_key: InstrumentedAttribute


# Parent model -> rows that must be deleted before the parent row.
DEPENDENCY_GRAPH: Dict[type, List[Dependency]] = {
    Product: [
        Dependency(Review, Review.product_id, Product.id),
        Dependency(OrderProduct, OrderProduct.product_id, Product.id),
    ],
    Order: [
        Dependency(OrderProduct, OrderProduct.order_id, Order.id),
    ],
}


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def parse_money(value: Any) -> Optional[Decimal]:
    """Convert ``value`` to a finite Decimal, or ``None`` if it is not a number."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, (int, float, str)):
        try:
            parsed = Decimal(str(value).strip())
        except InvalidOperation:
            return None
    else:
        return None
    return parsed if parsed.is_finite() else None


def round_money(value: Decimal) -> Decimal:
    """Round to cents, halves away from zero (2.675 -> 2.68)."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _check_text(fields: Mapping[str, Any], name: str) -> Optional[Violation]:
    value = fields.get(name)
    if value is not None and not isinstance(value, str):
        return Violation(name, Rule.TEXT_INVALID)
    return None


def validate_product(fields: Mapping[str, Any]) -> Optional[Violation]:
    """Validate a complete product record (create, or merged update)."""
    for key in fields:
        if key not in PRODUCT_FIELDS:
            return Violation(key, Rule.UNKNOWN_FIELD)

    name = fields.get("name")
    if name is None:
        return Violation("name", Rule.REQUIRED)
    if not isinstance(name, str):
        return Violation("name", Rule.TEXT_INVALID)
    if not name.strip():
        return Violation("name", Rule.NAME_EMPTY)

    if fields.get("price") is None:
        return Violation("price", Rule.REQUIRED)
    price = parse_money(fields["price"])
    if price is None:
        return Violation("price", Rule.PRICE_INVALID)
    if price < 0:
        return Violation("price", Rule.PRICE_NEGATIVE)
    if price != price.quantize(CENT):
        return Violation("price", Rule.PRICE_PRECISION)

    violation = _check_text(fields, "description")
    if violation:
        return violation

    sku = fields.get("sku")
    if sku is not None:
        if not isinstance(sku, str):
            return Violation("sku", Rule.TEXT_INVALID)
        if not sku.strip():
            return Violation("sku", Rule.SKU_BLANK)

    stock = fields.get("stock_quantity", 0)
    if stock is None:
        stock = 0
    if not _is_int(stock):
        return Violation("stock_quantity", Rule.STOCK_INVALID)
    if stock < 0:
        return Violation("stock_quantity", Rule.STOCK_NEGATIVE)
    return None


def validate_product_update(fields: Mapping[str, Any]) -> Optional[Violation]:
    """Reject keys that can never be supplied to an update."""
    for key in fields:
        if key in PRODUCT_IMMUTABLE_FIELDS:
            return Violation(key, Rule.IMMUTABLE_FIELD)
        if key not in PRODUCT_FIELDS:
            return Violation(key, Rule.UNKNOWN_FIELD)
    # Omitted stock defaults to 0 on create; an explicit null on update is an error
    if "stock_quantity" in fields and fields["stock_quantity"] is None:
        return Violation("stock_quantity", Rule.STOCK_INVALID)
    return None


def validate_review(fields: Mapping[str, Any]) -> Optional[Violation]:
    for key in fields:
        if key not in REVIEW_FIELDS:
            return Violation(key, Rule.UNKNOWN_FIELD)

    product_id = fields.get("product_id")
    if product_id is None:
        return Violation("product_id", Rule.REQUIRED)
    if not _is_int(product_id):
        return Violation("product_id", Rule.ID_INVALID)

    rating = fields.get("rating")
    if rating is None:
        return Violation("rating", Rule.REQUIRED)
    if not _is_int(rating) or not RATING_MIN <= rating <= RATING_MAX:
        return Violation("rating", Rule.RATING_OUT_OF_RANGE)

    return _check_text(fields, "comment")


def validate_line_items(items: Sequence[Any]) -> Optional[Violation]:
    """Items expose ``product_id`` and ``quantity``; each product at most once."""
    if not items:
        return Violation("items", Rule.LINE_ITEMS_EMPTY)
    seen = set()
    for item in items:
        if not _is_int(item.product_id):
            return Violation("product_id", Rule.ID_INVALID)
        if not _is_int(item.quantity) or item.quantity < 1:
            return Violation("quantity", Rule.QUANTITY_NOT_POSITIVE)
        if item.product_id in seen:
            return Violation("product_id", Rule.PRODUCT_REPEATED)
        seen.add(item.product_id)
    return None


def order_total(lines: Iterable[Any]) -> Decimal:
    """Sum of ``unit_price * quantity`` over ``lines``, rounded to cents."""
    total = sum((Decimal(line.unit_price) * line.quantity for line in lines), Decimal("0"))
    return round_money(total)
