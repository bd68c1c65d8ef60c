from decimal import Decimal

import pytest
from sqlalchemy import func, select

from core.db import transaction
from core.errors import InsufficientStockError, NotFoundError, StorageFailure, ValidationError
from models.order import Order
from models.order_product import OrderProduct
from services.cascade import CascadeExecutor
from services.orders import LineItem, OrderCoordinator


def table_count(session_factory, model):
    with transaction(session_factory) as db:
        return db.scalar(select(func.count()).select_from(model))


class CrashingCascade(CascadeExecutor):
    """Fails on the n-th row delete, after earlier deletes already ran."""

    def __init__(self, fail_on_call: int):
        super().__init__()
        self.fail_on_call = fail_on_call
        self.calls = 0

    def _delete_rows(self, db, model, criterion):
        self.calls += 1
        if self.calls == self.fail_on_call:
            raise RuntimeError("connection dropped mid-cancel")
        return super()._delete_rows(db, model, criterion)


class TestCreateOrder:
    """Test cases for order placement"""

    def test_widget_order_and_cancel(self, products, orders, coordinator, widget):
        order = coordinator.create_order([LineItem(product_id=widget.id, quantity=2)])

        assert order.total_price == Decimal("19.98")
        assert [(i.product_id, i.quantity, i.unit_price) for i in order.items] == [
            (widget.id, 2, Decimal("9.99")),
        ]
        assert products.get_by_id(widget.id).stock_quantity == 3

        coordinator.cancel_order(order.id)

        assert products.get_by_id(widget.id).stock_quantity == 5
        with pytest.raises(NotFoundError):
            orders.get_by_id(order.id)

    def test_overdraw_is_rejected_in_full(self, session_factory, products, coordinator, widget):
        with pytest.raises(InsufficientStockError) as exc_info:
            coordinator.create_order([LineItem(widget.id, 6)])

        assert exc_info.value.product_id == widget.id
        assert exc_info.value.available == 5
        assert products.get_by_id(widget.id).stock_quantity == 5
        assert table_count(session_factory, Order) == 0
        assert table_count(session_factory, OrderProduct) == 0

    def test_one_short_line_rejects_whole_order(self, products, coordinator, widget, gadget):
        with pytest.raises(InsufficientStockError) as exc_info:
            coordinator.create_order([LineItem(gadget.id, 3), LineItem(widget.id, 6)])

        assert exc_info.value.product_id == widget.id
        assert products.get_by_id(gadget.id).stock_quantity == 10

    def test_whole_stock_can_be_ordered(self, products, coordinator, widget):
        coordinator.create_order([LineItem(widget.id, 5)])
        assert products.get_by_id(widget.id).stock_quantity == 0

    def test_total_matches_lines(self, orders, coordinator, widget, gadget):
        order = coordinator.create_order([LineItem(widget.id, 2), LineItem(gadget.id, 3)])

        stored = orders.get_by_id(order.id)
        expected = sum((line.unit_price * line.quantity for line in stored.items), Decimal("0"))
        assert stored.total_price == expected == Decimal("21.03")
        assert len(stored.items) == 2

    def test_unit_price_is_a_snapshot(self, products, orders, coordinator, widget):
        order = coordinator.create_order([LineItem(widget.id, 1)])

        products.update(widget.id, {"price": "15.00"})

        stored = orders.get_by_id(order.id)
        assert stored.items[0].unit_price == Decimal("9.99")
        assert stored.total_price == Decimal("9.99")

    def test_accepts_mappings(self, coordinator, widget):
        order = coordinator.create_order([{"product_id": widget.id, "quantity": 1}])
        assert order.items[0].quantity == 1

    def test_quantity_defaults_to_one(self, coordinator, widget):
        order = coordinator.create_order([{"product_id": widget.id}])
        assert order.items[0].quantity == 1

    @pytest.mark.parametrize(
        "items,rule",
        [
            ([], "LineItemsEmpty"),
            ([LineItem(1, 0)], "QuantityNotPositive"),
            ([LineItem(1, -2)], "QuantityNotPositive"),
            ([LineItem(1, 1), LineItem(1, 1)], "ProductRepeated"),
            ([("not", "an item")], "LineItemInvalid"),
        ],
    )
    def test_invalid_line_items(self, session_factory, coordinator, widget, items, rule):
        with pytest.raises(ValidationError) as exc_info:
            coordinator.create_order(items)

        assert exc_info.value.rule == rule
        assert table_count(session_factory, Order) == 0

    def test_unknown_product(self, session_factory, products, coordinator, widget):
        with pytest.raises(NotFoundError) as exc_info:
            coordinator.create_order([LineItem(widget.id, 1), LineItem(9999, 1)])

        assert exc_info.value.entity_id == 9999
        assert products.get_by_id(widget.id).stock_quantity == 5
        assert table_count(session_factory, Order) == 0


class TestAtomicity:
    def test_failure_after_first_decrement_rolls_back(self, session_factory, products, widget, gadget):
        class Crashing(OrderCoordinator):
            def _decrement_stock(self, db, product_id, quantity):
                if product_id == gadget.id:
                    raise RuntimeError("connection dropped")
                OrderCoordinator._decrement_stock(db, product_id, quantity)

        with pytest.raises(RuntimeError):
            Crashing(session_factory).create_order([LineItem(widget.id, 1), LineItem(gadget.id, 1)])

        assert products.get_by_id(widget.id).stock_quantity == 5
        assert products.get_by_id(gadget.id).stock_quantity == 10
        assert table_count(session_factory, Order) == 0
        assert table_count(session_factory, OrderProduct) == 0

    def test_conditional_decrement_guards_stale_reads(self, session_factory, products, widget):
        # Pretend the stock check passed on a stale read
        class Unchecked(OrderCoordinator):
            @staticmethod
            def _check_stock(products, items):
                return None

        with pytest.raises(InsufficientStockError):
            Unchecked(session_factory).create_order([LineItem(widget.id, 6)])

        assert products.get_by_id(widget.id).stock_quantity == 5
        assert table_count(session_factory, Order) == 0

    def test_cancel_failure_restores_nothing(self, session_factory, products, orders, coordinator, widget):
        order = coordinator.create_order([LineItem(widget.id, 2)])
        # Stock is restored and the lines are gone when the order delete fails
        cancelling = OrderCoordinator(session_factory, cascade=CrashingCascade(fail_on_call=2), retry_backoff=0)

        with pytest.raises(RuntimeError):
            cancelling.cancel_order(order.id)

        assert cancelling.cascade.calls == 2
        assert products.get_by_id(widget.id).stock_quantity == 3
        stored = orders.get_by_id(order.id)
        assert [(i.product_id, i.quantity) for i in stored.items] == [(widget.id, 2)]
        assert table_count(session_factory, OrderProduct) == 1


class TestCancelOrder:
    def test_cancel_unknown_order(self, coordinator):
        with pytest.raises(NotFoundError):
            coordinator.cancel_order(12345)

    def test_cancel_twice(self, coordinator, widget):
        order = coordinator.create_order([LineItem(widget.id, 1)])
        coordinator.cancel_order(order.id)

        with pytest.raises(NotFoundError):
            coordinator.cancel_order(order.id)

    def test_cancel_removes_order_lines(self, session_factory, products, coordinator, widget, gadget):
        order = coordinator.create_order([LineItem(widget.id, 1), LineItem(gadget.id, 4)])
        coordinator.cancel_order(order.id)

        assert table_count(session_factory, OrderProduct) == 0
        assert products.get_by_id(gadget.id).stock_quantity == 10

    def test_list_orders(self, orders, coordinator, widget, gadget):
        first = coordinator.create_order([LineItem(widget.id, 1)])
        second = coordinator.create_order([LineItem(gadget.id, 1)])

        assert [o.id for o in orders.list()] == [first.id, second.id]
        assert all(len(o.items) == 1 for o in orders.list())


class TestRetry:
    def _flaky(self, session_factory, failures, retryable=True, max_attempts=3):
        class Flaky(OrderCoordinator):
            attempts = 0

            def _create(self, items):
                Flaky.attempts += 1
                if Flaky.attempts <= failures:
                    raise StorageFailure("database is locked", retryable=retryable)
                return super()._create(items)

        return Flaky(session_factory, max_attempts=max_attempts, retry_backoff=0)

    def test_transient_conflict_is_retried(self, session_factory, products, widget):
        coordinator = self._flaky(session_factory, failures=2)

        order = coordinator.create_order([LineItem(widget.id, 1)])

        assert type(coordinator).attempts == 3
        assert order.total_price == Decimal("9.99")
        assert products.get_by_id(widget.id).stock_quantity == 4

    def test_gives_up_after_max_attempts(self, session_factory, widget):
        coordinator = self._flaky(session_factory, failures=5, max_attempts=2)

        with pytest.raises(StorageFailure):
            coordinator.create_order([LineItem(widget.id, 1)])
        assert type(coordinator).attempts == 2

    def test_permanent_failure_is_not_retried(self, session_factory, widget):
        coordinator = self._flaky(session_factory, failures=1, retryable=False)

        with pytest.raises(StorageFailure):
            coordinator.create_order([LineItem(widget.id, 1)])
        assert type(coordinator).attempts == 1
