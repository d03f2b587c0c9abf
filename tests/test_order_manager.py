# Order lifecycle: totals, transitions, modifiability

from decimal import Decimal
from itertools import product

import pytest

from managers.order_manager import (
    EditRejected, OrderLine, TransitionError, UnknownMenuItemError, allows, modifiability,
)
from models import OrderStatus
from utils.errors import ErrorKind, OrderNotFoundError

from conftest import RESTAURANT, TABLE

LEGAL = {
    (OrderStatus.PENDING, OrderStatus.PREPARING),
    (OrderStatus.PENDING, OrderStatus.CANCELLED),
    (OrderStatus.PREPARING, OrderStatus.READY),
    (OrderStatus.PREPARING, OrderStatus.CANCELLED),
    (OrderStatus.READY, OrderStatus.SERVED),
}


def lines(*pairs):
    return [OrderLine(menu_item_id=i, quantity=q) for i, q in pairs]


@pytest.fixture
def orders(services):
    return services.orders


@pytest.fixture
def order(orders):
    return orders.create_order(RESTAURANT, TABLE, lines(("c1", 2), ("d1", 1)))


def force_status(store, order, status):
    store.save_order(order.model_copy(update={"status": status}))


class TestCreate:
    def test_total_is_sum_of_lines(self, order):
        assert order.total == Decimal("30.48")
        assert order.total == sum(it.price_at_time * it.quantity for it in order.items)
        assert order.status == OrderStatus.PENDING

    def test_session_is_opened_and_counted(self, services, order):
        session = services.sessions.find_active_session(RESTAURANT, TABLE)
        assert order.session_id == session.id
        assert session.total_orders == 1
        assert session.total_spent == Decimal("30.48")

    def test_unknown_or_unavailable_item(self, orders):
        with pytest.raises(UnknownMenuItemError):
            orders.create_order(RESTAURANT, TABLE, lines(("nope", 1)))
        with pytest.raises(UnknownMenuItemError):
            orders.create_order(RESTAURANT, TABLE, lines(("x1", 1)))

    def test_empty_order_refused(self, orders):
        with pytest.raises(ValueError):
            orders.create_order(RESTAURANT, TABLE, [])

    def test_price_is_captured_at_order_time(self, store, menu, orders, order):
        store.save_menu(RESTAURANT, [m.model_copy(update={"price": m.price + 1}) for m in menu])

        again = orders.get_order(order.id)
        assert again.items[0].price_at_time == Decimal("12.99")

        merged = orders.add_items(order.id, lines(("c1", 1), ("t1", 1)))
        caesar = next(it for it in merged.items if it.menu_item_id == "c1")
        tiramisu = next(it for it in merged.items if it.menu_item_id == "t1")
        assert caesar.quantity == 3
        assert caesar.price_at_time == Decimal("12.99")
        assert tiramisu.price_at_time == Decimal("9.00")


class TestTransitions:
    @pytest.mark.parametrize("current,attempted", list(product(OrderStatus, OrderStatus)))
    def test_transition_table_is_closed(self, store, orders, order, current, attempted):
        force_status(store, order, current)
        result = orders.update_order_status(order.id, attempted)

        if (current, attempted) in LEGAL:
            assert result.status == attempted
            assert orders.get_order(order.id).status == attempted
        else:
            assert isinstance(result, TransitionError)
            assert result.kind == ErrorKind.INVALID_TRANSITION
            assert result.current == current
            assert result.attempted == attempted
            assert orders.get_order(order.id).status == current

    def test_kitchen_flow(self, orders, order):
        orders.update_order_status(order.id, OrderStatus.PREPARING)
        assert orders.update_order_status(order.id, OrderStatus.READY).status == OrderStatus.READY

    def test_preparing_cannot_go_back(self, orders, order):
        orders.update_order_status(order.id, OrderStatus.PREPARING)
        result = orders.update_order_status(order.id, OrderStatus.PENDING)

        assert isinstance(result, TransitionError)
        assert "preparing" in result.message.lower()
        assert orders.get_order(order.id).status == OrderStatus.PREPARING

    def test_missing_order(self, orders):
        with pytest.raises(OrderNotFoundError):
            orders.update_order_status("missing", OrderStatus.READY)


class TestModifiability:
    def test_policy_table(self):
        assert allows(OrderStatus.PENDING, "add")
        assert not allows(OrderStatus.PREPARING, "add")
        assert not allows(OrderStatus.PREPARING, "modify")
        assert allows(OrderStatus.PREPARING, "cancel")
        assert modifiability(OrderStatus.PREPARING).cancel_needs_staff
        for status in (OrderStatus.READY, OrderStatus.SERVED, OrderStatus.CANCELLED):
            assert not any(allows(status, op) for op in ("add", "remove", "modify", "cancel"))

    def test_edit_refused_once_preparing(self, orders, order):
        orders.update_order_status(order.id, OrderStatus.PREPARING)
        result = orders.change_quantity(order.id, "c1", 5)

        assert isinstance(result, EditRejected)
        assert result.status == OrderStatus.PREPARING
        assert orders.get_order(order.id).items[0].quantity == 2

    def test_cancel_preparing_flags_staff(self, services, orders, order):
        orders.update_order_status(order.id, OrderStatus.PREPARING)
        result = orders.cancel_order(order.id, "changed my mind")

        assert result.status == OrderStatus.CANCELLED
        assert result.needs_staff_attention is True
        assert "changed my mind" in result.notes
        session = services.sessions.find_active_session(RESTAURANT, TABLE)
        assert session.total_orders == 0
        assert session.total_spent == Decimal("0.00")

    def test_cancel_ready_refused(self, orders, order):
        orders.update_order_status(order.id, OrderStatus.PREPARING)
        orders.update_order_status(order.id, OrderStatus.READY)
        assert isinstance(orders.cancel_order(order.id), EditRejected)

    def test_partial_and_full_remove(self, orders, order):
        partial = orders.remove_item(order.id, "c1", 1)
        assert partial.items[0].quantity == 1
        assert partial.total == Decimal("17.49")

        orders.remove_item(order.id, "c1")
        last = orders.remove_item(order.id, "d1")
        assert last.items == []
        assert last.status == OrderStatus.CANCELLED

    def test_remove_item_not_in_order(self, orders, order):
        result = orders.remove_item(order.id, "t1")
        assert isinstance(result, EditRejected)
        assert result.kind == ErrorKind.ARGUMENT_VALIDATION


class TestQueries:
    def test_session_lock(self, orders, order):
        assert orders.session_lock(order.session_id).locked is False
        orders.update_order_status(order.id, OrderStatus.PREPARING)
        lock = orders.session_lock(order.session_id)
        assert lock.locked is True
        assert lock.order_id == order.id
        assert lock.status == OrderStatus.PREPARING

    def test_recent_orders_skip_cancelled_and_window(self, services, orders, order):
        orders.cancel_order(order.id)
        for _ in range(6):
            orders.create_order(RESTAURANT, TABLE, lines(("d1", 1)))
        recent = orders.recent_orders(order.session_id)
        assert len(recent) == services.settings.recent_orders_window
        assert all(o.status != OrderStatus.CANCELLED for o in recent)

    def test_resolve_by_short_code(self, orders, order):
        assert orders.resolve_order(order.session_id, "#" + order.short_code.lower()).id == order.id
        assert orders.resolve_order(order.session_id, "ZZZZZZ") is None

    def test_latest_open_order_prefers_holder(self, orders, order):
        other = orders.create_order(RESTAURANT, TABLE, lines(("t1", 1)))
        assert orders.latest_open_order(order.session_id).id == other.id
        assert orders.latest_open_order(order.session_id, "c1").id == order.id
