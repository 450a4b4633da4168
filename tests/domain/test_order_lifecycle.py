"""Order cancellation and admin status updates."""

import pytest

from checkout import OrderWorkflow
from errors import InvalidStateError, NotFoundError, UnauthorizedError
from schemas import ORDER_TRANSITIONS, OrderStatus, PaymentStatus


@pytest.fixture()
def owner(make_user):
    return make_user(email="owner@example.com")


@pytest.fixture()
def product(make_product):
    return make_product(name="Chair", price=30, stock=10)


@pytest.fixture()
def order(workflow, carts, owner, product):
    carts.add_item(owner["id"], product["id"], 3)
    return workflow.place_order(owner["id"], "1 Main St")


def _force(workflow, order, status):
    return workflow.update_order_status(order["id"], status, force=True)


class TestTransitionTable:
    def test_terminal_states(self):
        assert OrderStatus.DELIVERED.is_terminal
        assert OrderStatus.CANCELLED.is_terminal
        assert not OrderStatus.PENDING.is_terminal

    def test_every_status_has_an_entry(self):
        assert set(ORDER_TRANSITIONS) == set(OrderStatus)

    def test_happy_path_is_allowed(self):
        assert OrderStatus.PENDING.can_transition_to(OrderStatus.PROCESSING)
        assert OrderStatus.PROCESSING.can_transition_to(OrderStatus.SHIPPED)
        assert OrderStatus.SHIPPED.can_transition_to(OrderStatus.DELIVERED)

    def test_skipping_and_reversing_are_not(self):
        assert not OrderStatus.PENDING.can_transition_to(OrderStatus.DELIVERED)
        assert not OrderStatus.SHIPPED.can_transition_to(OrderStatus.PENDING)
        assert not OrderStatus.SHIPPED.can_transition_to(OrderStatus.CANCELLED)


class TestCancelOrder:
    @pytest.mark.parametrize("status", [OrderStatus.PENDING, OrderStatus.PROCESSING])
    def test_owner_cancels_open_order(self, workflow, order, owner, status):
        _force(workflow, order, status)

        cancelled = workflow.cancel_order(order["id"], owner["id"])

        assert cancelled["status"] == OrderStatus.CANCELLED.value

    @pytest.mark.parametrize("status", [OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.CANCELLED])
    def test_closed_order_cannot_be_cancelled(self, workflow, orders, order, owner, status):
        _force(workflow, order, status)

        with pytest.raises(InvalidStateError) as exc_info:
            workflow.cancel_order(order["id"], owner["id"])

        assert exc_info.value.current_status == status.value
        assert status.value in exc_info.value.message
        assert orders.get(order["id"])["status"] == status.value

    def test_other_user_cannot_cancel(self, workflow, orders, order, make_user):
        stranger = make_user(email="stranger@example.com")

        with pytest.raises(UnauthorizedError):
            workflow.cancel_order(order["id"], stranger["id"])
        assert orders.get(order["id"])["status"] == OrderStatus.PENDING.value

    def test_unknown_order(self, workflow, owner):
        with pytest.raises(NotFoundError):
            workflow.cancel_order("64b7f0c2e4b0a1a2b3c4d5e6", owner["id"])
        with pytest.raises(NotFoundError):
            workflow.cancel_order("garbage", owner["id"])

    def test_stock_not_returned_by_default(self, workflow, catalog, order, owner, product):
        workflow.cancel_order(order["id"], owner["id"])
        assert catalog.get_product(product["id"])["stock"] == 7

    def test_stock_returned_when_restocking_enabled(self, catalog, carts, orders, users, notifier, owner, product):
        workflow = OrderWorkflow(catalog, carts, orders, users, notifier=notifier, restock_on_cancel=True)
        carts.add_item(owner["id"], product["id"], 4)
        order = workflow.place_order(owner["id"], "1 Main St")
        assert catalog.get_product(product["id"])["stock"] == 6

        workflow.cancel_order(order["id"], owner["id"])

        assert catalog.get_product(product["id"])["stock"] == 10

    def test_core_fields_untouched(self, workflow, order, owner):
        cancelled = workflow.cancel_order(order["id"], owner["id"])
        for field in ("items", "total_amount", "address", "payment_method", "user_id"):
            assert cancelled[field] == order[field]


class TestUpdateOrderStatus:
    def test_walks_the_lifecycle(self, workflow, order):
        for status in (OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED):
            updated = workflow.update_order_status(order["id"], status)
            assert updated["status"] == status.value

    def test_illegal_transition_rejected(self, workflow, orders, order):
        with pytest.raises(InvalidStateError) as exc_info:
            workflow.update_order_status(order["id"], OrderStatus.DELIVERED)

        assert exc_info.value.current_status == OrderStatus.PENDING.value
        assert orders.get(order["id"])["status"] == OrderStatus.PENDING.value

    def test_force_allows_any_status(self, workflow, order):
        updated = workflow.update_order_status(order["id"], OrderStatus.DELIVERED, force=True)
        assert updated["status"] == OrderStatus.DELIVERED.value

        reopened = workflow.update_order_status(order["id"], OrderStatus.PENDING, force=True)
        assert reopened["status"] == OrderStatus.PENDING.value

    def test_same_status_is_a_no_op(self, workflow, order):
        updated = workflow.update_order_status(order["id"], OrderStatus.PENDING)
        assert updated["status"] == OrderStatus.PENDING.value

    def test_payment_status_only(self, workflow, order):
        updated = workflow.update_order_status(order["id"], payment_status=PaymentStatus.PAID)

        assert updated["payment_status"] == PaymentStatus.PAID.value
        assert updated["status"] == OrderStatus.PENDING.value

    def test_status_and_payment_together(self, workflow, order):
        updated = workflow.update_order_status(order["id"], OrderStatus.PROCESSING, PaymentStatus.PAID)

        assert updated["status"] == OrderStatus.PROCESSING.value
        assert updated["payment_status"] == PaymentStatus.PAID.value

    def test_nothing_to_change_returns_order(self, workflow, order):
        assert workflow.update_order_status(order["id"]) == order

    def test_unknown_order(self, workflow):
        with pytest.raises(NotFoundError):
            workflow.update_order_status("64b7f0c2e4b0a1a2b3c4d5e6", OrderStatus.PROCESSING)

    def test_admin_cancel_restocks_when_enabled(self, catalog, carts, orders, users, notifier, owner, product):
        workflow = OrderWorkflow(catalog, carts, orders, users, notifier=notifier, restock_on_cancel=True)
        carts.add_item(owner["id"], product["id"], 2)
        order = workflow.place_order(owner["id"], "1 Main St")

        workflow.update_order_status(order["id"], OrderStatus.CANCELLED)

        assert catalog.get_product(product["id"])["stock"] == 10


class TestRestockOnCancel:
    @pytest.fixture()
    def restocking(self, catalog, carts, orders, users, notifier):
        return OrderWorkflow(catalog, carts, orders, users, notifier=notifier, restock_on_cancel=True)

    @pytest.fixture()
    def small_order(self, restocking, carts, owner, make_product):
        product = make_product(name="Lamp", price=20, stock=5)
        carts.add_item(owner["id"], product["id"], 2)
        return restocking.place_order(owner["id"], "1 Main St"), product

    def test_reopened_order_is_restocked_once(self, restocking, catalog, orders, owner, small_order):
        order, product = small_order

        restocking.cancel_order(order["id"], owner["id"])
        _force(restocking, order, OrderStatus.PENDING)
        restocking.cancel_order(order["id"], owner["id"])

        assert catalog.get_product(product["id"])["stock"] == 5
        assert orders.get(order["id"])["restocked"] is True

    def test_forced_cancel_after_reopen_is_restocked_once(self, restocking, catalog, owner, small_order):
        order, product = small_order

        restocking.update_order_status(order["id"], OrderStatus.CANCELLED)
        _force(restocking, order, OrderStatus.PROCESSING)
        restocking.update_order_status(order["id"], OrderStatus.CANCELLED)

        assert catalog.get_product(product["id"])["stock"] == 5

    @pytest.mark.parametrize("status", [OrderStatus.SHIPPED, OrderStatus.DELIVERED])
    def test_goods_already_sent_are_not_restocked(self, restocking, catalog, orders, small_order, status):
        order, product = small_order
        _force(restocking, order, status)

        cancelled = _force(restocking, order, OrderStatus.CANCELLED)

        assert cancelled["status"] == OrderStatus.CANCELLED.value
        assert catalog.get_product(product["id"])["stock"] == 3
        assert orders.get(order["id"])["restocked"] is False

    def test_new_orders_are_not_marked_restocked(self, small_order):
        order, _ = small_order
        assert order["restocked"] is False


class TestGetOrder:
    def test_owner_can_read(self, workflow, order, owner):
        assert workflow.get_order(order["id"], owner["id"])["id"] == order["id"]

    def test_admin_can_read(self, workflow, order, make_user):
        admin = make_user(email="admin@example.com", role="admin")
        assert workflow.get_order(order["id"], admin["id"], is_admin=True)["id"] == order["id"]

    def test_stranger_cannot_read(self, workflow, order, make_user):
        stranger = make_user(email="stranger@example.com")
        with pytest.raises(UnauthorizedError):
            workflow.get_order(order["id"], stranger["id"])
