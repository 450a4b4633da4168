"""
Order placement and lifecycle.

Checkout turns a user's cart into an order: every line is checked against
live stock before anything is written, stock is then taken with atomic
conditional decrements, the order is stored with the prices captured at
that moment, the cart is emptied and a confirmation email is queued.
"""
from typing import Any, Dict, List, Optional, Protocol

import structlog

from errors import (
    EmptyCartError,
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    NotificationError,
    ProductNotFoundError,
    UnauthorizedError,
    ValidationError,
)
from invoice import invoice_subject, render_invoice_html
from schemas import (
    CANCELLABLE_STATUSES,
    DEFAULT_PAYMENT_METHOD,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
)
from stores import CartStore, CatalogStore, OrderStore, UserStore

logger = structlog.get_logger(__name__)


class Notifier(Protocol):
    def send(self, to: str, subject: str, html: str) -> None: ...


class OrderWorkflow:
    def __init__(
        self,
        catalog: CatalogStore,
        carts: CartStore,
        orders: OrderStore,
        users: UserStore,
        notifier: Optional[Notifier] = None,
        restock_on_cancel: bool = False,
    ):
        self.catalog = catalog
        self.carts = carts
        self.orders = orders
        self.users = users
        self.notifier = notifier
        self.restock_on_cancel = restock_on_cancel

    # -----------------
    # Checkout
    # -----------------
    def place_order(self, user_id: str, address: Optional[str], payment_method: Optional[str] = None) -> Dict[str, Any]:
        address = (address or "").strip()
        if not address:
            raise ValidationError("Delivery address is required")
        payment_method = (payment_method or "").strip() or DEFAULT_PAYMENT_METHOD

        lines = self.carts.get_cart(user_id)
        if not lines:
            raise EmptyCartError()

        items = self._price_lines(lines)
        total = round(sum(item.price * item.quantity for item in items), 2)

        self._reserve(items)
        try:
            order = self.orders.create(
                Order(
                    user_id=user_id,
                    items=items,
                    total_amount=total,
                    address=address,
                    payment_method=payment_method,
                    status=OrderStatus.PENDING,
                    payment_status=PaymentStatus.NOT_PAID,
                )
            )
        except Exception:
            logger.exception("Order insert failed, releasing reserved stock", user_id=user_id)
            self._release(items)
            raise

        self.carts.clear(user_id)
        logger.info(
            "Order placed",
            order_id=order["id"],
            user_id=user_id,
            total_amount=total,
            item_count=len(items),
        )

        self._send_confirmation(order, user_id)
        return order

    def _price_lines(self, lines: List[Dict[str, Any]]) -> List[OrderItem]:
        """Check every cart line against the catalog and capture its price."""
        items = []
        for line in lines:
            product = self.catalog.get_product(line["product_id"])
            if product is None:
                raise ProductNotFoundError(line["product_id"])
            if line["quantity"] > int(product.get("stock", 0)):
                raise InsufficientStockError(product["id"], product.get("name"))
            items.append(
                OrderItem(
                    product_id=product["id"],
                    name=product.get("name", ""),
                    quantity=line["quantity"],
                    price=float(product["price"]),
                )
            )
        return items

    def _reserve(self, items: List[OrderItem]) -> None:
        reserved: List[OrderItem] = []
        for item in items:
            if not self.catalog.decrement_stock(item.product_id, item.quantity):
                # Another checkout took the stock after validation.
                logger.warning(
                    "Stock reservation lost",
                    product_id=item.product_id,
                    quantity=item.quantity,
                )
                self._release(reserved)
                raise InsufficientStockError(item.product_id, item.name)
            reserved.append(item)

    def _release(self, items: List[OrderItem]) -> None:
        for item in items:
            self.catalog.restock(item.product_id, item.quantity)

    def _send_confirmation(self, order: Dict[str, Any], user_id: str) -> None:
        # The order is committed at this point; nothing here may fail checkout.
        if self.notifier is None:
            return
        try:
            user = self.users.get(user_id) or {}
            self.notifier.send(
                user.get("email", ""),
                invoice_subject(order),
                render_invoice_html(order, user),
            )
        except NotificationError as exc:
            logger.warning("Order confirmation not sent", order_id=order["id"], error=exc.message)
        except Exception:
            logger.exception("Order confirmation failed", order_id=order["id"], user_id=user_id)

    # -----------------
    # Lifecycle
    # -----------------
    def get_order(self, order_id: str, user_id: str, is_admin: bool = False) -> Dict[str, Any]:
        order = self.orders.get(order_id)
        if order is None:
            raise NotFoundError("Order not found")
        if order["user_id"] != user_id and not is_admin:
            raise UnauthorizedError()
        return order

    def cancel_order(self, order_id: str, user_id: str) -> Dict[str, Any]:
        order = self.orders.get(order_id)
        if order is None:
            raise NotFoundError("Order not found")
        if order["user_id"] != user_id:
            raise UnauthorizedError()

        current = OrderStatus(order["status"])
        if current not in CANCELLABLE_STATUSES:
            raise InvalidStateError(current.value, f"Order cannot be cancelled while {current.value}")

        updated = self.orders.update(
            order_id,
            {"status": OrderStatus.CANCELLED.value},
            expected_statuses=list(CANCELLABLE_STATUSES),
        )
        if updated is None:
            # Status moved on between the read and the write.
            latest = self.orders.get(order_id) or order
            raise InvalidStateError(latest["status"], f"Order cannot be cancelled while {latest['status']}")

        logger.info("Order cancelled", order_id=order_id, user_id=user_id, previous_status=current.value)
        if self.restock_on_cancel:
            self._restock_order(updated)
        return updated

    def update_order_status(
        self,
        order_id: str,
        status: Optional[OrderStatus] = None,
        payment_status: Optional[PaymentStatus] = None,
        force: bool = False,
    ) -> Dict[str, Any]:
        """Admin update of status and/or payment status.

        Status changes follow ORDER_TRANSITIONS unless `force` is set, which
        lets an admin assign any status directly.
        """
        order = self.orders.get(order_id)
        if order is None:
            raise NotFoundError("Order not found")

        current = OrderStatus(order["status"])
        fields: Dict[str, Any] = {}
        if status is not None and status != current:
            if not force and not current.can_transition_to(status):
                raise InvalidStateError(
                    current.value,
                    f"Cannot change order status from {current.value} to {status.value}",
                )
            fields["status"] = status.value
        if payment_status is not None:
            fields["payment_status"] = payment_status.value

        if not fields:
            return order

        updated = self.orders.update(order_id, fields, expected_statuses=[current])
        if updated is None:
            latest = self.orders.get(order_id) or order
            raise InvalidStateError(latest["status"], "Order was modified concurrently, retry the update")

        logger.info(
            "Order updated",
            order_id=order_id,
            previous_status=current.value,
            status=updated["status"],
            payment_status=updated["payment_status"],
            forced=force,
        )
        if (
            self.restock_on_cancel
            and fields.get("status") == OrderStatus.CANCELLED.value
            and current in CANCELLABLE_STATUSES
        ):
            self._restock_order(updated)
        return updated

    def _restock_order(self, order: Dict[str, Any]) -> None:
        # Forced reopen keeps the flag, so a second cancel returns nothing.
        if not self.orders.claim_restock(order["id"]):
            logger.info("Order already restocked", order_id=order["id"])
            return
        for item in order["items"]:
            if not self.catalog.restock(item["product_id"], int(item["quantity"])):
                logger.warning("Restock skipped, product no longer exists", order_id=order["id"], product_id=item["product_id"])
