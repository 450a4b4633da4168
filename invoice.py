"""Order confirmation (invoice) email rendering."""
from html import escape
from typing import Any, Dict

CURRENCY = "₹"


def short_order_id(order: Dict[str, Any]) -> str:
    return str(order["id"])[-6:]


def invoice_subject(order: Dict[str, Any]) -> str:
    return f"Your Order Invoice #{short_order_id(order)}"


def _money(amount: float) -> str:
    return f"{CURRENCY}{float(amount):.2f}"


def render_invoice_html(order: Dict[str, Any], user: Dict[str, Any]) -> str:
    rows = "".join(
        "<li>{name}: {qty} × {price} = {line}</li>".format(
            name=escape(str(item.get("name") or item["product_id"])),
            qty=int(item["quantity"]),
            price=_money(item["price"]),
            line=_money(float(item["price"]) * int(item["quantity"])),
        )
        for item in order["items"]
    )
    address = escape(order["address"]).replace("\n", "<br>")
    return f"""
    <h2>Order Invoice #{short_order_id(order)}</h2>

    <p><strong>Name:</strong> {escape(user.get("name") or "")}</p>
    <p><strong>Email:</strong> {escape(user.get("email") or "")}</p>
    <p><strong>Total:</strong> {_money(order["total_amount"])}</p>
    <p><strong>Payment:</strong> {escape(order["payment_method"])}</p>
    <p><strong>Address:</strong><br>{address}</p>

    <h3>Items:</h3>
    <ul>{rows}</ul>

    <p>Thank you for shopping with us!</p>
    """
