"""
Database Schemas for the storefront

Each Pydantic model corresponds to a MongoDB collection (lowercased class name).
Line items are embedded in their cart or order document.
"""
from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

# -----------------------------
# Auth / Users
# -----------------------------
class User(BaseModel):
    name: str = Field(..., min_length=1, max_length=80)
    email: EmailStr
    password_hash: str
    salt: str
    role: Literal["user", "admin"] = "user"
    is_active: bool = True

# -----------------------------
# Catalog
# -----------------------------
class Product(BaseModel):
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    stock: int = Field(0, ge=0)
    category: str = Field(..., min_length=1)
    description: str = ""
    image: Optional[str] = None

# -----------------------------
# Cart
# -----------------------------
class CartLine(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)

class Cart(BaseModel):
    user_id: str
    items: List[CartLine] = []

# -----------------------------
# Orders
# -----------------------------
class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return not ORDER_TRANSITIONS[self]

    def can_transition_to(self, target: "OrderStatus") -> bool:
        return target in ORDER_TRANSITIONS[self]


class PaymentStatus(str, Enum):
    NOT_PAID = "not paid"
    PAID = "paid"
    REFUNDED = "refunded"


ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),  # terminal
    OrderStatus.CANCELLED: frozenset(),  # terminal
}

CANCELLABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PROCESSING})

DEFAULT_PAYMENT_METHOD = "COD"


class OrderItem(BaseModel):
    product_id: str
    name: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)  # unit price at purchase


class Order(BaseModel):
    user_id: str
    items: List[OrderItem] = Field(..., min_length=1)
    total_amount: float = Field(..., ge=0)
    address: str = Field(..., min_length=1)
    payment_method: str = DEFAULT_PAYMENT_METHOD
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.NOT_PAID
    restocked: bool = False  # items returned to stock after cancellation
