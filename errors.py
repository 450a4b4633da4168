"""
Error taxonomy

Every error the API reports derives from ShopError and carries the HTTP
status it is rendered with. NotificationError is the exception: it never
reaches a client.
"""
from typing import Optional


class ShopError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ShopError):
    status_code = 400


class EmptyCartError(ValidationError):
    def __init__(self, message: str = "Your cart is empty"):
        super().__init__(message)


class AuthenticationError(ShopError):
    status_code = 401


class UnauthorizedError(ShopError):
    status_code = 403

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class NotFoundError(ShopError):
    status_code = 404


class ProductNotFoundError(NotFoundError):
    def __init__(self, product_id: str, message: Optional[str] = None):
        super().__init__(message or f"Product {product_id} not found")
        self.product_id = product_id


class InsufficientStockError(ShopError):
    status_code = 409

    def __init__(self, product_id: str, product_name: Optional[str] = None):
        super().__init__(f"Insufficient stock for {product_name or product_id}")
        self.product_id = product_id
        self.product_name = product_name


class InvalidStateError(ShopError):
    status_code = 409

    def __init__(self, current_status: str, message: Optional[str] = None):
        super().__init__(message or f"Order cannot be changed while {current_status}")
        self.current_status = current_status


class NotificationError(ShopError):
    """Raised when a confirmation cannot be handed to the mail provider."""
