"""Domain exceptions for the storefront API.

Each error knows the HTTP status it maps to and a short machine-readable
reason, so route handlers can raise and let the app-level handler respond.
"""

from typing import Any, Dict, Iterable, List, Optional


class ShopError(Exception):
    """Base exception for all storefront errors."""

    status_code = 500
    reason = "server_error"

    def __init__(self, message: str = "Server error"):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "message": self.message, "reason": self.reason}


class ValidationError(ShopError):
    """Raised when input is malformed or breaks a schema rule."""

    status_code = 400
    reason = "validation_error"

    def __init__(self, message: str = "Validation error", errors: Optional[List[Dict[str, str]]] = None):
        self.errors = errors or []
        super().__init__(message)

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, errors=[{"field": field, "message": message}])

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        if self.errors:
            body["errors"] = self.errors
        return body


class UnauthenticatedError(ShopError):
    status_code = 401
    reason = "unauthenticated"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class ForbiddenError(ShopError):
    status_code = 403
    reason = "forbidden"

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class NotFoundError(ShopError):
    """Raised when a product, cart line, order or user doesn't exist."""

    status_code = 404
    reason = "not_found"

    def __init__(self, resource: str, resource_id: Optional[str] = None):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} not found")


class DuplicateError(ShopError):
    status_code = 409
    reason = "duplicate"


class InsufficientStockError(ShopError):
    """Raised when requested quantity exceeds what a product has in stock."""

    status_code = 400
    reason = "insufficient_stock"

    def __init__(self, product_name: Optional[str] = None, message: Optional[str] = None):
        self.product_name = product_name
        if message is None:
            message = f'Insufficient stock for "{product_name}"' if product_name else "Insufficient stock"
        super().__init__(message)


class ProductUnavailableError(InsufficientStockError):
    """Raised when a product has been deactivated."""

    reason = "product_unavailable"

    def __init__(self, product_name: Optional[str] = None):
        if product_name:
            message = f'Product "{product_name}" is no longer available'
        else:
            message = "Product is not available"
        super().__init__(product_name, message)


class EmptyCartError(ShopError):
    status_code = 400
    reason = "empty_cart"

    def __init__(self):
        super().__init__("Cart is empty")


class InvalidTransitionError(ShopError):
    """Raised when an order status change is not an edge of the state machine."""

    status_code = 400
    reason = "invalid_transition"

    def __init__(self, current: str, target: str, allowed: Iterable[str] = ()):
        self.current = current
        self.target = target
        self.allowed = list(allowed)
        super().__init__(f"Invalid status transition from {current} to {target}")

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["currentStatus"] = self.current
        body["validTransitions"] = self.allowed
        return body
