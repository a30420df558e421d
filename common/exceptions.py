"""
AgriMart - Custom Exceptions
=============================
Business-level exceptions that can be caught and converted to HTTP responses.
Each carries a stable `code` for API clients; coupon errors also carry the
engine's rejection `reason`.
"""

from typing import Optional


class AgriMartError(Exception):
    """Base exception for all business logic errors."""
    code = "error"
    status_code = 400

    def __init__(self, message: str = "Something went wrong.", reason: Optional[str] = None):
        self.message = message
        self.reason = reason
        super().__init__(self.message)

    def to_dict(self) -> dict:
        data = {"error": self.code, "detail": self.message}
        if self.reason:
            data["reason"] = self.reason
        return data


class NotFoundError(AgriMartError):
    """Raised when a requested resource doesn't exist."""
    code = "not_found"
    status_code = 404


class ItemNotFoundError(NotFoundError):
    """Raised when a product is not in the cart (or saved list)."""
    code = "item_not_found"


class CouponNotFoundError(NotFoundError):
    code = "coupon_not_found"

    def __init__(self, code: str = ""):
        super().__init__(f"Coupon {code} does not exist" if code else "Coupon does not exist")


class ValidationError(AgriMartError):
    """Bad input: quantity, malformed coupon code, invalid dates."""
    code = "validation_error"
    status_code = 422


class CouponInvalidError(AgriMartError):
    """Coupon is inactive, outside its validity window or used up."""
    code = "coupon_invalid"


class CouponNotEligibleError(AgriMartError):
    """Coupon is valid but this user/cart fails an eligibility rule."""
    code = "coupon_not_eligible"


class CouponNotApplicableError(AgriMartError):
    """Coupon passed every check but yields no discount for this cart."""
    code = "coupon_not_applicable"


class InsufficientStockError(AgriMartError):
    """Raised when product stock is not enough."""
    code = "insufficient_stock"
    status_code = 409

    def __init__(self, product_name: str = "", requested: int = 0, available: int = 0):
        if product_name:
            msg = f"Not enough stock for {product_name} (requested {requested}, available {available})"
        else:
            msg = "Not enough stock"
        super().__init__(msg)


class ConcurrencyConflictError(AgriMartError):
    """Concurrent write detected. The caller should retry the whole operation."""
    code = "concurrency_conflict"
    status_code = 409


class InvalidTransitionError(AgriMartError):
    """Order status change not allowed by the lifecycle."""
    code = "invalid_transition"
    status_code = 409
