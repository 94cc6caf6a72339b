# storefront/domain/errors.py
"""
Error taxonomy of the cart / buy-now / order core.

Every error carries a stable ``code`` for UI messaging plus the HTTP status
the routers translate it into. Extra keyword arguments end up in ``context``
and are returned to the caller next to the message.
"""
from typing import Any, Dict


class StorefrontError(Exception):
    code = "STOREFRONT_ERROR"
    status_code = 400

    def __init__(self, message: str, code: str | None = None, **context: Any):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.context}


class InvalidInput(StorefrontError):
    code = "INVALID_INPUT"
    status_code = 400


class NotFound(StorefrontError):
    code = "NOT_FOUND"
    status_code = 404


class InsufficientStock(StorefrontError):
    code = "INSUFFICIENT_STOCK"
    status_code = 409

    def __init__(self, product_id: int, product_name: str, requested: int, available: int):
        super().__init__(
            f'Insufficient stock for "{product_name}". '
            f"Available: {available}, requested: {requested}",
            product_id=product_id,
            product_name=product_name,
            requested=requested,
            available=available,
        )
        self.product_id = product_id


class InvalidTransition(StorefrontError):
    code = "INVALID_TRANSITION"
    status_code = 409

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Order cannot move from {current} to {target}",
            current=current,
            target=target,
        )


class Conflict(StorefrontError):
    code = "CONFLICT"
    status_code = 409


class StorageFailure(StorefrontError):
    code = "STORAGE_FAILURE"
    status_code = 503

    def __init__(self, message: str = "Storage transaction failed", retryable: bool = True):
        super().__init__(message, retryable=retryable)
        self.retryable = retryable


class StaleStockVersion(Exception):
    """Internal: the product row changed between read and compare-and-swap."""

    def __init__(self, product_id: int, product_name: str):
        super().__init__(f"Stock of product {product_id} changed concurrently")
        self.product_id = product_id
        self.product_name = product_name


class DuplicateCartRow(Exception):
    """Internal: a concurrent request inserted the same (owner, product) row first."""

    def __init__(self, product_id: int):
        super().__init__(f"Cart row for product {product_id} already exists")
        self.product_id = product_id
