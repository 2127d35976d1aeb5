# Overview: Domain error taxonomy shared by the order and stock services.

from __future__ import annotations


class StorefrontError(Exception):
    """Base class for business-rule failures raised by the service layer."""


class ValidationError(StorefrontError, ValueError):
    """400-level input problem."""


class NotFoundError(StorefrontError):
    """
    404-level: a referenced warehouse, order or cart does not exist,
    or does not belong to the requesting user.
    """


class ConflictingStateError(StorefrontError):
    """409-level: the order or cart is no longer in an eligible status."""


class InsufficientStockError(StorefrontError):
    """409-level: all reachable warehouses together cannot cover the request."""

    def __init__(self, product_id: int, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock available in nearby warehouses for product {product_id}. "
            f"Requested: {requested}, available: {available}"
        )


_HTTP_STATUS = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConflictingStateError, 409),
    (InsufficientStockError, 409),
)


def http_status_for(exc: StorefrontError) -> int:
    for exc_type, status in _HTTP_STATUS:
        if isinstance(exc, exc_type):
            return status
    return 400
