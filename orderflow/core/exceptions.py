"""
Error taxonomy for order fulfillment.

Every outcome a caller of ``create_order`` can observe is a subclass of
``OrderError`` and carries a stable machine-readable ``code`` plus a finer
``reason``. Resource owners (ledgers, remote clients) raise the generic
classes (``NotFoundError``, ``ConflictError``, ``UnavailableError``); the
coordinator translates them per step into the specific outcome classes.
"""

from typing import Any


class OrderError(Exception):
    """
    Base exception for all fulfillment failures.

    Attributes:
        code: Stable error code (INVALID_REQUEST, NOT_FOUND, CONFLICT, ...)
        reason: Finer-grained reason (user_not_found, insufficient_stock, ...)
        http_status: Status code used by the HTTP surface
    """

    code = "INTERNAL"
    reason = "internal_error"
    http_status = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "reason": self.reason,
            "message": self.message,
            "details": {k: _jsonable(v) for k, v in self.details.items()},
        }


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, bool | int | float | str):
        return value
    return str(value)


class InvalidRequestError(OrderError):
    """Malformed input; no remote call was made."""

    code = "INVALID_REQUEST"
    reason = "invalid_request"
    http_status = 400


class NotFoundError(OrderError):
    """
    Requested resource does not exist.

    Raised by resource owners when a product, profile or order is missing.
    """

    code = "NOT_FOUND"
    reason = "not_found"
    http_status = 404

    def __init__(
        self,
        message: str = "Item not found",
        item_type: str | None = None,
        item_id: str | None = None,
        **details,
    ):
        super().__init__(message, details={"item_type": item_type, "item_id": item_id, **details})
        self.item_type = item_type
        self.item_id = item_id


class UserNotFoundError(NotFoundError):
    reason = "user_not_found"

    def __init__(self, user_id: str, message: str | None = None):
        super().__init__(message or f"User not found: {user_id}", item_type="user", item_id=user_id)
        self.user_id = user_id


class ProductNotFoundError(NotFoundError):
    reason = "product_not_found"

    def __init__(self, product_id: str, message: str | None = None):
        super().__init__(
            message or f"Product not found: {product_id}", item_type="product", item_id=product_id
        )
        self.product_id = product_id


class ConflictError(OrderError):
    """
    A business rule rejected the operation.

    Raised when stock or balance is insufficient; not a bug.
    """

    code = "CONFLICT"
    reason = "conflict"
    http_status = 409


class InsufficientStockError(ConflictError):
    reason = "insufficient_stock"

    def __init__(self, product_id: str, requested: int, available: int | None = None):
        super().__init__(
            f"Insufficient stock for product {product_id}",
            details={"product_id": product_id, "requested": requested, "available": available},
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class InsufficientBalanceError(ConflictError):
    reason = "insufficient_balance"

    def __init__(self, user_id: str, amount: Any, message: str | None = None):
        super().__init__(
            message or "Payment failed - insufficient balance",
            details={"user_id": user_id, "amount": amount},
        )
        self.user_id = user_id
        self.amount = amount


class DuplicateOrderError(ConflictError):
    """An idempotency key is already bound to another order."""

    reason = "duplicate_order"

    def __init__(self, idempotency_key: str, order_id: str | None = None):
        super().__init__(
            f"Idempotency key already used: {idempotency_key}",
            details={"idempotency_key": idempotency_key, "order_id": order_id},
        )
        self.idempotency_key = idempotency_key
        self.order_id = order_id


class UnavailableError(OrderError):
    """Downstream transport failure after retries were exhausted."""

    code = "UNAVAILABLE"
    reason = "unavailable"
    http_status = 503


class TransientError(UnavailableError):
    """
    A single transport failure that may succeed when retried.

    Raised by transports (connection errors, timeouts, 408/429/5xx); the retry
    policy consumes these and raises ``UnavailableError`` once exhausted.
    """

    reason = "transient"


class DownstreamUnavailableError(UnavailableError):
    reason = "downstream_unavailable"

    def __init__(self, operation: str, message: str | None = None, **details):
        super().__init__(
            message or f"Downstream unavailable during {operation}",
            details={"operation": operation, **details},
        )
        self.operation = operation


class InternalError(OrderError):
    """Persistence or unexpected failure."""

    code = "INTERNAL"
    reason = "internal_error"
    http_status = 500
