"""
Fulfillment core: saga coordinator, compensation, retry, ports and errors.
"""

from orderflow.core.compensation import CompensationFailure, CompensationStack
from orderflow.core.config import FulfillmentConfig, configure, get_config
from orderflow.core.coordinator import FulfillmentSaga, OrderFulfillmentCoordinator
from orderflow.core.exceptions import (
    ConflictError,
    DownstreamUnavailableError,
    DuplicateOrderError,
    InsufficientBalanceError,
    InsufficientStockError,
    InternalError,
    InvalidRequestError,
    NotFoundError,
    OrderError,
    ProductNotFoundError,
    TransientError,
    UnavailableError,
    UserNotFoundError,
)
from orderflow.core.listeners import FulfillmentListener, LoggingListener, MetricsListener
from orderflow.core.ports import (
    InventoryService,
    OrderRepository,
    PaymentService,
    ProductCatalog,
    UserDirectory,
)
from orderflow.core.retry import RetryPolicy

__all__ = [
    "CompensationFailure",
    "CompensationStack",
    "ConflictError",
    "DownstreamUnavailableError",
    "DuplicateOrderError",
    "FulfillmentConfig",
    "FulfillmentListener",
    "FulfillmentSaga",
    "InsufficientBalanceError",
    "InsufficientStockError",
    "InternalError",
    "InvalidRequestError",
    "InventoryService",
    "LoggingListener",
    "MetricsListener",
    "NotFoundError",
    "OrderError",
    "OrderFulfillmentCoordinator",
    "OrderRepository",
    "PaymentService",
    "ProductCatalog",
    "ProductNotFoundError",
    "RetryPolicy",
    "TransientError",
    "UnavailableError",
    "UserDirectory",
    "UserNotFoundError",
    "configure",
    "get_config",
]
