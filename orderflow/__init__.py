"""
orderflow - order fulfillment as an orchestrated saga.

Placing an order touches three independently owned resources (wallet
balance, product stock and the order record). The coordinator runs the
steps in a fixed order and, when a step fails, unwinds every completed
side effect in reverse:

    validate -> resolve user -> price items -> charge -> reserve stock -> persist

Quick start (in-process ledgers):
    >>> from orderflow import create_ledgers, build_local_coordinator, OrderItem
    >>>
    >>> async with create_ledgers("memory") as ledgers:
    ...     await ledgers.stock.add_product("sku-1", "9.99", stock=10)
    ...     await ledgers.wallets.open_wallet("alice", balance="50")
    ...     coordinator = build_local_coordinator(ledgers)
    ...     order = await coordinator.create_order("alice", [OrderItem("sku-1", 2)])

Remote services (httpx):
    >>> from orderflow.clients import create_remote_coordinator

HTTP surface (FastAPI):
    >>> from orderflow.integrations.fastapi import create_app
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
from orderflow.core.retry import RetryPolicy
from orderflow.ledgers import Ledgers, build_local_coordinator, create_ledgers
from orderflow.payments import PaymentProcessor
from orderflow.types import (
    Order,
    OrderItem,
    OrderLine,
    PaymentRecord,
    PaymentStatus,
    ProductInfo,
    SagaState,
    UserProfile,
)

__version__ = "1.0.0"

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
    "Ledgers",
    "LoggingListener",
    "MetricsListener",
    "NotFoundError",
    "Order",
    "OrderError",
    "OrderFulfillmentCoordinator",
    "OrderItem",
    "OrderLine",
    "PaymentProcessor",
    "PaymentRecord",
    "PaymentStatus",
    "ProductInfo",
    "ProductNotFoundError",
    "RetryPolicy",
    "SagaState",
    "TransientError",
    "UnavailableError",
    "UserNotFoundError",
    "UserProfile",
    "__version__",
    "configure",
    "get_config",
]
