"""
Type definitions for order fulfillment: enums and immutable dataclasses.

Money is carried as ``Decimal`` everywhere; identifiers are plain strings.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum


class SagaState(Enum):
    """
    In-process state of a single fulfillment saga.

    These states live only inside the running saga; none of them is ever
    persisted.
    """

    VALIDATING = "validating"
    RESOLVING_USER = "resolving_user"
    PRICING_ITEMS = "pricing_items"
    PROCESSING_PAYMENT = "processing_payment"
    RESERVING_STOCK = "reserving_stock"
    PERSISTING = "persisting"
    COMPENSATING = "compensating"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentStatus(Enum):
    """Status of an appended payment record"""

    PAID = "Paid"
    REFUNDED = "Refunded"
    FAILED = "Failed"


@dataclass(frozen=True)
class OrderItem:
    """A requested (product, quantity) pair as supplied by the caller"""

    product_id: str
    quantity: int


@dataclass(frozen=True)
class OrderLine:
    """A line of a persisted order, priced at pricing time."""

    product_id: str
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class Order:
    """
    A finalized order.

    Created exactly once at the end of a successful saga and never mutated
    afterwards. ``created_at`` is assigned by the order store.
    """

    order_id: str
    user_id: str
    total: Decimal
    lines: tuple[OrderLine, ...] = ()
    created_at: datetime | None = None

    @property
    def item_count(self) -> int:
        return len(self.lines)


@dataclass(frozen=True)
class UserProfile:
    """Wallet-bearing profile resolved from a user id"""

    profile_id: str
    user_id: str
    balance: Decimal


@dataclass(frozen=True)
class ProductInfo:
    """Current price and available stock of a product"""

    product_id: str
    price: Decimal
    stock: int
    name: str = ""


@dataclass(frozen=True)
class PaymentRecord:
    """
    Append-only audit entry for one payment attempt or refund.

    ``amount`` is signed: positive for charges, negative for refunds.
    """

    payment_id: str
    order_id: str
    user_id: str
    amount: Decimal
    status: PaymentStatus
    created_at: datetime
