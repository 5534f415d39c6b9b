"""
Capability interfaces consumed by the fulfillment coordinator.

Each port is scoped to one resource owner. Implementations raise the generic
taxonomy errors (``NotFoundError``, ``ConflictError``, ``UnavailableError``);
translating them into saga outcomes is the coordinator's job.

In-process implementations live in ``orderflow.ledgers`` and
``orderflow.payments``; remote ones in ``orderflow.clients.http``.
"""

from abc import ABC, abstractmethod
from decimal import Decimal

from orderflow.types import Order, PaymentRecord, ProductInfo, UserProfile


class UserDirectory(ABC):
    """Resolves the wallet-bearing profile of a user"""

    @abstractmethod
    async def resolve_profile(self, user_id: str) -> UserProfile:
        """
        Raises:
            NotFoundError: No profile for this user
        """


class ProductCatalog(ABC):
    """Read-only price and stock lookup"""

    @abstractmethod
    async def get_product(self, product_id: str) -> ProductInfo:
        """
        Raises:
            NotFoundError: Unknown product
        """


class InventoryService(ABC):
    """Atomic stock reservation and release"""

    @abstractmethod
    async def reserve(self, product_id: str, quantity: int) -> int:
        """
        Atomically take ``quantity`` units out of available stock.

        Returns:
            Remaining stock

        Raises:
            NotFoundError: Unknown product
            ConflictError: Stock would go negative
        """

    @abstractmethod
    async def release(self, product_id: str, quantity: int) -> int:
        """
        Put ``quantity`` units back. Always succeeds for a known product.

        Returns:
            Remaining stock

        Raises:
            NotFoundError: Unknown product
        """


class PaymentService(ABC):
    """Wallet charges and refunds, each paired with an audit record"""

    @abstractmethod
    async def charge(
        self, order_id: str, user_id: str, profile_id: str, amount: Decimal
    ) -> PaymentRecord:
        """
        Debit ``amount`` from the wallet, tagged with ``order_id``.

        Raises:
            NotFoundError: Unknown profile
            ConflictError: Balance lower than amount
        """

    @abstractmethod
    async def refund(
        self, order_id: str, user_id: str, profile_id: str, amount: Decimal
    ) -> PaymentRecord:
        """
        Credit ``amount`` back to the wallet.

        Raises:
            NotFoundError: Unknown profile
        """


class OrderRepository(ABC):
    """Persistence of finalized orders"""

    @abstractmethod
    async def save(self, order: Order, idempotency_key: str | None = None) -> Order:
        """
        Persist an order and its lines.

        Returns:
            The stored order with ``created_at`` set

        Raises:
            DuplicateOrderError: ``idempotency_key`` already bound to an order
        """

    @abstractmethod
    async def get(self, order_id: str) -> Order | None:
        """Load an order by id."""

    @abstractmethod
    async def find_by_idempotency_key(self, key: str) -> Order | None:
        """Load the order bound to an idempotency key, if any."""

    @abstractmethod
    async def list_for_user(self, user_id: str) -> list[Order]:
        """Orders of a user, newest first."""
