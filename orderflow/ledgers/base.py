"""
Ledger interfaces.

A ledger is the single owner of one balance-like invariant and enforces it
atomically for every mutation:

- ``StockLedger``: available quantity per product never goes negative
- ``WalletLedger``: balance per profile never goes negative
- ``PaymentLog``: append-only audit trail of charges and refunds
- ``OrderStore``: finalized orders, at most one per idempotency key

Backends live in ``orderflow.ledgers.memory`` and ``orderflow.ledgers.sqlite``.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any

from orderflow.core.ports import InventoryService, OrderRepository, ProductCatalog, UserDirectory
from orderflow.types import PaymentRecord, ProductInfo, UserProfile


class Ledger:
    """Lifecycle shared by every ledger backend; no-ops unless overridden."""

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class StockLedger(Ledger, ProductCatalog, InventoryService):
    """
    Product stock owner.

    ``reserve`` must be atomic with respect to concurrent reservations of the
    same product: two reservations for the last unit never both succeed.
    ``release`` is a compensating add; it does not check that a matching
    reservation exists.
    """

    @abstractmethod
    async def add_product(
        self, product_id: str, price: Any, stock: int, name: str = ""
    ) -> ProductInfo:
        """
        Create a product or replace its price and stock.

        Raises:
            InvalidRequestError: Negative price or stock
        """

    @abstractmethod
    async def list_products(self) -> list[ProductInfo]:
        """All products ordered by id."""


class WalletLedger(Ledger, UserDirectory):
    """
    Wallet balance owner.

    ``debit`` fails rather than drive a balance negative and is atomic per
    profile. Payment records are written by the caller, not by the ledger.
    """

    @abstractmethod
    async def open_wallet(
        self, user_id: str, balance: Any = 0, profile_id: str | None = None
    ) -> UserProfile:
        """
        Create the wallet-bearing profile of a user.

        Raises:
            ConflictError: The user already has a wallet
            InvalidRequestError: Negative opening balance
        """

    @abstractmethod
    async def debit(self, profile_id: str, amount: Any) -> Decimal:
        """
        Returns:
            The new balance

        Raises:
            InvalidRequestError: amount <= 0
            NotFoundError: Unknown profile
            InsufficientBalanceError: balance < amount
        """

    @abstractmethod
    async def credit(self, profile_id: str, amount: Any) -> Decimal:
        """
        Returns:
            The new balance

        Raises:
            InvalidRequestError: amount <= 0
            NotFoundError: Unknown profile
        """

    @abstractmethod
    async def get_balance(self, profile_id: str) -> Decimal:
        """
        Raises:
            NotFoundError: Unknown profile
        """


class PaymentLog(Ledger, ABC):
    """Append-only store of payment records"""

    @abstractmethod
    async def append(self, record: PaymentRecord) -> PaymentRecord:
        pass

    @abstractmethod
    async def list_for_order(self, order_id: str) -> list[PaymentRecord]:
        """Records of an order in append order."""

    @abstractmethod
    async def list_for_user(self, user_id: str) -> list[PaymentRecord]:
        """Records of a user in append order."""


class OrderStore(Ledger, OrderRepository):
    """Finalized orders; ``save`` assigns ``created_at``."""
