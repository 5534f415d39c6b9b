"""
In-memory ledger backends

Dictionaries guarded by one ``asyncio.Lock`` per ledger. Every
check-then-write happens under the lock, which makes reserve and debit atomic
within the process. State is lost on restart; meant for development and tests.
"""

import asyncio
import uuid
from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from orderflow.core.exceptions import (
    ConflictError,
    DuplicateOrderError,
    InsufficientBalanceError,
    InsufficientStockError,
    InvalidRequestError,
    NotFoundError,
    ProductNotFoundError,
    UserNotFoundError,
)
from orderflow.core.validation import require_positive_amount, require_positive_quantity, to_decimal
from orderflow.ledgers.base import OrderStore, PaymentLog, StockLedger, WalletLedger
from orderflow.types import Order, PaymentRecord, ProductInfo, UserProfile


class InMemoryStockLedger(StockLedger):
    """In-memory product stock"""

    def __init__(self):
        self._products: dict[str, ProductInfo] = {}
        self._lock = asyncio.Lock()

    async def add_product(
        self, product_id: str, price: Any, stock: int, name: str = ""
    ) -> ProductInfo:
        price = to_decimal(price, "price")
        if price < 0 or stock < 0:
            msg = "Price and stock must not be negative"
            raise InvalidRequestError(msg, details={"product_id": product_id})

        async with self._lock:
            product = ProductInfo(product_id=product_id, price=price, stock=stock, name=name)
            self._products[product_id] = product
            return product

    async def list_products(self) -> list[ProductInfo]:
        async with self._lock:
            return [self._products[key] for key in sorted(self._products)]

    async def get_product(self, product_id: str) -> ProductInfo:
        async with self._lock:
            return self._get(product_id)

    async def reserve(self, product_id: str, quantity: int) -> int:
        require_positive_quantity(quantity)

        async with self._lock:
            product = self._get(product_id)
            if product.stock < quantity:
                raise InsufficientStockError(product_id, quantity, product.stock)
            self._products[product_id] = replace(product, stock=product.stock - quantity)
            return product.stock - quantity

    async def release(self, product_id: str, quantity: int) -> int:
        require_positive_quantity(quantity)

        async with self._lock:
            product = self._get(product_id)
            self._products[product_id] = replace(product, stock=product.stock + quantity)
            return product.stock + quantity

    def _get(self, product_id: str) -> ProductInfo:
        product = self._products.get(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        return product


class InMemoryWalletLedger(WalletLedger):
    """In-memory wallet balances keyed by profile id"""

    def __init__(self):
        self._balances: dict[str, Decimal] = {}
        self._owners: dict[str, str] = {}  # profile_id -> user_id
        self._profiles: dict[str, str] = {}  # user_id -> profile_id
        self._lock = asyncio.Lock()

    async def open_wallet(
        self, user_id: str, balance: Any = 0, profile_id: str | None = None
    ) -> UserProfile:
        balance = to_decimal(balance, "balance")
        if balance < 0:
            msg = "Opening balance must not be negative"
            raise InvalidRequestError(msg, details={"user_id": user_id})
        profile_id = profile_id or str(uuid.uuid4())

        async with self._lock:
            if user_id in self._profiles or profile_id in self._balances:
                msg = f"Wallet already exists for user {user_id}"
                raise ConflictError(msg, details={"user_id": user_id})
            self._profiles[user_id] = profile_id
            self._owners[profile_id] = user_id
            self._balances[profile_id] = balance
            return UserProfile(profile_id=profile_id, user_id=user_id, balance=balance)

    async def resolve_profile(self, user_id: str) -> UserProfile:
        async with self._lock:
            profile_id = self._profiles.get(user_id)
            if profile_id is None:
                raise UserNotFoundError(user_id)
            return UserProfile(
                profile_id=profile_id, user_id=user_id, balance=self._balances[profile_id]
            )

    async def debit(self, profile_id: str, amount: Any) -> Decimal:
        amount = require_positive_amount(amount)

        async with self._lock:
            balance = self._get(profile_id)
            if balance < amount:
                raise InsufficientBalanceError(self._owners[profile_id], amount)
            self._balances[profile_id] = balance - amount
            return balance - amount

    async def credit(self, profile_id: str, amount: Any) -> Decimal:
        amount = require_positive_amount(amount)

        async with self._lock:
            balance = self._get(profile_id) + amount
            self._balances[profile_id] = balance
            return balance

    async def get_balance(self, profile_id: str) -> Decimal:
        async with self._lock:
            return self._get(profile_id)

    def _get(self, profile_id: str) -> Decimal:
        balance = self._balances.get(profile_id)
        if balance is None:
            raise NotFoundError(f"Wallet not found: {profile_id}", item_type="wallet", item_id=profile_id)
        return balance


class InMemoryPaymentLog(PaymentLog):
    """In-memory append-only payment records"""

    def __init__(self):
        self._records: list[PaymentRecord] = []
        self._lock = asyncio.Lock()

    async def append(self, record: PaymentRecord) -> PaymentRecord:
        async with self._lock:
            self._records.append(record)
            return record

    async def list_for_order(self, order_id: str) -> list[PaymentRecord]:
        async with self._lock:
            return [r for r in self._records if r.order_id == order_id]

    async def list_for_user(self, user_id: str) -> list[PaymentRecord]:
        async with self._lock:
            return [r for r in self._records if r.user_id == user_id]


class InMemoryOrderStore(OrderStore):
    """In-memory orders with a unique idempotency key index"""

    def __init__(self):
        self._orders: dict[str, Order] = {}
        self._keys: dict[str, str] = {}  # idempotency_key -> order_id
        self._lock = asyncio.Lock()

    async def save(self, order: Order, idempotency_key: str | None = None) -> Order:
        async with self._lock:
            if idempotency_key is not None and idempotency_key in self._keys:
                raise DuplicateOrderError(idempotency_key, self._keys[idempotency_key])
            if order.order_id in self._orders:
                msg = f"Order already exists: {order.order_id}"
                raise ConflictError(msg, details={"order_id": order.order_id})

            stored = replace(order, created_at=datetime.now(UTC))
            self._orders[stored.order_id] = stored
            if idempotency_key is not None:
                self._keys[idempotency_key] = stored.order_id
            return stored

    async def get(self, order_id: str) -> Order | None:
        async with self._lock:
            return self._orders.get(order_id)

    async def find_by_idempotency_key(self, key: str) -> Order | None:
        async with self._lock:
            order_id = self._keys.get(key)
            return self._orders.get(order_id) if order_id else None

    async def list_for_user(self, user_id: str) -> list[Order]:
        async with self._lock:
            orders = [o for o in self._orders.values() if o.user_id == user_id]
        return sorted(orders, key=lambda o: o.created_at, reverse=True)

    def __len__(self) -> int:
        return len(self._orders)
