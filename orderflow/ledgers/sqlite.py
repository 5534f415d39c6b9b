"""
SQLite ledger backends.

Embedded, file-backed ledgers with async access via aiosqlite. Each resource
owner keeps its own database file, mirroring the one-database-per-service
layout of the marketplace:

- ``products.db``: stock reservation by compare-and-swap
- ``users.db``: wallet balances, mutated inside ``BEGIN IMMEDIATE``
- ``payments.db``: append-only payment records
- ``orders.db``: orders and order lines, unique idempotency key

Usage:
    >>> stock = SQLiteStockLedger("./data/products.db")
    >>> async with stock:
    ...     await stock.add_product("p1", "19.99", 10)
    ...     await stock.reserve("p1", 3)
    7
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import aiosqlite

from orderflow.core.exceptions import (
    ConflictError,
    DuplicateOrderError,
    InsufficientBalanceError,
    InsufficientStockError,
    InvalidRequestError,
    NotFoundError,
    ProductNotFoundError,
    UnavailableError,
    UserNotFoundError,
)
from orderflow.core.validation import require_positive_amount, require_positive_quantity, to_decimal
from orderflow.ledgers.base import OrderStore, PaymentLog, StockLedger, WalletLedger
from orderflow.types import Order, OrderLine, PaymentRecord, PaymentStatus, ProductInfo, UserProfile

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(UTC).isoformat()


class SQLiteLedger:
    """
    Connection and schema handling shared by the SQLite ledgers.

    One connection per ledger; writes are serialized by an ``asyncio.Lock`` so
    that concurrent coroutines never share an open transaction.
    """

    SCHEMA = ""

    def __init__(self, db_path: str = ":memory:"):
        """
        Args:
            db_path: Path to the database file, or ":memory:"
        """
        self.db_path = str(db_path)
        self._conn: aiosqlite.Connection | None = None
        self._initialized = False
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        await self._get_connection()

    async def _get_connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            self._conn = await aiosqlite.connect(self.db_path)
            self._conn.row_factory = aiosqlite.Row

        if not self._initialized:
            await self._conn.executescript(self.SCHEMA)
            await self._conn.commit()
            self._initialized = True

        return self._conn

    @asynccontextmanager
    async def _transaction(
        self, operation: str, immediate: bool = False
    ) -> AsyncIterator[aiosqlite.Connection]:
        """
        Run one write under the ledger lock; commit on success, roll back otherwise.

        Integrity violations and taxonomy errors propagate unchanged so callers
        can translate them. Any other SQLite failure (a locked database, say)
        becomes ``UnavailableError``. Cancellation also rolls back, so no
        half-written rows are left for the next commit on this connection.
        """
        conn = await self._get_connection()
        async with self._write_lock:
            try:
                if immediate:
                    await conn.execute("BEGIN IMMEDIATE")
                yield conn
                await conn.commit()
            except aiosqlite.IntegrityError:
                await conn.rollback()
                raise
            except aiosqlite.Error as e:
                await conn.rollback()
                logger.error(f"SQLite {operation} failed on {self.db_path}: {e}")
                msg = f"Storage unavailable during {operation}"
                raise UnavailableError(
                    msg, details={"operation": operation, "error": str(e)}
                ) from e
            except BaseException:
                await conn.rollback()
                raise

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
            self._initialized = False


class SQLiteStockLedger(SQLiteLedger, StockLedger):
    """
    Product stock in SQLite.

    Reservation is one conditional UPDATE, so it is atomic even across
    processes sharing the database file.
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS products (
            product_id TEXT PRIMARY KEY,
            name TEXT NOT NULL DEFAULT '',
            price TEXT NOT NULL,
            stock INTEGER NOT NULL CHECK (stock >= 0),
            updated_at TEXT NOT NULL
        );
    """

    async def add_product(
        self, product_id: str, price: Any, stock: int, name: str = ""
    ) -> ProductInfo:
        price = to_decimal(price, "price")
        if price < 0 or stock < 0:
            msg = "Price and stock must not be negative"
            raise InvalidRequestError(msg, details={"product_id": product_id})

        async with self._transaction("add_product") as conn:
            await conn.execute(
                """
                INSERT INTO products (product_id, name, price, stock, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(product_id) DO UPDATE SET
                    name = excluded.name,
                    price = excluded.price,
                    stock = excluded.stock,
                    updated_at = excluded.updated_at
                """,
                (product_id, name, str(price), stock, _now()),
            )
        return ProductInfo(product_id=product_id, price=price, stock=stock, name=name)

    async def list_products(self) -> list[ProductInfo]:
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT * FROM products ORDER BY product_id")
        return [self._row_to_product(row) for row in await cursor.fetchall()]

    async def get_product(self, product_id: str) -> ProductInfo:
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT * FROM products WHERE product_id = ?", (product_id,))
        row = await cursor.fetchone()
        if row is None:
            raise ProductNotFoundError(product_id)
        return self._row_to_product(row)

    async def reserve(self, product_id: str, quantity: int) -> int:
        require_positive_quantity(quantity)

        async with self._transaction("reserve_stock") as conn:
            cursor = await conn.execute(
                """
                UPDATE products SET stock = stock - ?, updated_at = ?
                WHERE product_id = ? AND stock >= ?
                """,
                (quantity, _now(), product_id, quantity),
            )
            updated = cursor.rowcount
            stock = await self._current_stock(conn, product_id)

        if updated == 0:
            if stock is None:
                raise ProductNotFoundError(product_id)
            raise InsufficientStockError(product_id, quantity, stock)
        return stock

    async def release(self, product_id: str, quantity: int) -> int:
        require_positive_quantity(quantity)

        async with self._transaction("release_stock") as conn:
            cursor = await conn.execute(
                "UPDATE products SET stock = stock + ?, updated_at = ? WHERE product_id = ?",
                (quantity, _now(), product_id),
            )
            updated = cursor.rowcount
            stock = await self._current_stock(conn, product_id)

        if updated == 0 or stock is None:
            raise ProductNotFoundError(product_id)
        return stock

    async def _current_stock(self, conn: aiosqlite.Connection, product_id: str) -> int | None:
        cursor = await conn.execute("SELECT stock FROM products WHERE product_id = ?", (product_id,))
        row = await cursor.fetchone()
        return None if row is None else row["stock"]

    def _row_to_product(self, row: aiosqlite.Row) -> ProductInfo:
        return ProductInfo(
            product_id=row["product_id"],
            price=Decimal(row["price"]),
            stock=row["stock"],
            name=row["name"],
        )


class SQLiteWalletLedger(SQLiteLedger, WalletLedger):
    """
    Wallet balances in SQLite.

    Balances are stored as decimal text and mutated with Python ``Decimal``
    arithmetic inside ``BEGIN IMMEDIATE`` transactions, which take the write
    lock up front so a concurrent debit cannot read a stale balance.
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS wallets (
            profile_id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL UNIQUE,
            balance TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
    """

    async def open_wallet(
        self, user_id: str, balance: Any = 0, profile_id: str | None = None
    ) -> UserProfile:
        balance = to_decimal(balance, "balance")
        if balance < 0:
            msg = "Opening balance must not be negative"
            raise InvalidRequestError(msg, details={"user_id": user_id})
        profile_id = profile_id or str(uuid.uuid4())

        try:
            async with self._transaction("open_wallet") as conn:
                await conn.execute(
                    "INSERT INTO wallets (profile_id, user_id, balance, updated_at) VALUES (?, ?, ?, ?)",
                    (profile_id, user_id, str(balance), _now()),
                )
        except aiosqlite.IntegrityError as e:
            msg = f"Wallet already exists for user {user_id}"
            raise ConflictError(msg, details={"user_id": user_id}) from e

        return UserProfile(profile_id=profile_id, user_id=user_id, balance=balance)

    async def resolve_profile(self, user_id: str) -> UserProfile:
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT * FROM wallets WHERE user_id = ?", (user_id,))
        row = await cursor.fetchone()
        if row is None:
            raise UserNotFoundError(user_id)
        return UserProfile(
            profile_id=row["profile_id"], user_id=row["user_id"], balance=Decimal(row["balance"])
        )

    async def debit(self, profile_id: str, amount: Any) -> Decimal:
        amount = require_positive_amount(amount)
        return await self._apply(profile_id, -amount)

    async def credit(self, profile_id: str, amount: Any) -> Decimal:
        amount = require_positive_amount(amount)
        return await self._apply(profile_id, amount)

    async def get_balance(self, profile_id: str) -> Decimal:
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT balance FROM wallets WHERE profile_id = ?", (profile_id,))
        row = await cursor.fetchone()
        if row is None:
            raise self._not_found(profile_id)
        return Decimal(row["balance"])

    async def _apply(self, profile_id: str, delta: Decimal) -> Decimal:
        operation = "debit_wallet" if delta < 0 else "credit_wallet"

        async with self._transaction(operation, immediate=True) as conn:
            cursor = await conn.execute(
                "SELECT user_id, balance FROM wallets WHERE profile_id = ?", (profile_id,)
            )
            row = await cursor.fetchone()
            if row is None:
                raise self._not_found(profile_id)

            balance = Decimal(row["balance"]) + delta
            if balance < 0:
                raise InsufficientBalanceError(row["user_id"], -delta)

            await conn.execute(
                "UPDATE wallets SET balance = ?, updated_at = ? WHERE profile_id = ?",
                (str(balance), _now(), profile_id),
            )

        return balance

    @staticmethod
    def _not_found(profile_id: str) -> NotFoundError:
        return NotFoundError(f"Wallet not found: {profile_id}", item_type="wallet", item_id=profile_id)


class SQLitePaymentLog(SQLiteLedger, PaymentLog):
    """Append-only payment records in SQLite"""

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS payments (
            payment_id TEXT PRIMARY KEY,
            order_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            amount TEXT NOT NULL,
            status TEXT NOT NULL,
            created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_payments_order_id ON payments(order_id);
        CREATE INDEX IF NOT EXISTS idx_payments_user_id ON payments(user_id);
    """

    async def append(self, record: PaymentRecord) -> PaymentRecord:
        async with self._transaction("record_payment") as conn:
            await conn.execute(
                """
                INSERT INTO payments (payment_id, order_id, user_id, amount, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    record.payment_id,
                    record.order_id,
                    record.user_id,
                    str(record.amount),
                    record.status.value,
                    record.created_at.isoformat(),
                ),
            )
        return record

    async def list_for_order(self, order_id: str) -> list[PaymentRecord]:
        return await self._select("order_id", order_id)

    async def list_for_user(self, user_id: str) -> list[PaymentRecord]:
        return await self._select("user_id", user_id)

    async def _select(self, column: str, value: str) -> list[PaymentRecord]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            f"SELECT * FROM payments WHERE {column} = ? ORDER BY rowid",
            (value,),
        )
        return [
            PaymentRecord(
                payment_id=row["payment_id"],
                order_id=row["order_id"],
                user_id=row["user_id"],
                amount=Decimal(row["amount"]),
                status=PaymentStatus(row["status"]),
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in await cursor.fetchall()
        ]


class SQLiteOrderStore(SQLiteLedger, OrderStore):
    """
    Orders and their lines in SQLite.

    The unique index on ``idempotency_key`` makes a second order for the same
    key fail with ``DuplicateOrderError``; rows without a key are unconstrained.
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS orders (
            order_id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            total TEXT NOT NULL,
            idempotency_key TEXT,
            created_at TEXT NOT NULL
        );

        CREATE UNIQUE INDEX IF NOT EXISTS idx_orders_idempotency_key ON orders(idempotency_key);
        CREATE INDEX IF NOT EXISTS idx_orders_user_id ON orders(user_id);

        CREATE TABLE IF NOT EXISTS order_lines (
            order_id TEXT NOT NULL REFERENCES orders(order_id),
            line_no INTEGER NOT NULL,
            product_id TEXT NOT NULL,
            quantity INTEGER NOT NULL CHECK (quantity >= 1),
            unit_price TEXT NOT NULL,
            PRIMARY KEY (order_id, line_no)
        );
    """

    async def save(self, order: Order, idempotency_key: str | None = None) -> Order:
        created_at = datetime.now(UTC)

        try:
            async with self._transaction("persist_order") as conn:
                await conn.execute(
                    """
                    INSERT INTO orders (order_id, user_id, total, idempotency_key, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (order.order_id, order.user_id, str(order.total), idempotency_key, created_at.isoformat()),
                )
                await conn.executemany(
                    """
                    INSERT INTO order_lines (order_id, line_no, product_id, quantity, unit_price)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    [
                        (order.order_id, n, line.product_id, line.quantity, str(line.unit_price))
                        for n, line in enumerate(order.lines)
                    ],
                )
        except aiosqlite.IntegrityError as e:
            if idempotency_key is not None:
                existing = await self._find_order_id(await self._get_connection(), idempotency_key)
                if existing is not None:
                    raise DuplicateOrderError(idempotency_key, existing) from e
            msg = f"Order already exists: {order.order_id}"
            raise ConflictError(msg, details={"order_id": order.order_id}) from e

        logger.debug(f"Stored order {order.order_id} with {len(order.lines)} lines")
        return Order(
            order_id=order.order_id,
            user_id=order.user_id,
            total=order.total,
            lines=order.lines,
            created_at=created_at,
        )

    async def get(self, order_id: str) -> Order | None:
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT * FROM orders WHERE order_id = ?", (order_id,))
        row = await cursor.fetchone()
        return None if row is None else await self._row_to_order(conn, row)

    async def find_by_idempotency_key(self, key: str) -> Order | None:
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT * FROM orders WHERE idempotency_key = ?", (key,))
        row = await cursor.fetchone()
        return None if row is None else await self._row_to_order(conn, row)

    async def list_for_user(self, user_id: str) -> list[Order]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM orders WHERE user_id = ? ORDER BY created_at DESC, rowid DESC",
            (user_id,),
        )
        return [await self._row_to_order(conn, row) for row in await cursor.fetchall()]

    async def _find_order_id(self, conn: aiosqlite.Connection, key: str) -> str | None:
        cursor = await conn.execute("SELECT order_id FROM orders WHERE idempotency_key = ?", (key,))
        row = await cursor.fetchone()
        return None if row is None else row["order_id"]

    async def _row_to_order(self, conn: aiosqlite.Connection, row: aiosqlite.Row) -> Order:
        cursor = await conn.execute(
            "SELECT * FROM order_lines WHERE order_id = ? ORDER BY line_no", (row["order_id"],)
        )
        lines = tuple(
            OrderLine(
                product_id=line["product_id"],
                quantity=line["quantity"],
                unit_price=Decimal(line["unit_price"]),
            )
            for line in await cursor.fetchall()
        )
        return Order(
            order_id=row["order_id"],
            user_id=row["user_id"],
            total=Decimal(row["total"]),
            lines=lines,
            created_at=datetime.fromisoformat(row["created_at"]),
        )
