"""
Ledger factory - one call to build every resource owner for a backend.

Example:
    >>> async with create_ledgers("sqlite", data_dir="./data") as ledgers:
    ...     await ledgers.stock.add_product("p1", "200", 5)
    ...     coordinator = build_local_coordinator(ledgers)
    ...     order = await coordinator.create_order("user-1", [("p1", 3)])
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from orderflow.ledgers.base import OrderStore, PaymentLog, StockLedger, WalletLedger
from orderflow.ledgers.memory import (
    InMemoryOrderStore,
    InMemoryPaymentLog,
    InMemoryStockLedger,
    InMemoryWalletLedger,
)
from orderflow.ledgers.sqlite import (
    SQLiteOrderStore,
    SQLitePaymentLog,
    SQLiteStockLedger,
    SQLiteWalletLedger,
)
from orderflow.payments import PaymentProcessor

if TYPE_CHECKING:
    from orderflow.core.config import FulfillmentConfig
    from orderflow.core.coordinator import OrderFulfillmentCoordinator


@dataclass
class Ledgers:
    """The four resource owners plus the payment processor over them"""

    stock: StockLedger
    wallets: WalletLedger
    payment_log: PaymentLog
    orders: OrderStore
    payments: PaymentProcessor = field(init=False)

    def __post_init__(self) -> None:
        self.payments = PaymentProcessor(self.wallets, self.payment_log)

    async def initialize(self) -> None:
        for ledger in (self.stock, self.wallets, self.payment_log, self.orders):
            await ledger.initialize()

    async def close(self) -> None:
        for ledger in (self.stock, self.wallets, self.payment_log, self.orders):
            await ledger.close()

    async def __aenter__(self) -> Ledgers:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


def _create_memory_ledgers(data_dir: Path | None) -> Ledgers:
    return Ledgers(
        stock=InMemoryStockLedger(),
        wallets=InMemoryWalletLedger(),
        payment_log=InMemoryPaymentLog(),
        orders=InMemoryOrderStore(),
    )


def _create_sqlite_ledgers(data_dir: Path | None) -> Ledgers:
    if data_dir is None:
        msg = (
            "SQLite backend requires a data_dir.\n"
            "Example: create_ledgers('sqlite', data_dir='./data')"
        )
        raise ValueError(msg)
    data_dir.mkdir(parents=True, exist_ok=True)
    return Ledgers(
        stock=SQLiteStockLedger(data_dir / "products.db"),
        wallets=SQLiteWalletLedger(data_dir / "users.db"),
        payment_log=SQLitePaymentLog(data_dir / "payments.db"),
        orders=SQLiteOrderStore(data_dir / "orders.db"),
    )


# Backend registry mapping names to factory functions
_LEDGER_REGISTRY = {
    "memory": _create_memory_ledgers,
    "sqlite": _create_sqlite_ledgers,
}


def create_ledgers(backend: str = "memory", data_dir: str | Path | None = None) -> Ledgers:
    """
    Create every ledger for one storage backend.

    Args:
        backend: "memory" or "sqlite"
        data_dir: Directory for the SQLite database files

    Raises:
        ValueError: Unknown backend, or sqlite without data_dir
    """
    backend = backend.lower().strip()
    if backend not in _LEDGER_REGISTRY:
        msg = (
            f"Unknown ledger backend: '{backend}'\n"
            f"Available backends: {', '.join(_LEDGER_REGISTRY)}"
        )
        raise ValueError(msg)

    return _LEDGER_REGISTRY[backend](Path(data_dir) if data_dir is not None else None)


def build_local_coordinator(
    ledgers: Ledgers, config: FulfillmentConfig | None = None
) -> OrderFulfillmentCoordinator:
    """
    Wire a coordinator directly onto in-process ledgers.

    Listeners, tracing and the compensation timeout come from ``config``
    (default: the global configuration).
    """
    from orderflow.core.config import get_config
    from orderflow.core.coordinator import OrderFulfillmentCoordinator
    from orderflow.monitoring.tracing import SagaTracer

    config = config or get_config()
    return OrderFulfillmentCoordinator(
        users=ledgers.wallets,
        catalog=ledgers.stock,
        inventory=ledgers.stock,
        payments=ledgers.payments,
        orders=ledgers.orders,
        listeners=config.listeners,
        tracer=SagaTracer() if config.tracing else None,
        compensation_timeout=config.compensation_timeout,
    )
