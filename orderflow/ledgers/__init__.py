"""
Resource-owning ledgers: stock, wallets, payment records and orders.
"""

from orderflow.ledgers.base import OrderStore, PaymentLog, StockLedger, WalletLedger
from orderflow.ledgers.factory import Ledgers, build_local_coordinator, create_ledgers
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

__all__ = [
    "InMemoryOrderStore",
    "InMemoryPaymentLog",
    "InMemoryStockLedger",
    "InMemoryWalletLedger",
    "Ledgers",
    "OrderStore",
    "PaymentLog",
    "SQLiteOrderStore",
    "SQLitePaymentLog",
    "SQLiteStockLedger",
    "SQLiteWalletLedger",
    "StockLedger",
    "WalletLedger",
    "build_local_coordinator",
    "create_ledgers",
]
