"""
Storage failures in the middle of a SQLite write

Each test breaks one statement (or the commit) of a write, then performs an
unrelated successful write on the same connection and checks that nothing
from the broken write was committed along with it.
"""

import asyncio
from datetime import UTC, datetime
from decimal import Decimal

import aiosqlite
import pytest

from orderflow.core.config import FulfillmentConfig
from orderflow.core.exceptions import DownstreamUnavailableError, UnavailableError
from orderflow.ledgers.factory import build_local_coordinator
from orderflow.types import Order, OrderLine, PaymentRecord, PaymentStatus

QUIET = FulfillmentConfig(logging=False, metrics=False)


async def break_once(monkeypatch, ledger, method, matching=None, error=None):
    """
    Make the next ``method`` call on the ledger's connection fail.

    With ``matching``, only a statement containing that text fails.
    """
    conn = await ledger._get_connection()
    original = getattr(conn, method)
    failed = []

    async def broken(*args, **kwargs):
        if not failed and (matching is None or matching in args[0]):
            failed.append(args)
            raise error or aiosqlite.OperationalError("database is locked")
        return await original(*args, **kwargs)

    monkeypatch.setattr(conn, method, broken)
    return failed


def make_order(order_id, user_id):
    return Order(
        order_id=order_id,
        user_id=user_id,
        total=Decimal("200"),
        lines=(OrderLine("prod-a", 1, Decimal("200")),),
    )


class TestOrderStore:
    @pytest.mark.asyncio
    async def test_failed_lines_insert_leaves_no_order(self, sqlite_ledgers, monkeypatch):
        orders = sqlite_ledgers.orders
        failed = await break_once(monkeypatch, orders, "executemany")

        with pytest.raises(UnavailableError) as exc_info:
            await orders.save(make_order("order-1", "user-1"), idempotency_key="key-1")

        assert failed
        assert exc_info.value.details["operation"] == "persist_order"
        assert "database is locked" in exc_info.value.details["error"]

        await orders.save(make_order("order-2", "user-2"))

        assert await orders.get("order-1") is None
        assert await orders.find_by_idempotency_key("key-1") is None
        assert await orders.list_for_user("user-1") == []
        assert [o.order_id for o in await orders.list_for_user("user-2")] == ["order-2"]

    @pytest.mark.asyncio
    async def test_cancelled_save_leaves_no_order(self, sqlite_ledgers, monkeypatch):
        orders = sqlite_ledgers.orders
        await break_once(monkeypatch, orders, "executemany", error=asyncio.CancelledError())

        with pytest.raises(asyncio.CancelledError):
            await orders.save(make_order("order-1", "user-1"))

        await orders.save(make_order("order-2", "user-2"))

        assert await orders.list_for_user("user-1") == []

    @pytest.mark.asyncio
    async def test_key_is_free_after_failed_save(self, sqlite_ledgers, monkeypatch):
        orders = sqlite_ledgers.orders
        await break_once(monkeypatch, orders, "commit")

        with pytest.raises(UnavailableError):
            await orders.save(make_order("order-1", "user-1"), idempotency_key="key-1")

        stored = await orders.save(make_order("order-2", "user-1"), idempotency_key="key-1")

        assert stored.order_id == "order-2"
        assert (await orders.find_by_idempotency_key("key-1")).order_id == "order-2"


class TestStockLedger:
    @pytest.mark.asyncio
    async def test_failure_after_update_keeps_stock(self, sqlite_ledgers, monkeypatch):
        stock = sqlite_ledgers.stock
        await break_once(monkeypatch, stock, "execute", matching="SELECT stock")

        with pytest.raises(UnavailableError) as exc_info:
            await stock.reserve("prod-a", 2)

        assert exc_info.value.details["operation"] == "reserve_stock"

        await stock.reserve("prod-b", 1)

        assert (await stock.get_product("prod-a")).stock == 5
        assert (await stock.get_product("prod-b")).stock == 4

    @pytest.mark.asyncio
    async def test_failed_release_adds_nothing(self, sqlite_ledgers, monkeypatch):
        stock = sqlite_ledgers.stock
        await break_once(monkeypatch, stock, "commit")

        with pytest.raises(UnavailableError):
            await stock.release("prod-a", 3)

        await stock.add_product("prod-c", "1", 1)

        assert (await stock.get_product("prod-a")).stock == 5


class TestWalletLedger:
    @pytest.mark.asyncio
    async def test_failed_commit_keeps_balance(self, sqlite_ledgers, monkeypatch):
        wallets = sqlite_ledgers.wallets
        await break_once(monkeypatch, wallets, "commit")

        with pytest.raises(UnavailableError) as exc_info:
            await wallets.debit("profile-1", Decimal("300"))

        assert exc_info.value.details["operation"] == "debit_wallet"

        await wallets.open_wallet("user-2", Decimal("10"), profile_id="profile-2")

        assert await wallets.get_balance("profile-1") == Decimal("1000")


class TestPaymentLog:
    @pytest.mark.asyncio
    async def test_failed_commit_leaves_no_record(self, sqlite_ledgers, monkeypatch):
        log = sqlite_ledgers.payment_log
        await break_once(monkeypatch, log, "commit")

        def record(payment_id, order_id):
            return PaymentRecord(
                payment_id, order_id, "user-1", Decimal("5"), PaymentStatus.PAID, datetime.now(UTC)
            )

        with pytest.raises(UnavailableError):
            await log.append(record("pay-1", "order-1"))

        await log.append(record("pay-2", "order-2"))

        assert await log.list_for_order("order-1") == []
        assert [r.payment_id for r in await log.list_for_user("user-1")] == ["pay-2"]

    @pytest.mark.asyncio
    async def test_charge_returns_money_when_record_fails(self, sqlite_ledgers, monkeypatch):
        await break_once(monkeypatch, sqlite_ledgers.payment_log, "execute", matching="INSERT")

        with pytest.raises(UnavailableError):
            await sqlite_ledgers.payments.charge("order-1", "user-1", "profile-1", Decimal("600"))

        assert await sqlite_ledgers.wallets.get_balance("profile-1") == Decimal("1000")
        assert await sqlite_ledgers.payments.history("order-1") == []


class TestCreateOrderOnStorageFailure:
    @pytest.mark.asyncio
    async def test_order_store_failure_compensates_and_leaves_nothing(
        self, sqlite_ledgers, monkeypatch
    ):
        coordinator = build_local_coordinator(sqlite_ledgers, QUIET)
        await sqlite_ledgers.wallets.open_wallet("user-2", Decimal("1000"), profile_id="profile-2")
        await break_once(monkeypatch, sqlite_ledgers.orders, "executemany")

        with pytest.raises(DownstreamUnavailableError) as exc_info:
            await coordinator.create_order("user-1", [("prod-a", 1)])

        assert exc_info.value.operation == "persist_order"
        assert await sqlite_ledgers.wallets.get_balance("profile-1") == Decimal("1000")
        assert (await sqlite_ledgers.stock.get_product("prod-a")).stock == 5

        order = await coordinator.create_order("user-2", [("prod-b", 1)])

        assert await sqlite_ledgers.orders.list_for_user("user-1") == []
        assert [o.order_id for o in await sqlite_ledgers.orders.list_for_user("user-2")] == [
            order.order_id
        ]

    @pytest.mark.asyncio
    async def test_payment_record_failure_fails_the_payment_step(
        self, sqlite_ledgers, monkeypatch
    ):
        coordinator = build_local_coordinator(sqlite_ledgers, QUIET)
        await break_once(monkeypatch, sqlite_ledgers.payment_log, "execute", matching="INSERT")

        with pytest.raises(DownstreamUnavailableError) as exc_info:
            await coordinator.create_order("user-1", [("prod-a", 2)])

        assert exc_info.value.operation == "process_payment"
        assert await sqlite_ledgers.wallets.get_balance("profile-1") == Decimal("1000")
        assert (await sqlite_ledgers.stock.get_product("prod-a")).stock == 5
        assert await sqlite_ledgers.orders.list_for_user("user-1") == []
