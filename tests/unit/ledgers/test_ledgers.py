"""
Contract tests run against every ledger backend (memory and SQLite)
"""

import asyncio
from decimal import Decimal

import pytest

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
from orderflow.ledgers.factory import create_ledgers
from orderflow.types import Order, OrderLine, PaymentRecord, PaymentStatus


@pytest.fixture(params=["memory", "sqlite"])
async def bundle(request, tmp_path):
    """Empty ledgers for each backend."""
    async with create_ledgers(request.param, tmp_path) as ledgers:
        yield ledgers


def make_order(order_id, user_id="user-1", total="100", created_at=None):
    return Order(
        order_id=order_id,
        user_id=user_id,
        total=Decimal(total),
        lines=(OrderLine("prod-a", 1, Decimal(total)),),
        created_at=created_at,
    )


class TestStockLedger:
    @pytest.mark.asyncio
    async def test_reserve_returns_remaining(self, bundle):
        await bundle.stock.add_product("p1", "19.99", 10, name="Pen")

        assert await bundle.stock.reserve("p1", 3) == 7
        product = await bundle.stock.get_product("p1")
        assert product.stock == 7
        assert product.price == Decimal("19.99")
        assert product.name == "Pen"

    @pytest.mark.asyncio
    async def test_reserve_more_than_available(self, bundle):
        await bundle.stock.add_product("p1", "1", 2)

        with pytest.raises(InsufficientStockError) as exc_info:
            await bundle.stock.reserve("p1", 3)

        assert exc_info.value.available == 2
        assert (await bundle.stock.get_product("p1")).stock == 2

    @pytest.mark.asyncio
    async def test_reserve_last_unit_exactly(self, bundle):
        await bundle.stock.add_product("p1", "1", 1)

        assert await bundle.stock.reserve("p1", 1) == 0
        with pytest.raises(ConflictError):
            await bundle.stock.reserve("p1", 1)

    @pytest.mark.asyncio
    async def test_unknown_product(self, bundle):
        with pytest.raises(ProductNotFoundError):
            await bundle.stock.get_product("nope")
        with pytest.raises(NotFoundError):
            await bundle.stock.reserve("nope", 1)
        with pytest.raises(NotFoundError):
            await bundle.stock.release("nope", 1)

    @pytest.mark.asyncio
    async def test_release_is_a_compensating_add(self, bundle):
        """Releasing more than was reserved is not detected"""
        await bundle.stock.add_product("p1", "1", 2)

        assert await bundle.stock.release("p1", 5) == 7

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quantity", [0, -1])
    async def test_quantity_must_be_positive(self, bundle, quantity):
        await bundle.stock.add_product("p1", "1", 2)

        with pytest.raises(InvalidRequestError):
            await bundle.stock.reserve("p1", quantity)
        with pytest.raises(InvalidRequestError):
            await bundle.stock.release("p1", quantity)

    @pytest.mark.asyncio
    async def test_add_product_upserts(self, bundle):
        await bundle.stock.add_product("p2", "5", 1)
        await bundle.stock.add_product("p1", "5", 1)
        await bundle.stock.add_product("p1", "6", 9)

        products = await bundle.stock.list_products()
        assert [(p.product_id, p.price, p.stock) for p in products] == [
            ("p1", Decimal("6"), 9),
            ("p2", Decimal("5"), 1),
        ]

    @pytest.mark.asyncio
    async def test_concurrent_reservations_never_oversell(self, bundle):
        """Ten concurrent single-unit reservations against three units"""
        await bundle.stock.add_product("p1", "1", 3)

        results = await asyncio.gather(
            *(bundle.stock.reserve("p1", 1) for _ in range(10)), return_exceptions=True
        )

        succeeded = [r for r in results if isinstance(r, int)]
        conflicts = [r for r in results if isinstance(r, InsufficientStockError)]
        assert len(succeeded) == 3
        assert len(conflicts) == 7
        assert sorted(succeeded) == [0, 1, 2]
        assert (await bundle.stock.get_product("p1")).stock == 0


class TestWalletLedger:
    @pytest.mark.asyncio
    async def test_open_and_resolve(self, bundle):
        opened = await bundle.wallets.open_wallet("alice", "50.25", profile_id="pa")
        profile = await bundle.wallets.resolve_profile("alice")

        assert profile == opened
        assert profile.profile_id == "pa"
        assert profile.balance == Decimal("50.25")

    @pytest.mark.asyncio
    async def test_open_twice_conflicts(self, bundle):
        await bundle.wallets.open_wallet("alice", 10)

        with pytest.raises(ConflictError):
            await bundle.wallets.open_wallet("alice", 20)

    @pytest.mark.asyncio
    async def test_negative_opening_balance(self, bundle):
        with pytest.raises(InvalidRequestError):
            await bundle.wallets.open_wallet("alice", -1)

    @pytest.mark.asyncio
    async def test_unknown_user(self, bundle):
        with pytest.raises(UserNotFoundError):
            await bundle.wallets.resolve_profile("ghost")

    @pytest.mark.asyncio
    async def test_debit_and_credit(self, bundle):
        await bundle.wallets.open_wallet("alice", "100", profile_id="pa")

        assert await bundle.wallets.debit("pa", "30.5") == Decimal("69.5")
        assert await bundle.wallets.credit("pa", 10) == Decimal("79.5")
        assert await bundle.wallets.get_balance("pa") == Decimal("79.5")

    @pytest.mark.asyncio
    async def test_debit_to_exactly_zero(self, bundle):
        await bundle.wallets.open_wallet("alice", "100", profile_id="pa")

        assert await bundle.wallets.debit("pa", "100") == Decimal("0")

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, bundle):
        await bundle.wallets.open_wallet("alice", "10", profile_id="pa")

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await bundle.wallets.debit("pa", "10.01")

        assert exc_info.value.user_id == "alice"
        assert await bundle.wallets.get_balance("pa") == Decimal("10")

    @pytest.mark.asyncio
    async def test_unknown_wallet(self, bundle):
        with pytest.raises(NotFoundError):
            await bundle.wallets.debit("missing", 1)
        with pytest.raises(NotFoundError):
            await bundle.wallets.credit("missing", 1)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, "-5"])
    async def test_amount_must_be_positive(self, bundle, amount):
        await bundle.wallets.open_wallet("alice", "10", profile_id="pa")

        with pytest.raises(InvalidRequestError):
            await bundle.wallets.debit("pa", amount)
        with pytest.raises(InvalidRequestError):
            await bundle.wallets.credit("pa", amount)

    @pytest.mark.asyncio
    async def test_concurrent_debits_never_go_negative(self, bundle):
        await bundle.wallets.open_wallet("alice", "100", profile_id="pa")

        results = await asyncio.gather(
            *(bundle.wallets.debit("pa", "30") for _ in range(8)), return_exceptions=True
        )

        succeeded = [r for r in results if isinstance(r, Decimal)]
        assert len(succeeded) == 3
        assert all(isinstance(r, InsufficientBalanceError) for r in results if r not in succeeded)
        assert await bundle.wallets.get_balance("pa") == Decimal("10")


class TestPaymentLog:
    @pytest.mark.asyncio
    async def test_records_in_append_order(self, bundle):
        from datetime import UTC, datetime

        now = datetime.now(UTC)
        for n, status in enumerate([PaymentStatus.PAID, PaymentStatus.REFUNDED]):
            await bundle.payment_log.append(
                PaymentRecord(f"pay-{n}", "order-1", "alice", Decimal("5") * (1 - 2 * n), status, now)
            )
        await bundle.payment_log.append(
            PaymentRecord("pay-x", "order-2", "bob", Decimal("1"), PaymentStatus.PAID, now)
        )

        records = await bundle.payment_log.list_for_order("order-1")
        assert [(r.payment_id, r.amount, r.status) for r in records] == [
            ("pay-0", Decimal("5"), PaymentStatus.PAID),
            ("pay-1", Decimal("-5"), PaymentStatus.REFUNDED),
        ]
        assert [r.payment_id for r in await bundle.payment_log.list_for_user("bob")] == ["pay-x"]


class TestOrderStore:
    @pytest.mark.asyncio
    async def test_save_and_get(self, bundle):
        stored = await bundle.orders.save(make_order("o1"))

        assert stored.created_at is not None
        loaded = await bundle.orders.get("o1")
        assert loaded.order_id == "o1"
        assert loaded.total == Decimal("100")
        assert loaded.lines == (OrderLine("prod-a", 1, Decimal("100")),)
        assert await bundle.orders.get("missing") is None

    @pytest.mark.asyncio
    async def test_idempotency_key_is_unique(self, bundle):
        await bundle.orders.save(make_order("o1"), idempotency_key="k1")

        with pytest.raises(DuplicateOrderError) as exc_info:
            await bundle.orders.save(make_order("o2"), idempotency_key="k1")

        assert exc_info.value.order_id == "o1"
        assert (await bundle.orders.find_by_idempotency_key("k1")).order_id == "o1"
        assert await bundle.orders.get("o2") is None
        assert await bundle.orders.find_by_idempotency_key("k2") is None

    @pytest.mark.asyncio
    async def test_orders_without_key_are_unconstrained(self, bundle):
        await bundle.orders.save(make_order("o1"))
        await bundle.orders.save(make_order("o2"))

        assert len(await bundle.orders.list_for_user("user-1")) == 2

    @pytest.mark.asyncio
    async def test_duplicate_order_id_conflicts(self, bundle):
        await bundle.orders.save(make_order("o1"))

        with pytest.raises(ConflictError):
            await bundle.orders.save(make_order("o1"))

    @pytest.mark.asyncio
    async def test_list_for_user_newest_first(self, bundle):
        await bundle.orders.save(make_order("old"))
        await asyncio.sleep(0.001)
        await bundle.orders.save(make_order("new"))
        await bundle.orders.save(make_order("other", user_id="user-2"))

        orders = await bundle.orders.list_for_user("user-1")
        assert [o.order_id for o in orders] == ["new", "old"]
