"""
Concurrent sagas contending for the same product and the same wallet
"""

import asyncio
from decimal import Decimal

import pytest

from orderflow.core.config import FulfillmentConfig
from orderflow.core.exceptions import ConflictError, InsufficientBalanceError
from orderflow.ledgers.factory import build_local_coordinator, create_ledgers

QUIET = FulfillmentConfig(logging=False, metrics=False)


@pytest.fixture(params=["memory", "sqlite"])
async def world(request, tmp_path):
    async with create_ledgers(request.param, tmp_path) as ledgers:
        await ledgers.stock.add_product("hot", "10", 5)
        for n in range(8):
            await ledgers.wallets.open_wallet(f"buyer-{n}", "1000", profile_id=f"wallet-{n}")
        yield ledgers


class TestConcurrentOrders:
    @pytest.mark.asyncio
    async def test_only_orders_that_fit_in_stock_succeed(self, world):
        """Eight buyers want two units each of a product with five in stock"""
        coordinator = build_local_coordinator(world, QUIET)

        results = await asyncio.gather(
            *(coordinator.create_order(f"buyer-{n}", [("hot", 2)]) for n in range(8)),
            return_exceptions=True,
        )

        orders = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(orders) == 2
        assert all(isinstance(f, ConflictError) for f in failures)
        assert (await world.stock.get_product("hot")).stock == 1

        # Losers were refunded; winners paid exactly once.
        for n in range(8):
            balance = await world.wallets.get_balance(f"wallet-{n}")
            assert balance in (Decimal("1000"), Decimal("980"))
        paid = [
            await world.wallets.get_balance(f"wallet-{n}") for n in range(8)
        ].count(Decimal("980"))
        assert paid == 2

    @pytest.mark.asyncio
    async def test_same_wallet_never_goes_negative(self, world):
        """One buyer fires six orders worth 300 each at a 1000 balance"""
        await world.stock.add_product("cheap", "300", 100)
        coordinator = build_local_coordinator(world, QUIET)

        results = await asyncio.gather(
            *(coordinator.create_order("buyer-0", [("cheap", 1)]) for _ in range(6)),
            return_exceptions=True,
        )

        orders = [r for r in results if not isinstance(r, Exception)]
        assert len(orders) == 3
        assert all(
            isinstance(r, InsufficientBalanceError) for r in results if isinstance(r, Exception)
        )
        assert await world.wallets.get_balance("wallet-0") == Decimal("100")
        assert (await world.stock.get_product("cheap")).stock == 97
