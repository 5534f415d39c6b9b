"""
Pytest configuration and shared fixtures for order fulfillment tests

The default world:
- user "user-1" with profile "profile-1" and a wallet balance of 1000
- product "prod-a": price 200, stock 5
- product "prod-b": price 50, stock 5
"""

import logging
from decimal import Decimal

import pytest

from orderflow.core.coordinator import OrderFulfillmentCoordinator
from orderflow.core.listeners import FulfillmentListener
from orderflow.ledgers.factory import create_ledgers
from orderflow.monitoring.logging import saga_context


class RecordingListener(FulfillmentListener):
    """Keeps every lifecycle event as (event, *payload) tuples"""

    def __init__(self):
        self.events = []
        self.correlation_ids = []

    async def on_saga_start(self, saga):
        self.events.append(("saga_start", saga.saga_id))
        self.correlation_ids.append(saga.correlation_id)

    async def on_step_enter(self, saga, step):
        self.events.append(("step_enter", step))

    async def on_step_success(self, saga, step, duration):
        self.events.append(("step_success", step))

    async def on_step_failure(self, saga, step, error):
        self.events.append(("step_failure", step, error))

    async def on_compensate(self, saga, action, error):
        self.events.append(("compensate", action, error))

    async def on_saga_complete(self, saga, order):
        self.events.append(("saga_complete", order.order_id))

    async def on_saga_failed(self, saga, error):
        self.events.append(("saga_failed", error))

    def names(self, event):
        return [e[1] for e in self.events if e[0] == event]


# ============================================
# AUTO-USE FIXTURES
# ============================================


@pytest.fixture(autouse=True)
def clean_context():
    """Reset the saga log context between tests."""
    saga_context.set({})
    yield
    saga_context.set({})


@pytest.fixture(autouse=True)
def restore_orderflow_logging():
    """Undo handlers and levels installed by setup_saga_logging."""
    root = logging.getLogger("orderflow")
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


# ============================================
# LEDGERS AND COORDINATOR
# ============================================


async def seed(ledgers):
    await ledgers.stock.add_product("prod-a", "200", 5, name="Widget")
    await ledgers.stock.add_product("prod-b", "50", 5, name="Gadget")
    await ledgers.wallets.open_wallet("user-1", Decimal("1000"), profile_id="profile-1")
    return ledgers


@pytest.fixture
async def ledgers():
    """Seeded in-memory ledgers."""
    async with create_ledgers("memory") as bundle:
        yield await seed(bundle)


@pytest.fixture
async def sqlite_ledgers(tmp_path):
    """Seeded SQLite ledgers in a temporary directory."""
    async with create_ledgers("sqlite", tmp_path) as bundle:
        yield await seed(bundle)


@pytest.fixture
def recorder():
    return RecordingListener()


@pytest.fixture
def coordinator(ledgers, recorder):
    """Coordinator wired straight onto the in-memory ledgers."""
    return OrderFulfillmentCoordinator(
        users=ledgers.wallets,
        catalog=ledgers.stock,
        inventory=ledgers.stock,
        payments=ledgers.payments,
        orders=ledgers.orders,
        listeners=[recorder],
    )
