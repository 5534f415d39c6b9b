"""
Tests for the FastAPI application: routers, error rendering and correlation IDs
"""

from decimal import Decimal

import pytest

pytest.importorskip("fastapi")

import httpx  # noqa: E402

from orderflow.core.config import FulfillmentConfig  # noqa: E402
from orderflow.integrations._base import CORRELATION_HEADER  # noqa: E402
from orderflow.integrations.fastapi import create_app  # noqa: E402

QUIET = FulfillmentConfig(logging=False, metrics=False)


@pytest.fixture
def app(ledgers):
    return create_app(QUIET, ledgers=ledgers)


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://orderflow") as client:
        yield client


class TestOrdersApi:
    @pytest.mark.asyncio
    async def test_create_order(self, client, ledgers):
        response = await client.post(
            "/api/orders", json={"user_id": "user-1", "items": [{"product_id": "prod-a", "quantity": 3}]}
        )

        assert response.status_code == 201
        body = response.json()
        assert Decimal(body["total"]) == Decimal("600")
        assert body["user_id"] == "user-1"
        assert body["lines"][0]["product_id"] == "prod-a"
        assert Decimal(body["lines"][0]["unit_price"]) == Decimal("200")
        assert (await ledgers.stock.get_product("prod-a")).stock == 2

    @pytest.mark.asyncio
    async def test_camel_case_body_is_accepted(self, client):
        response = await client.post(
            "/api/orders", json={"userId": "user-1", "items": [{"productId": "prod-b", "quantity": 1}]}
        )

        assert response.status_code == 201
        assert Decimal(response.json()["total"]) == Decimal("50")

    @pytest.mark.asyncio
    async def test_idempotency_key_replays_order(self, client, ledgers):
        payload = {"user_id": "user-1", "items": [{"product_id": "prod-a", "quantity": 1}]}
        headers = {"Idempotency-Key": "checkout-1"}

        first = await client.post("/api/orders", json=payload, headers=headers)
        second = await client.post("/api/orders", json=payload, headers=headers)

        assert first.json()["order_id"] == second.json()["order_id"]
        assert await ledgers.wallets.get_balance("profile-1") == Decimal("800")

    @pytest.mark.asyncio
    async def test_get_and_list_orders(self, client):
        created = await client.post(
            "/api/orders", json={"user_id": "user-1", "items": [{"product_id": "prod-b", "quantity": 2}]}
        )
        order_id = created.json()["order_id"]

        fetched = await client.get(f"/api/orders/{order_id}")
        listed = await client.get("/api/orders/user/user-1")

        assert fetched.status_code == 200
        assert fetched.json()["order_id"] == order_id
        assert [o["order_id"] for o in listed.json()] == [order_id]

    @pytest.mark.asyncio
    async def test_unknown_order_is_404(self, client):
        response = await client.get("/api/orders/missing")

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"
        assert response.json()["details"]["item_type"] == "order"


class TestErrorRendering:
    @pytest.mark.asyncio
    async def test_unknown_user(self, client):
        response = await client.post(
            "/api/orders", json={"user_id": "ghost", "items": [{"product_id": "prod-a", "quantity": 1}]}
        )

        assert response.status_code == 404
        assert set(response.json()) == {"code", "reason", "message", "details"}
        assert response.json()["reason"] == "user_not_found"

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, client, ledgers):
        response = await client.post(
            "/api/orders",
            json={"user_id": "user-1", "items": [{"product_id": "prod-a", "quantity": 5}, {"product_id": "prod-b", "quantity": 1}]},
        )

        assert response.status_code == 409
        assert response.json()["reason"] == "insufficient_balance"
        assert (await ledgers.stock.get_product("prod-a")).stock == 5

    @pytest.mark.asyncio
    async def test_empty_items_is_400(self, client):
        response = await client.post("/api/orders", json={"user_id": "user-1", "items": []})

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_REQUEST"

    @pytest.mark.asyncio
    async def test_malformed_body_is_400(self, client):
        response = await client.post("/api/orders", json={"items": "nope"})

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_REQUEST"
        assert "errors" in response.json()["details"]


class TestResourceRouters:
    @pytest.mark.asyncio
    async def test_profile_lookup(self, client):
        response = await client.get("/api/users/by-userid/user-1")

        assert response.json()["profile_id"] == "profile-1"
        assert Decimal(response.json()["balance"]) == Decimal("1000")

    @pytest.mark.asyncio
    async def test_wallet_debit_and_credit(self, client):
        debit = await client.post("/api/users/profile-1/wallet/debit", json={"amount": "250"})
        credit = await client.post("/api/users/profile-1/wallet/credit", json={"amount": "50"})

        assert Decimal(debit.json()["balance"]) == Decimal("750")
        assert Decimal(credit.json()["balance"]) == Decimal("800")

    @pytest.mark.asyncio
    async def test_wallet_change_is_logged_with_order_tag(self, client, caplog):
        import logging

        caplog.set_level(logging.INFO, logger="orderflow")

        await client.post(
            "/api/users/profile-1/wallet/debit", json={"amount": "30", "orderId": "order-77"}
        )
        await client.post("/api/users/profile-1/wallet/credit", json={"amount": "10"})

        debit, credit = [r for r in caplog.records if "on wallet profile-1" in r.getMessage()]
        assert debit.getMessage() == "Debited 30 on wallet profile-1 for order order-77, balance now 970"
        assert debit.order_id == "order-77"
        assert credit.getMessage() == "Credited 10 on wallet profile-1, balance now 980"
        assert credit.order_id is None

    @pytest.mark.asyncio
    async def test_overdraft_is_conflict(self, client):
        response = await client.post("/api/users/profile-1/wallet/debit", json={"amount": "5000"})

        assert response.status_code == 409
        assert response.json()["reason"] == "insufficient_balance"

    @pytest.mark.asyncio
    async def test_reserve_and_release(self, client):
        reserved = await client.post("/api/products/prod-a/reserve", json={"quantity": 2})
        released = await client.post("/api/products/prod-a/release", json={"quantity": 1})
        product = await client.get("/api/products/prod-a")

        assert reserved.json()["remaining_stock"] == 3
        assert released.json()["remaining_stock"] == 4
        assert product.json()["stock"] == 4
        assert product.json()["name"] == "Widget"

    @pytest.mark.asyncio
    async def test_reserve_beyond_stock(self, client):
        response = await client.post("/api/products/prod-b/reserve", json={"quantity": 6})

        assert response.status_code == 409
        assert response.json()["details"]["available"] == 5

    @pytest.mark.asyncio
    async def test_payment_history(self, client):
        payload = {"order_id": "o-1", "user_id": "user-1", "profile_id": "profile-1", "amount": "30"}
        await client.post("/api/payments/charge", json=payload)
        await client.post("/api/payments/refund", json=payload)

        history = (await client.get("/api/payments/order/o-1")).json()
        assert [r["status"] for r in history] == ["Paid", "Refunded"]
        assert Decimal(history[1]["amount"]) == Decimal("-30")


class TestCorrelation:
    @pytest.mark.asyncio
    async def test_echoes_incoming_id(self, client):
        response = await client.get("/health", headers={CORRELATION_HEADER: "corr-123"})

        assert response.json() == {"status": "ok"}
        assert response.headers[CORRELATION_HEADER] == "corr-123"

    @pytest.mark.asyncio
    async def test_generates_id_when_missing(self, client):
        response = await client.get("/health")

        assert response.headers[CORRELATION_HEADER]

    @pytest.mark.asyncio
    async def test_id_reaches_the_saga(self, ledgers, recorder):
        app = create_app(QUIET, ledgers=ledgers)
        app.state.coordinator.listeners.append(recorder)
        transport = httpx.ASGITransport(app=app)

        async with httpx.AsyncClient(transport=transport, base_url="http://orderflow") as client:
            await client.post(
                "/api/orders",
                json={"user_id": "user-1", "items": [{"product_id": "prod-b", "quantity": 1}]},
                headers={CORRELATION_HEADER: "corr-saga"},
            )

        assert recorder.correlation_ids == ["corr-saga"]


class TestLifespan:
    def test_app_owns_its_ledgers(self, tmp_path):
        """Without injected ledgers the app opens and closes its own SQLite files"""
        from fastapi.testclient import TestClient

        config = FulfillmentConfig(
            storage_backend="sqlite", data_dir=str(tmp_path), logging=False, metrics=False
        )

        with TestClient(create_app(config)) as client:
            assert client.get("/health").json() == {"status": "ok"}
            response = client.post(
                "/api/orders", json={"user_id": "nobody", "items": [{"product_id": "x", "quantity": 1}]}
            )

        assert response.status_code == 404
        assert (tmp_path / "orders.db").exists()


class TestObservability:
    def test_app_installs_configured_logging(self, ledgers):
        import logging

        from orderflow.monitoring.logging import SagaJsonFormatter

        create_app(FulfillmentConfig(log_level="DEBUG", json_logs=True, metrics=False), ledgers=ledgers)

        root = logging.getLogger("orderflow")
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, SagaJsonFormatter)

    @pytest.mark.asyncio
    async def test_orders_reach_prometheus(self, ledgers):
        config = FulfillmentConfig(logging=False, prometheus=True)
        transport = httpx.ASGITransport(app=create_app(config, ledgers=ledgers))

        async with httpx.AsyncClient(transport=transport, base_url="http://orderflow") as client:
            ok = await client.post(
                "/api/orders", json={"user_id": "user-1", "items": [{"product_id": "prod-a", "quantity": 1}]}
            )
            rejected = await client.post(
                "/api/orders", json={"user_id": "user-1", "items": [{"product_id": "prod-a", "quantity": 5}]}
            )

        assert ok.status_code == 201
        assert rejected.status_code == 409
        registry = config.prometheus_metrics.registry
        assert registry.get_sample_value("orderflow_saga_total", {"outcome": "completed"}) == 1
        assert registry.get_sample_value("orderflow_saga_total", {"outcome": "conflict"}) == 1
        assert registry.get_sample_value("orderflow_active_sagas") == 0
