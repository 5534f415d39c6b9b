"""
FastAPI integration for orderflow.

Provides:
- Routers for the resource owners (users/wallets, products/stock, payments)
  and for order placement
- An ``OrderError`` handler returning ``{"code", "reason", "message", "details"}``
- Middleware for correlation ID propagation
- ``create_app``: an all-in-one application over one set of ledgers

Example:
    >>> from orderflow.integrations.fastapi import create_app
    >>> app = create_app(FulfillmentConfig(storage_backend="sqlite", data_dir="./data"))
    >>> # uvicorn module:app
"""

from collections.abc import Callable
from contextlib import asynccontextmanager
from decimal import Decimal

from fastapi import APIRouter, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from orderflow.core.config import FulfillmentConfig, get_config
from orderflow.core.coordinator import OrderFulfillmentCoordinator
from orderflow.core.exceptions import InvalidRequestError, NotFoundError, OrderError
from orderflow.core.logger import get_logger
from orderflow.integrations._base import (
    RequestContext,
    get_correlation_id,
    request_scope,
)
from orderflow.ledgers.base import OrderStore, StockLedger, WalletLedger
from orderflow.ledgers.factory import Ledgers, build_local_coordinator, create_ledgers
from orderflow.payments import PaymentProcessor
from orderflow.schemas import (
    AmountIn,
    BalanceOut,
    CreateOrderIn,
    OrderOut,
    PaymentIn,
    PaymentRecordOut,
    ProductOut,
    QuantityIn,
    StockOut,
    UserProfileOut,
)

logger = get_logger(__name__)

__all__ = [
    "create_app",
    "create_orders_router",
    "create_payments_router",
    "create_products_router",
    "create_users_router",
    "install_error_handlers",
]


def _log_wallet_change(verb: str, profile_id: str, body: AmountIn, balance: Decimal) -> None:
    tag = f" for order {body.order_id}" if body.order_id else ""
    logger.info(
        f"{verb} {body.amount} on wallet {profile_id}{tag}, balance now {balance}",
        extra={"order_id": body.order_id, "profile_id": profile_id},
    )


def create_users_router(wallets: WalletLedger) -> APIRouter:
    """Wallet-bearing user profiles: lookup, debit and credit."""
    router = APIRouter(prefix="/api/users", tags=["users"])

    @router.get("/by-userid/{user_id}", response_model=UserProfileOut)
    async def get_profile(user_id: str):
        return UserProfileOut.from_domain(await wallets.resolve_profile(user_id))

    @router.post("/{profile_id}/wallet/debit", response_model=BalanceOut)
    async def debit_wallet(profile_id: str, body: AmountIn):
        balance = await wallets.debit(profile_id, body.amount)
        _log_wallet_change("Debited", profile_id, body, balance)
        return BalanceOut(profile_id=profile_id, balance=balance)

    @router.post("/{profile_id}/wallet/credit", response_model=BalanceOut)
    async def credit_wallet(profile_id: str, body: AmountIn):
        balance = await wallets.credit(profile_id, body.amount)
        _log_wallet_change("Credited", profile_id, body, balance)
        return BalanceOut(profile_id=profile_id, balance=balance)

    return router


def create_products_router(stock: StockLedger) -> APIRouter:
    """Price/stock lookup plus atomic reserve and release."""
    router = APIRouter(prefix="/api/products", tags=["products"])

    @router.get("/{product_id}", response_model=ProductOut)
    async def get_product(product_id: str):
        return ProductOut.from_domain(await stock.get_product(product_id))

    @router.post("/{product_id}/reserve", response_model=StockOut)
    async def reserve(product_id: str, body: QuantityIn):
        remaining = await stock.reserve(product_id, body.quantity)
        return StockOut(product_id=product_id, remaining_stock=remaining)

    @router.post("/{product_id}/release", response_model=StockOut)
    async def release(product_id: str, body: QuantityIn):
        remaining = await stock.release(product_id, body.quantity)
        return StockOut(product_id=product_id, remaining_stock=remaining)

    return router


def create_payments_router(payments: PaymentProcessor) -> APIRouter:
    """Charges and refunds, each recorded in the payment log."""
    router = APIRouter(prefix="/api/payments", tags=["payments"])

    @router.post("/charge", response_model=PaymentRecordOut)
    async def charge(body: PaymentIn):
        record = await payments.charge(body.order_id, body.user_id, body.profile_id, body.amount)
        return PaymentRecordOut.from_domain(record)

    @router.post("/refund", response_model=PaymentRecordOut)
    async def refund(body: PaymentIn):
        record = await payments.refund(body.order_id, body.user_id, body.profile_id, body.amount)
        return PaymentRecordOut.from_domain(record)

    @router.get("/order/{order_id}", response_model=list[PaymentRecordOut])
    async def history(order_id: str):
        return [PaymentRecordOut.from_domain(r) for r in await payments.history(order_id)]

    return router


def create_orders_router(
    coordinator: OrderFulfillmentCoordinator | Callable[[], OrderFulfillmentCoordinator],
    orders: OrderStore,
) -> APIRouter:
    """
    Order placement and order reads.

    Args:
        coordinator: The coordinator, or a zero-argument callable returning it
        orders: Store used for reads
    """
    router = APIRouter(prefix="/api/orders", tags=["orders"])

    def _coordinator() -> OrderFulfillmentCoordinator:
        return coordinator if isinstance(coordinator, OrderFulfillmentCoordinator) else coordinator()

    @router.post("", response_model=OrderOut, status_code=201)
    async def create_order(
        body: CreateOrderIn,
        idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    ):
        order = await _coordinator().create_order(
            body.user_id,
            [item.to_domain() for item in body.items],
            idempotency_key=idempotency_key,
            correlation_id=get_correlation_id(),
        )
        return OrderOut.from_domain(order)

    @router.get("/user/{user_id}", response_model=list[OrderOut])
    async def list_for_user(user_id: str):
        return [OrderOut.from_domain(o) for o in await orders.list_for_user(user_id)]

    @router.get("/{order_id}", response_model=OrderOut)
    async def get_order(order_id: str):
        order = await orders.get(order_id)
        if order is None:
            raise NotFoundError(f"Order not found: {order_id}", item_type="order", item_id=order_id)
        return OrderOut.from_domain(order)

    return router


def install_error_handlers(app: FastAPI) -> None:
    """Render taxonomy errors and request validation errors uniformly."""

    @app.exception_handler(OrderError)
    async def order_error_handler(request: Request, exc: OrderError):
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        error = InvalidRequestError(
            "Malformed request body", details={"errors": str(exc.errors())}
        )
        return JSONResponse(status_code=error.http_status, content=error.to_dict())


def _install_correlation_middleware(app: FastAPI) -> None:
    @app.middleware("http")
    async def correlation_middleware(request: Request, call_next):
        context = RequestContext.from_headers(request.headers)
        with request_scope(context):
            response = await call_next(request)
        response.headers.update(context.outgoing_headers())
        return response


def create_app(
    config: FulfillmentConfig | None = None, ledgers: Ledgers | None = None
) -> FastAPI:
    """
    Assemble every router over one set of ledgers.

    When the configuration names user, product and payment service URLs the
    coordinator calls those services over HTTP; otherwise it runs against the
    local ledgers.
    """
    config = config or get_config()
    config.setup_logging()
    ledgers = ledgers or create_ledgers(config.storage_backend, config.data_dir)

    clients = []
    if config.remote:
        from orderflow.clients.http import create_remote_coordinator

        coordinator, clients = create_remote_coordinator(config, ledgers.orders)
    else:
        coordinator = build_local_coordinator(ledgers, config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await ledgers.initialize()
        if config.start_metrics_server():
            logger.info(f"Serving Prometheus metrics on port {config.metrics_port}")
        logger.info(f"orderflow started (storage={config.storage_backend}, remote={config.remote})")
        yield
        for client in clients:
            await client.aclose()
        await ledgers.close()
        logger.info("orderflow shutdown complete")

    app = FastAPI(title="orderflow", lifespan=lifespan)
    app.state.config = config
    app.state.ledgers = ledgers
    app.state.coordinator = coordinator

    install_error_handlers(app)
    _install_correlation_middleware(app)

    app.include_router(create_users_router(ledgers.wallets))
    app.include_router(create_products_router(ledgers.stock))
    app.include_router(create_payments_router(ledgers.payments))
    app.include_router(create_orders_router(lambda: app.state.coordinator, ledgers.orders))

    @app.get("/health", tags=["health"])
    async def health():
        return {"status": "ok"}

    return app
