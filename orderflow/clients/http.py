"""
HTTP implementations of the coordinator's ports (httpx).

Each client talks to one resource-owning service. Transport failures
(connection errors, timeouts, 408, 429, 5xx) are retried by the
``RetryPolicy``; 404 and 409 come back as ``NotFoundError`` and
``ConflictError`` at once and are never retried.

Example:
    >>> users = ServiceClient("http://users:8080", retry=RetryPolicy())
    >>> directory = HttpUserDirectory(users)
    >>> profile = await directory.resolve_profile("user-1")
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

from orderflow.core.exceptions import (
    ConflictError,
    NotFoundError,
    TransientError,
    UnavailableError,
)
from orderflow.core.logger import get_logger
from orderflow.core.ports import (
    InventoryService,
    OrderRepository,
    PaymentService,
    ProductCatalog,
    UserDirectory,
)
from orderflow.core.retry import RetryPolicy
from orderflow.integrations._base import current_request
from orderflow.schemas import PaymentIn, PaymentRecordOut, ProductOut, StockOut, UserProfileOut
from orderflow.types import PaymentRecord, ProductInfo, UserProfile

if TYPE_CHECKING:
    from orderflow.core.config import FulfillmentConfig
    from orderflow.core.coordinator import OrderFulfillmentCoordinator
    from orderflow.monitoring.tracing import SagaTracer

logger = get_logger(__name__)

TRANSIENT_STATUS_CODES = frozenset({408, 429})


def _segment(value: str) -> str:
    return quote(str(value), safe="")


class ServiceClient:
    """
    Retrying JSON client for one downstream service.

    Args:
        base_url: Service root, e.g. ``http://products:8080``
        retry: Transport retry policy (default: no retries)
        timeout: Per-request timeout in seconds
        transport: Custom httpx transport (e.g. ``httpx.ASGITransport``)
        tracer: Injects W3C trace headers when given
    """

    def __init__(
        self,
        base_url: str,
        retry: RetryPolicy | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        tracer: SagaTracer | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.retry = retry or RetryPolicy.none()
        self.tracer = tracer
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> ServiceClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def request(
        self, method: str, path: str, *, operation: str, json: Any = None
    ) -> Any:
        """
        Send a request and decode the JSON body.

        Raises:
            NotFoundError: 404
            ConflictError: 409
            UnavailableError: Retries exhausted or any other failure status
        """

        async def attempt() -> Any:
            try:
                response = await self._client.request(method, path, json=json, headers=self._headers())
            except httpx.TimeoutException as e:
                msg = f"{operation} timed out"
                raise TransientError(msg, details={"url": f"{self.base_url}{path}"}) from e
            except httpx.TransportError as e:
                msg = f"{operation} transport error: {e}"
                raise TransientError(msg, details={"url": f"{self.base_url}{path}"}) from e
            return self._decode(response, operation)

        return await self.retry.run(attempt, operation=operation)

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        context = current_request()
        if context is not None:
            headers.update(context.outgoing_headers())
        if self.tracer is not None:
            headers.update(self.tracer.get_trace_context())
        return headers

    def _decode(self, response: httpx.Response, operation: str) -> Any:
        status = response.status_code
        if status < 400:
            return response.json() if response.content else None

        message, details = self._error_body(response)
        details.setdefault("status_code", status)

        if status == 404:
            raise NotFoundError(message or f"{operation}: not found", **details)
        if status == 409:
            raise ConflictError(message or f"{operation}: conflict", details=details)
        if status in TRANSIENT_STATUS_CODES or status >= 500:
            raise TransientError(message or f"{operation}: HTTP {status}", details=details)
        raise UnavailableError(message or f"{operation}: HTTP {status}", details=details)

    @staticmethod
    def _error_body(response: httpx.Response) -> tuple[str, dict[str, Any]]:
        try:
            body = response.json()
        except ValueError:
            return response.text, {}
        if not isinstance(body, dict):
            return str(body), {}
        details = body.get("details")
        details = dict(details) if isinstance(details, dict) else {}
        details.pop("item_type", None)
        details.pop("item_id", None)
        return str(body.get("message") or body.get("detail") or ""), details


class HttpUserDirectory(UserDirectory):
    def __init__(self, client: ServiceClient):
        self.client = client

    async def resolve_profile(self, user_id: str) -> UserProfile:
        data = await self.client.request(
            "GET", f"/api/users/by-userid/{_segment(user_id)}", operation="resolve_user"
        )
        return UserProfileOut.model_validate(data).to_domain()


class HttpProductCatalog(ProductCatalog):
    def __init__(self, client: ServiceClient):
        self.client = client

    async def get_product(self, product_id: str) -> ProductInfo:
        data = await self.client.request(
            "GET", f"/api/products/{_segment(product_id)}", operation="get_product"
        )
        return ProductOut.model_validate(data).to_domain()


class HttpInventoryService(InventoryService):
    def __init__(self, client: ServiceClient):
        self.client = client

    async def reserve(self, product_id: str, quantity: int) -> int:
        return await self._adjust("reserve", product_id, quantity)

    async def release(self, product_id: str, quantity: int) -> int:
        return await self._adjust("release", product_id, quantity)

    async def _adjust(self, action: str, product_id: str, quantity: int) -> int:
        data = await self.client.request(
            "POST",
            f"/api/products/{_segment(product_id)}/{action}",
            operation=f"{action}_stock",
            json={"quantity": quantity},
        )
        return StockOut.model_validate(data).remaining_stock


class HttpPaymentService(PaymentService):
    def __init__(self, client: ServiceClient):
        self.client = client

    async def charge(
        self, order_id: str, user_id: str, profile_id: str, amount: Decimal
    ) -> PaymentRecord:
        return await self._send("charge", order_id, user_id, profile_id, amount)

    async def refund(
        self, order_id: str, user_id: str, profile_id: str, amount: Decimal
    ) -> PaymentRecord:
        return await self._send("refund", order_id, user_id, profile_id, amount)

    async def _send(
        self, action: str, order_id: str, user_id: str, profile_id: str, amount: Decimal
    ) -> PaymentRecord:
        payload = PaymentIn(order_id=order_id, user_id=user_id, profile_id=profile_id, amount=amount)
        data = await self.client.request(
            "POST",
            f"/api/payments/{action}",
            operation=f"{action}_payment",
            json=payload.model_dump(mode="json"),
        )
        return PaymentRecordOut.model_validate(data).to_domain()


def create_remote_coordinator(
    config: FulfillmentConfig,
    orders: OrderRepository,
    transport: httpx.AsyncBaseTransport | None = None,
) -> tuple[OrderFulfillmentCoordinator, list[ServiceClient]]:
    """
    Wire a coordinator onto the user, product and payment services.

    Returns:
        The coordinator and the service clients to close on shutdown

    Raises:
        ValueError: A service URL is missing from the configuration
    """
    from orderflow.core.coordinator import OrderFulfillmentCoordinator
    from orderflow.monitoring.tracing import SagaTracer

    if not config.remote:
        msg = "Remote coordinator needs user, product and payment service URLs"
        raise ValueError(msg)

    tracer = SagaTracer() if config.tracing else None

    def client(url: str) -> ServiceClient:
        return ServiceClient(
            url,
            retry=config.retry_policy(),
            timeout=config.request_timeout,
            transport=transport,
            tracer=tracer,
        )

    users = client(config.user_service_url)
    products = client(config.product_service_url)
    payments = client(config.payment_service_url)

    coordinator = OrderFulfillmentCoordinator(
        users=HttpUserDirectory(users),
        catalog=HttpProductCatalog(products),
        inventory=HttpInventoryService(products),
        payments=HttpPaymentService(payments),
        orders=orders,
        listeners=config.listeners,
        tracer=tracer,
        compensation_timeout=config.compensation_timeout,
    )
    logger.info(
        f"Remote coordinator wired: users={users.base_url} products={products.base_url} "
        f"payments={payments.base_url}"
    )
    return coordinator, [users, products, payments]
