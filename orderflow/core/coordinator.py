"""
Order fulfillment saga coordinator.

``OrderFulfillmentCoordinator.create_order`` makes placing an order look
atomic to the caller while it is really a fixed sequence of independent calls
to resource owners:

    validate -> resolve user -> price items -> charge wallet
             -> reserve stock (item by item) -> persist order

Every successful side effect pushes its compensating action onto a
``CompensationStack``. When a later step fails the stack is unwound (stock
released most recent first, then the payment refunded) and the original
failure is re-raised. Safety under contention is delegated entirely to the
atomic ``reserve`` and ``charge`` operations of the resource owners; the
coordinator holds no locks.

Example:
    >>> coordinator = OrderFulfillmentCoordinator(
    ...     users=wallets, catalog=stock, inventory=stock,
    ...     payments=processor, orders=store,
    ... )
    >>> order = await coordinator.create_order("user-1", [("p1", 3)])
"""

import inspect
import time
import uuid
from collections.abc import Callable, Iterable, Iterator, Sized
from contextlib import asynccontextmanager, contextmanager, nullcontext
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from orderflow.core.compensation import CompensationFailure, CompensationStack
from orderflow.core.exceptions import (
    ConflictError,
    DownstreamUnavailableError,
    DuplicateOrderError,
    InsufficientBalanceError,
    InsufficientStockError,
    InternalError,
    InvalidRequestError,
    NotFoundError,
    OrderError,
    ProductNotFoundError,
    UnavailableError,
    UserNotFoundError,
)
from orderflow.core.listeners import FulfillmentListener
from orderflow.core.logger import get_logger
from orderflow.core.ports import (
    InventoryService,
    OrderRepository,
    PaymentService,
    ProductCatalog,
    UserDirectory,
)
from orderflow.monitoring.tracing import SagaTracer
from orderflow.types import Order, OrderItem, OrderLine, PaymentRecord, SagaState, UserProfile

logger = get_logger(__name__)

ErrorFactory = Callable[[OrderError], OrderError]


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class FulfillmentSaga:
    """
    In-process state of one ``create_order`` call.

    Never persisted and never shared between calls.
    """

    saga_id: str
    user_id: str
    requested: Any
    idempotency_key: str | None = None
    correlation_id: str | None = None
    items: tuple[OrderItem, ...] = ()
    state: SagaState = SagaState.VALIDATING
    history: list[SagaState] = field(default_factory=list)
    order_id: str | None = None
    profile: UserProfile | None = None
    lines: list[OrderLine] = field(default_factory=list)
    total: Decimal = Decimal(0)
    payment: PaymentRecord | None = None
    reserved: list[OrderItem] = field(default_factory=list)
    compensated: bool = False
    compensation_failures: list[CompensationFailure] = field(default_factory=list)
    replayed: bool = False
    started_at: float = field(default_factory=time.monotonic)

    def enter(self, state: SagaState) -> None:
        self.state = state
        self.history.append(state)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at

    @property
    def item_count(self) -> int:
        """Validated items, or the raw request size before validation."""
        if self.items:
            return len(self.items)
        return len(self.requested) if isinstance(self.requested, Sized) else 0


def normalize_items(items: Iterable[Any]) -> tuple[OrderItem, ...]:
    """
    Coerce ``OrderItem`` instances or ``(product_id, quantity)`` pairs.

    Raises:
        InvalidRequestError: Not a list, empty list, missing product id or quantity < 1
    """
    try:
        candidates = list(items)
    except TypeError as e:
        msg = f"Order items must be a list, got {type(items).__name__}"
        raise InvalidRequestError(msg) from e

    normalized: list[OrderItem] = []
    for item in candidates:
        if isinstance(item, OrderItem):
            product_id, quantity = item.product_id, item.quantity
        else:
            try:
                product_id, quantity = item
            except (TypeError, ValueError) as e:
                msg = f"Malformed order item: {item!r}"
                raise InvalidRequestError(msg) from e

        if not isinstance(product_id, str) or not product_id:
            msg = "Order item is missing a product id"
            raise InvalidRequestError(msg, details={"item": repr(item)})
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            msg = f"Quantity must be a positive integer for product {product_id}"
            raise InvalidRequestError(msg, details={"product_id": product_id, "quantity": quantity})

        normalized.append(OrderItem(product_id, quantity))

    if not normalized:
        msg = "Order must contain at least one item"
        raise InvalidRequestError(msg)
    return tuple(normalized)


@contextmanager
def _translate(
    operation: str,
    not_found: ErrorFactory | None = None,
    conflict: ErrorFactory | None = None,
) -> Iterator[None]:
    """
    Map generic port failures onto the outcome of the current step.

    Not-found and conflict use the step's factories when given; every other
    taxonomy failure means the downstream could not be used.
    """
    try:
        yield
    except NotFoundError as e:
        if not_found is None:
            raise DownstreamUnavailableError(operation, str(e)) from e
        raise not_found(e) from e
    except ConflictError as e:
        if conflict is None:
            raise DownstreamUnavailableError(operation, str(e)) from e
        raise conflict(e) from e
    except OrderError as e:
        raise DownstreamUnavailableError(operation, f"{operation} failed: {e.message}") from e


class OrderFulfillmentCoordinator:
    """
    Saga orchestrator for order placement.

    Each ``create_order`` call runs its own saga; many may run concurrently
    against the same ports.

    Args:
        users: Resolves the wallet-bearing profile of a user
        catalog: Price and stock lookup
        inventory: Stock reservation and release
        payments: Wallet charge and refund
        orders: Order persistence
        listeners: Lifecycle listeners (logging, metrics, ...)
        tracer: Opens a span per saga and per step when given
        compensation_timeout: Upper bound for each compensation action
        id_factory: Generates provisional order ids
    """

    def __init__(
        self,
        users: UserDirectory,
        catalog: ProductCatalog,
        inventory: InventoryService,
        payments: PaymentService,
        orders: OrderRepository,
        *,
        listeners: list[FulfillmentListener] | None = None,
        tracer: SagaTracer | None = None,
        compensation_timeout: float | None = 30.0,
        id_factory: Callable[[], str] = _new_id,
    ):
        self.users = users
        self.catalog = catalog
        self.inventory = inventory
        self.payments = payments
        self.orders = orders
        self.listeners = list(listeners or [])
        self.tracer = tracer
        self.compensation_timeout = compensation_timeout
        self._id_factory = id_factory

    async def create_order(
        self,
        user_id: str,
        items: Iterable[Any],
        idempotency_key: str | None = None,
        *,
        correlation_id: str | None = None,
    ) -> Order:
        """
        Place an order for ``user_id``.

        Args:
            user_id: Ordering user
            items: ``OrderItem`` or ``(product_id, quantity)`` pairs
            idempotency_key: Optional client token; a repeated key returns the
                             order created the first time
            correlation_id: Propagated into logs and spans

        Returns:
            The persisted order

        Raises:
            InvalidRequestError: Empty or malformed items, or a key reused by another user
            UserNotFoundError: No profile for the user
            ProductNotFoundError: An item references an unknown product
            InsufficientStockError: Not enough stock at pricing or reservation
            InsufficientBalanceError: Wallet balance lower than the total
            DownstreamUnavailableError: A resource owner could not be reached
            InternalError: Persistence or unexpected failure
        """
        saga = FulfillmentSaga(
            saga_id=_new_id(),
            user_id=user_id,
            requested=items,
            idempotency_key=idempotency_key,
            correlation_id=correlation_id,
        )
        stack = CompensationStack(timeout=self.compensation_timeout)

        await self._notify("on_saga_start", saga)

        with self._saga_span(saga):
            try:
                order = await self._run(saga, stack)
            except Exception as e:
                saga.enter(SagaState.FAILED)
                self._record_outcome(saga, succeeded=False, error=e)
                await self._notify("on_saga_failed", saga, e)
                raise

            saga.enter(SagaState.COMPLETED)
            self._record_outcome(saga, succeeded=True)

        await self._notify("on_saga_complete", saga, order)
        return order

    async def _run(self, saga: FulfillmentSaga, stack: CompensationStack) -> Order:
        try:
            existing = await self._validate(saga)
            if existing is not None:
                return existing

            await self._resolve_user(saga)
            await self._price_items(saga)
            await self._process_payment(saga, stack)
            await self._reserve_stock(saga, stack)
            return await self._persist(saga, stack)

        except DuplicateOrderError as e:
            # Lost a race on the idempotency key: undo our side effects and
            # hand back the order that won.
            await self._compensate(saga, stack)
            with _translate("find_order"):
                existing = await self.orders.find_by_idempotency_key(e.idempotency_key)
            if existing is None:
                raise
            return self._replay(saga, existing)

        except Exception as e:
            failed_state = saga.state
            await self._compensate(saga, stack)
            if isinstance(e, OrderError):
                raise
            msg = f"Unexpected failure while {failed_state.value}"
            raise InternalError(msg, details={"error": str(e)}) from e

    async def _validate(self, saga: FulfillmentSaga) -> Order | None:
        async with self._step(saga, SagaState.VALIDATING):
            if not isinstance(saga.user_id, str) or not saga.user_id:
                msg = "User id is required"
                raise InvalidRequestError(msg)
            saga.items = normalize_items(saga.requested)

            if saga.idempotency_key is None:
                return None

            with _translate("find_order"):
                existing = await self.orders.find_by_idempotency_key(saga.idempotency_key)
            if existing is None:
                return None
            return self._replay(saga, existing)

    def _replay(self, saga: FulfillmentSaga, existing: Order) -> Order:
        if existing.user_id != saga.user_id:
            msg = "Idempotency key was already used by another user"
            raise InvalidRequestError(msg, details={"idempotency_key": saga.idempotency_key})
        logger.info(
            f"Idempotency key {saga.idempotency_key} already fulfilled by order {existing.order_id}"
        )
        saga.order_id = existing.order_id
        saga.replayed = True
        return existing

    async def _resolve_user(self, saga: FulfillmentSaga) -> None:
        async with self._step(saga, SagaState.RESOLVING_USER):
            with _translate("resolve_user", not_found=lambda e: UserNotFoundError(saga.user_id)):
                saga.profile = await self.users.resolve_profile(saga.user_id)
            logger.info(
                f"Resolved user {saga.user_id} to profile {saga.profile.profile_id} "
                f"with balance {saga.profile.balance}"
            )

    async def _price_items(self, saga: FulfillmentSaga) -> None:
        async with self._step(saga, SagaState.PRICING_ITEMS):
            for item in saga.items:
                with _translate(
                    "get_product", not_found=lambda e: ProductNotFoundError(item.product_id)
                ):
                    product = await self.catalog.get_product(item.product_id)

                # Non-binding pre-flight; reservation is the real check.
                if product.stock < item.quantity:
                    raise InsufficientStockError(item.product_id, item.quantity, product.stock)

                line = OrderLine(item.product_id, item.quantity, product.price)
                saga.lines.append(line)
                logger.info(
                    f"Product {item.product_id}: price={product.price} qty={item.quantity} "
                    f"subtotal={line.line_total}"
                )

            saga.total = sum((line.line_total for line in saga.lines), Decimal(0))
            logger.info(f"Order total computed: {saga.total}")

    async def _process_payment(self, saga: FulfillmentSaga, stack: CompensationStack) -> None:
        saga.order_id = self._id_factory()
        profile = saga.profile

        async with self._step(saga, SagaState.PROCESSING_PAYMENT):
            if saga.total <= 0:
                logger.info(f"Order {saga.order_id} has nothing to charge")
                return

            with _translate(
                "process_payment",
                not_found=lambda e: UserNotFoundError(saga.user_id),
                conflict=lambda e: InsufficientBalanceError(saga.user_id, saga.total),
            ):
                saga.payment = await self.payments.charge(
                    saga.order_id, saga.user_id, profile.profile_id, saga.total
                )
            stack.push(
                "refund_payment",
                self.payments.refund,
                saga.order_id,
                saga.user_id,
                profile.profile_id,
                saga.total,
            )
            logger.info(f"Payment of {saga.total} succeeded for order {saga.order_id}")

    async def _reserve_stock(self, saga: FulfillmentSaga, stack: CompensationStack) -> None:
        async with self._step(saga, SagaState.RESERVING_STOCK):
            for item in saga.items:
                with _translate(
                    "reserve_stock",
                    not_found=lambda e: ProductNotFoundError(item.product_id),
                    conflict=lambda e: InsufficientStockError(
                        item.product_id, item.quantity, e.details.get("available")
                    ),
                ):
                    remaining = await self.inventory.reserve(item.product_id, item.quantity)

                saga.reserved.append(item)
                stack.push(
                    f"release_stock:{item.product_id}",
                    self.inventory.release,
                    item.product_id,
                    item.quantity,
                )
                logger.info(
                    f"Reserved {item.quantity} of product {item.product_id}, {remaining} left"
                )

    async def _persist(self, saga: FulfillmentSaga, stack: CompensationStack) -> Order:
        async with self._step(saga, SagaState.PERSISTING):
            order = Order(
                order_id=saga.order_id,
                user_id=saga.user_id,
                total=saga.total,
                lines=tuple(saga.lines),
            )
            try:
                stored = await self.orders.save(order, idempotency_key=saga.idempotency_key)
            except DuplicateOrderError:
                raise
            except UnavailableError as e:
                raise DownstreamUnavailableError("persist_order", str(e)) from e
            except Exception as e:
                msg = f"Failed to persist order {order.order_id}"
                raise InternalError(msg, details={"order_id": order.order_id, "error": str(e)}) from e

            stack.discard()
            logger.info(f"Order {stored.order_id} persisted with total {stored.total}")
            return stored

    async def _compensate(self, saga: FulfillmentSaga, stack: CompensationStack) -> None:
        if not len(stack):
            return

        saga.enter(SagaState.COMPENSATING)
        saga.compensated = True
        logger.warning(
            f"Compensating order {saga.order_id}: {', '.join(reversed(stack.names))}"
        )

        async def observe(action: str, error: Exception | None) -> None:
            await self._notify("on_compensate", saga, action, error)

        with self._step_span(saga, SagaState.COMPENSATING, "compensation"):
            saga.compensation_failures = await stack.unwind(observe)

        if saga.compensation_failures:
            logger.critical(
                f"Order {saga.order_id} left {len(saga.compensation_failures)} compensation(s) "
                f"incomplete: {', '.join(f.name for f in saga.compensation_failures)}"
            )

    @asynccontextmanager
    async def _step(self, saga: FulfillmentSaga, state: SagaState):
        saga.enter(state)
        await self._notify("on_step_enter", saga, state)
        started = time.monotonic()
        try:
            with self._step_span(saga, state):
                yield
        except Exception as e:
            await self._notify("on_step_failure", saga, state, e)
            raise
        await self._notify("on_step_success", saga, state, time.monotonic() - started)

    def _saga_span(self, saga: FulfillmentSaga):
        if self.tracer is None:
            return nullcontext()
        return self.tracer.start_saga_trace(saga.saga_id, saga.user_id, saga.item_count)

    def _step_span(self, saga: FulfillmentSaga, state: SagaState, step_type: str = "action"):
        if self.tracer is None:
            return nullcontext()
        return self.tracer.start_step_trace(saga.saga_id, state.value, step_type)

    def _record_outcome(
        self, saga: FulfillmentSaga, succeeded: bool, error: Exception | None = None
    ) -> None:
        if self.tracer is not None:
            self.tracer.record_saga_completion(saga.order_id, succeeded, saga.elapsed * 1000, error)

    async def _notify(self, event_name: str, *args) -> None:
        """Notify all listeners of an event."""
        for listener in self.listeners:
            try:
                handler = getattr(listener, event_name, None)
                if handler:
                    result = handler(*args)
                    if inspect.iscoroutine(result):
                        await result
            except Exception as e:
                logger.warning(f"Listener {type(listener).__name__}.{event_name} error: {e}")
