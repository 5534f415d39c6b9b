"""
Saga lifecycle listeners.

Listeners observe a fulfillment saga without taking part in it. The
coordinator notifies every listener of each lifecycle event; a listener that
raises is logged and ignored, so observability can never break an order.

Example:
    >>> coordinator = OrderFulfillmentCoordinator(
    ...     ..., listeners=[LoggingListener(), MetricsListener()]
    ... )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from orderflow.core.logger import get_logger
from orderflow.monitoring.logging import OrderSagaLogger
from orderflow.monitoring.metrics import FulfillmentMetrics
from orderflow.types import Order, SagaState

if TYPE_CHECKING:
    from orderflow.core.coordinator import FulfillmentSaga
    from orderflow.monitoring.prometheus import PrometheusMetrics

logger = get_logger(__name__)


class FulfillmentListener:
    """
    Base listener; every hook is a no-op.

    Subclass and override the hooks you care about.
    """

    async def on_saga_start(self, saga: FulfillmentSaga) -> None:
        pass

    async def on_step_enter(self, saga: FulfillmentSaga, step: SagaState) -> None:
        pass

    async def on_step_success(self, saga: FulfillmentSaga, step: SagaState, duration: float) -> None:
        pass

    async def on_step_failure(self, saga: FulfillmentSaga, step: SagaState, error: Exception) -> None:
        pass

    async def on_compensate(self, saga: FulfillmentSaga, action: str, error: Exception | None) -> None:
        pass

    async def on_saga_complete(self, saga: FulfillmentSaga, order: Order) -> None:
        pass

    async def on_saga_failed(self, saga: FulfillmentSaga, error: Exception) -> None:
        pass


class LoggingListener(FulfillmentListener):
    """Writes saga events to the structured saga logger"""

    def __init__(self, saga_logger: OrderSagaLogger | None = None):
        self.saga_logger = saga_logger or OrderSagaLogger()

    async def on_saga_start(self, saga: FulfillmentSaga) -> None:
        self.saga_logger.saga_started(
            saga.saga_id, saga.user_id, saga.item_count, correlation_id=saga.correlation_id
        )

    async def on_step_enter(self, saga: FulfillmentSaga, step: SagaState) -> None:
        self.saga_logger.step_started(saga.saga_id, step.value)

    async def on_step_success(self, saga: FulfillmentSaga, step: SagaState, duration: float) -> None:
        self.saga_logger.step_completed(saga.saga_id, step.value, duration * 1000)

    async def on_step_failure(self, saga: FulfillmentSaga, step: SagaState, error: Exception) -> None:
        self.saga_logger.step_failed(saga.saga_id, step.value, error)

    async def on_compensate(self, saga: FulfillmentSaga, action: str, error: Exception | None) -> None:
        if error is None:
            self.saga_logger.compensation_completed(saga.saga_id, action)
        else:
            self.saga_logger.compensation_failed(saga.saga_id, action, error)

    async def on_saga_complete(self, saga: FulfillmentSaga, order: Order) -> None:
        self.saga_logger.saga_finished(
            saga.saga_id, SagaState.COMPLETED, saga.elapsed * 1000, order_id=order.order_id
        )

    async def on_saga_failed(self, saga: FulfillmentSaga, error: Exception) -> None:
        self.saga_logger.saga_finished(
            saga.saga_id,
            SagaState.FAILED,
            saga.elapsed * 1000,
            order_id=saga.order_id,
            error_code=getattr(error, "code", None),
        )


class MetricsListener(FulfillmentListener):
    """
    Feeds in-process counters and, optionally, Prometheus metrics.
    """

    def __init__(
        self,
        metrics: FulfillmentMetrics | None = None,
        prometheus: PrometheusMetrics | None = None,
    ):
        self.metrics = metrics or FulfillmentMetrics()
        self.prometheus = prometheus

    async def on_saga_start(self, saga: FulfillmentSaga) -> None:
        if self.prometheus is not None:
            self.prometheus.saga_started()

    async def on_step_success(self, saga: FulfillmentSaga, step: SagaState, duration: float) -> None:
        if self.prometheus is not None:
            self.prometheus.record_step_duration(step.value, duration)

    async def on_compensate(self, saga: FulfillmentSaga, action: str, error: Exception | None) -> None:
        if self.prometheus is not None:
            self.prometheus.record_compensation(action, succeeded=error is None)

    async def on_saga_complete(self, saga: FulfillmentSaga, order: Order) -> None:
        self._record(saga, SagaState.COMPLETED, None)

    async def on_saga_failed(self, saga: FulfillmentSaga, error: Exception) -> None:
        self._record(saga, SagaState.FAILED, getattr(error, "code", None))

    def _record(self, saga: FulfillmentSaga, state: SagaState, error_code: str | None) -> None:
        self.metrics.record_execution(state, saga.elapsed, error_code)
        if saga.compensated:
            self.metrics.record_compensation(len(saga.compensation_failures))
        if self.prometheus is not None:
            self.prometheus.saga_finished(state, saga.elapsed, error_code)
