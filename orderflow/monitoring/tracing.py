"""
Distributed tracing for fulfillment sagas

One span per saga and one child span per step, on the OpenTelemetry API.
Without a configured tracer provider the API hands out non-recording spans,
so tracing costs nothing until an SDK is installed and set up.

Quick Start:
    >>> from orderflow.monitoring.tracing import SagaTracer
    >>> tracer = SagaTracer("order-service")
    >>> with tracer.start_saga_trace("saga-1", "user-1", item_count=2):
    ...     with tracer.start_step_trace("saga-1", "processing_payment"):
    ...         ...
"""

from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator


class SagaTracer:
    """
    Span factory for saga execution

    Example:
        >>> tracer = SagaTracer("order-service")
        >>> with tracer.start_saga_trace("saga-1", "user-1", 3) as span:
        ...     pass
    """

    def __init__(
        self,
        service_name: str = "orderflow",
        tracer_provider: trace.TracerProvider | None = None,
    ):
        self.service_name = service_name
        self.tracer = trace.get_tracer(__name__, tracer_provider=tracer_provider)

    @contextmanager
    def start_saga_trace(
        self,
        saga_id: str,
        user_id: str,
        item_count: int,
        parent_context: dict[str, str] | None = None,
    ):
        """
        Start the root span of a fulfillment saga

        Args:
            saga_id: Saga identifier
            user_id: Ordering user
            item_count: Number of requested items
            parent_context: W3C trace headers of the caller, if any
        """
        context = TraceContextTextMapPropagator().extract(parent_context) if parent_context else None

        with self.tracer.start_as_current_span(
            name="orderflow.create_order",
            context=context,
            kind=trace.SpanKind.INTERNAL,
            record_exception=False,
            set_status_on_exception=False,
        ) as span:
            span.set_attributes(
                {
                    "saga.id": saga_id,
                    "saga.user_id": user_id,
                    "saga.item_count": item_count,
                    "saga.service": self.service_name,
                }
            )
            try:
                yield span
            except Exception as e:
                span.set_status(Status(StatusCode.ERROR, str(e)))
                span.record_exception(e)
                raise

    @contextmanager
    def start_step_trace(self, saga_id: str, step_name: str, step_type: str = "action"):
        """
        Start a child span for one saga step

        Args:
            saga_id: Saga identifier
            step_name: Step name
            step_type: "action" or "compensation"
        """
        with self.tracer.start_as_current_span(
            name=f"orderflow.step.{step_type}.{step_name}",
            kind=trace.SpanKind.INTERNAL,
            record_exception=False,
            set_status_on_exception=False,
        ) as span:
            span.set_attributes(
                {
                    "saga.id": saga_id,
                    "saga.step.name": step_name,
                    "saga.step.type": step_type,
                }
            )
            try:
                yield span
            except Exception as e:
                span.set_status(Status(StatusCode.ERROR, str(e)))
                span.record_exception(e)
                raise

    def record_saga_completion(
        self,
        order_id: str | None,
        succeeded: bool,
        duration_ms: float,
        error: Exception | None = None,
    ) -> None:
        """Record the saga outcome on the current span"""
        current_span = trace.get_current_span()
        if not current_span.is_recording():
            return

        current_span.set_attributes(
            {
                "saga.order_id": order_id or "",
                "saga.duration_ms": duration_ms,
            }
        )
        if succeeded:
            current_span.set_status(Status(StatusCode.OK))
        else:
            code = getattr(error, "code", "INTERNAL")
            current_span.set_status(Status(StatusCode.ERROR, f"Saga failed: {code}"))

    def get_trace_context(self) -> dict[str, str]:
        """
        Current trace context as W3C headers for downstream calls
        """
        carrier: dict[str, Any] = {}
        TraceContextTextMapPropagator().inject(carrier)
        return carrier
