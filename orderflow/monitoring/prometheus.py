"""
Prometheus metrics for order fulfillment.

Quick Start:
    >>> from orderflow.monitoring.prometheus import PrometheusMetrics, start_metrics_server
    >>> metrics = PrometheusMetrics()
    >>> start_metrics_server(port=8000, registry=metrics.registry)
    >>>
    >>> from orderflow.core.listeners import MetricsListener
    >>> coordinator = OrderFulfillmentCoordinator(..., listeners=[MetricsListener(prometheus=metrics)])
"""

import logging

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

from orderflow.types import SagaState

logger = logging.getLogger(__name__)


class PrometheusMetrics:
    """
    Prometheus-compatible metrics collector.

    Exposes:
        - <prefix>_saga_total{outcome}: Finished sagas by outcome
        - <prefix>_saga_duration_seconds: Histogram of saga durations
        - <prefix>_step_duration_seconds{step}: Histogram of step durations
        - <prefix>_compensations_total{action,result}: Compensation actions run
        - <prefix>_active_sagas: Gauge of currently running sagas
    """

    def __init__(self, prefix: str = "orderflow", registry: CollectorRegistry | None = None):
        """
        Args:
            prefix: Metric name prefix
            registry: Registry to register into (default: a fresh private one)
        """
        self.registry = registry if registry is not None else CollectorRegistry()
        self._prefix = prefix

        self._saga_total = Counter(
            f"{prefix}_saga_total",
            "Finished fulfillment sagas",
            ["outcome"],
            registry=self.registry,
        )

        self._saga_duration = Histogram(
            f"{prefix}_saga_duration_seconds",
            "Fulfillment saga duration in seconds",
            buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
            registry=self.registry,
        )

        self._step_duration = Histogram(
            f"{prefix}_step_duration_seconds",
            "Fulfillment step duration in seconds",
            ["step"],
            buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0],
            registry=self.registry,
        )

        self._compensations_total = Counter(
            f"{prefix}_compensations_total",
            "Compensation actions executed",
            ["action", "result"],
            registry=self.registry,
        )

        self._active_sagas = Gauge(
            f"{prefix}_active_sagas",
            "Number of currently running sagas",
            registry=self.registry,
        )

    def saga_started(self) -> None:
        self._active_sagas.inc()

    def saga_finished(self, state: SagaState, duration: float, error_code: str | None = None) -> None:
        """
        Record a finished saga.

        The outcome label is ``completed`` or the lowercase error code.
        """
        outcome = "completed" if state == SagaState.COMPLETED else (error_code or "failed").lower()
        self._saga_total.labels(outcome=outcome).inc()
        self._saga_duration.observe(duration)
        self._active_sagas.dec()

    def record_step_duration(self, step: str, duration: float) -> None:
        self._step_duration.labels(step=step).observe(duration)

    def record_compensation(self, action: str, succeeded: bool) -> None:
        # release_stock:<id> would explode label cardinality
        action_kind = action.split(":", 1)[0]
        result = "ok" if succeeded else "failed"
        self._compensations_total.labels(action=action_kind, result=result).inc()


def start_metrics_server(
    port: int = 8000, addr: str = "0.0.0.0", registry: CollectorRegistry | None = None
) -> None:
    """
    Start a Prometheus HTTP metrics server.

    Example:
        >>> start_metrics_server(port=8000)
        >>> # Metrics available at http://localhost:8000/metrics
    """
    if registry is not None:
        start_http_server(port, addr, registry=registry)
    else:
        start_http_server(port, addr)
    logger.info(f"Prometheus metrics server started on port {port}")
