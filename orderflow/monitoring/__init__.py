"""
Monitoring and observability for order fulfillment

Quick Start:
    >>> from orderflow.monitoring import setup_saga_logging
    >>> logger = setup_saga_logging(json_format=True)

    # Prometheus metrics
    >>> from orderflow.monitoring import PrometheusMetrics, start_metrics_server
    >>> metrics = PrometheusMetrics()
    >>> start_metrics_server(port=8000, registry=metrics.registry)
"""

from .logging import OrderSagaLogger, SagaContextFilter, SagaJsonFormatter, setup_saga_logging
from .metrics import FulfillmentMetrics
from .prometheus import PrometheusMetrics, start_metrics_server
from .tracing import SagaTracer

__all__ = [
    "FulfillmentMetrics",
    "OrderSagaLogger",
    "PrometheusMetrics",
    "SagaContextFilter",
    "SagaJsonFormatter",
    "SagaTracer",
    "setup_saga_logging",
    "start_metrics_server",
]
