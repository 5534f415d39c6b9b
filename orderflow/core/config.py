"""
FulfillmentConfig - unified configuration for order fulfillment.

Wires together transport retry settings, downstream service locations, the
ledger storage backend and observability (logging, metrics, tracing).

Example:
    >>> from orderflow.core.config import FulfillmentConfig, configure
    >>>
    >>> config = FulfillmentConfig(
    ...     storage_backend="sqlite",
    ...     data_dir="/var/lib/orderflow",
    ...     max_retries=5,
    ... )
    >>> configure(config)

Example (from environment, honouring a .env file):
    >>> config = FulfillmentConfig.from_env()   # ORDERFLOW_* variables
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from orderflow.core.env import EnvManager
from orderflow.core.retry import RetryPolicy

if TYPE_CHECKING:
    from orderflow.core.listeners import FulfillmentListener
    from orderflow.monitoring.logging import OrderSagaLogger
    from orderflow.monitoring.prometheus import PrometheusMetrics

logger = logging.getLogger(__name__)

STORAGE_BACKENDS = ("memory", "sqlite")


@dataclass
class FulfillmentConfig:
    """
    Configuration for the fulfillment coordinator and its collaborators.

    Attributes:
        max_retries: Extra transport attempts after the first one
        retry_base_delay: Backoff base in seconds
        retry_max_jitter: Upper bound of random jitter added to each backoff
        request_timeout: Per-request HTTP timeout in seconds
        compensation_timeout: Upper bound for a single compensation action
        user_service_url: Base URL of the user service (None = in-process)
        product_service_url: Base URL of the product service (None = in-process)
        payment_service_url: Base URL of the payment service (None = in-process)
        storage_backend: "memory" or "sqlite"
        data_dir: Directory holding the SQLite ledger files
        logging: Attach a LoggingListener (True, or a listener instance) and
                 let entry points install the orderflow log handler
        metrics: Attach a MetricsListener (True, or a listener instance)
        prometheus: Feed the MetricsListener into Prometheus collectors
        metrics_port: Serve the Prometheus registry on this port at startup
        tracing: Open OpenTelemetry spans per saga and step
        log_level: Level of the orderflow log handler
        json_logs: Emit JSON log lines
    """

    max_retries: int = 3
    retry_base_delay: float = 0.5
    retry_max_jitter: float = 0.5
    request_timeout: float = 10.0
    compensation_timeout: float = 30.0

    user_service_url: str | None = None
    product_service_url: str | None = None
    payment_service_url: str | None = None

    storage_backend: str = "memory"
    data_dir: str = "./data"

    logging: bool | FulfillmentListener = True
    metrics: bool | FulfillmentListener = True
    prometheus: bool = False
    metrics_port: int | None = None
    tracing: bool = False
    log_level: str = "INFO"
    json_logs: bool = False

    _listeners: list[FulfillmentListener] = field(default_factory=list, repr=False)
    _prometheus_metrics: PrometheusMetrics | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.storage_backend not in STORAGE_BACKENDS:
            msg = f"Unknown storage backend: {self.storage_backend!r} (expected one of {STORAGE_BACKENDS})"
            raise ValueError(msg)
        if self.max_retries < 0:
            msg = "max_retries must be >= 0"
            raise ValueError(msg)
        self._listeners = self._build_listeners()

    def _build_listeners(self) -> list[FulfillmentListener]:
        from orderflow.core.listeners import FulfillmentListener, LoggingListener, MetricsListener

        listeners: list[FulfillmentListener] = []

        if isinstance(self.logging, FulfillmentListener):
            listeners.append(self.logging)
        elif self.logging:
            listeners.append(LoggingListener())

        if isinstance(self.metrics, FulfillmentListener):
            listeners.append(self.metrics)
        elif self.metrics:
            if self.prometheus:
                from orderflow.monitoring.prometheus import PrometheusMetrics

                self._prometheus_metrics = PrometheusMetrics()
            listeners.append(MetricsListener(prometheus=self._prometheus_metrics))

        return listeners

    @property
    def listeners(self) -> list[FulfillmentListener]:
        """Default listeners built from the observability flags."""
        return list(self._listeners)

    @property
    def prometheus_metrics(self) -> PrometheusMetrics | None:
        """Collectors fed by the default MetricsListener, when ``prometheus`` is on."""
        return self._prometheus_metrics

    def setup_logging(self) -> OrderSagaLogger | None:
        """
        Install the orderflow log handler at ``log_level``.

        Does nothing when logging is switched off.
        """
        if not self.logging:
            return None

        from orderflow.monitoring.logging import setup_saga_logging

        return setup_saga_logging(self.log_level, json_format=self.json_logs)

    def start_metrics_server(self) -> bool:
        """Serve the Prometheus registry on ``metrics_port``; False when there is nothing to serve."""
        if self._prometheus_metrics is None or self.metrics_port is None:
            return False

        from orderflow.monitoring.prometheus import start_metrics_server

        start_metrics_server(self.metrics_port, registry=self._prometheus_metrics.registry)
        return True

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir)

    @property
    def remote(self) -> bool:
        """True when every downstream service is reached over HTTP."""
        return bool(self.user_service_url and self.product_service_url and self.payment_service_url)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay=self.retry_base_delay,
            max_jitter=self.retry_max_jitter,
        )

    @classmethod
    def from_env(cls, env: EnvManager | None = None) -> FulfillmentConfig:
        """
        Build a configuration from ``ORDERFLOW_*`` environment variables.

        Recognised variables: MAX_RETRIES, RETRY_BASE_DELAY, RETRY_MAX_JITTER,
        REQUEST_TIMEOUT, COMPENSATION_TIMEOUT, USER_SERVICE_URL,
        PRODUCT_SERVICE_URL, PAYMENT_SERVICE_URL, STORAGE, DATA_DIR, LOGGING,
        METRICS, PROMETHEUS, METRICS_PORT, TRACING, LOG_LEVEL, JSON_LOGS.
        """
        env = env or EnvManager()
        defaults = cls.__dataclass_fields__

        return cls(
            max_retries=env.get_int("MAX_RETRIES", defaults["max_retries"].default),
            retry_base_delay=env.get_float("RETRY_BASE_DELAY", defaults["retry_base_delay"].default),
            retry_max_jitter=env.get_float("RETRY_MAX_JITTER", defaults["retry_max_jitter"].default),
            request_timeout=env.get_float("REQUEST_TIMEOUT", defaults["request_timeout"].default),
            compensation_timeout=env.get_float(
                "COMPENSATION_TIMEOUT", defaults["compensation_timeout"].default
            ),
            user_service_url=env.get("USER_SERVICE_URL"),
            product_service_url=env.get("PRODUCT_SERVICE_URL"),
            payment_service_url=env.get("PAYMENT_SERVICE_URL"),
            storage_backend=(env.get("STORAGE") or "memory").lower(),
            data_dir=env.get("DATA_DIR") or defaults["data_dir"].default,
            logging=env.get_bool("LOGGING", True),
            metrics=env.get_bool("METRICS", True),
            prometheus=env.get_bool("PROMETHEUS", False),
            metrics_port=env.get_int("METRICS_PORT", 0) or None,
            tracing=env.get_bool("TRACING", False),
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
            json_logs=env.get_bool("JSON_LOGS", False),
        )


# Global configuration instance
_global_config: FulfillmentConfig | None = None


def get_config() -> FulfillmentConfig:
    """Get the global fulfillment configuration."""
    global _global_config
    if _global_config is None:
        _global_config = FulfillmentConfig()
    return _global_config


def configure(config: FulfillmentConfig) -> None:
    """Set the global fulfillment configuration."""
    global _global_config
    _global_config = config
    logger.info(f"Orderflow configured: storage={config.storage_backend}")
