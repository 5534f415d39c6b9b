"""
Structured logging for order fulfillment sagas

Every log line emitted while a saga runs carries the saga id, the order and
user it concerns, the current step and a correlation id, so a single order
can be followed across services.
"""

import json
import logging
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

from orderflow.types import SagaState

# Fields propagated from the running saga into every record
SAGA_CONTEXT_FIELDS = ("saga_id", "order_id", "user_id", "step_name", "correlation_id")

saga_context: ContextVar[dict[str, Any]] = ContextVar("saga_context", default={})


class SagaJsonFormatter(logging.Formatter):
    """
    One JSON object per record: base fields, the saga context, then any
    saga fields passed through ``extra``.
    """

    _EXTRA_FIELDS = (*SAGA_CONTEXT_FIELDS, "item_count", "duration_ms", "error_code", "error_type")

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }
        context = saga_context.get({})
        entry.update({field: context[field] for field in SAGA_CONTEXT_FIELDS if field in context})
        entry.update(
            {field: getattr(record, field) for field in self._EXTRA_FIELDS if hasattr(record, field)}
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class SagaContextFilter(logging.Filter):
    """Copies the saga context onto each record for plain-text formats."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = saga_context.get({})
        for field in SAGA_CONTEXT_FIELDS:
            setattr(record, field, context.get(field) or ("-" if field == "saga_id" else ""))
        return True


class OrderSagaLogger:
    """
    Saga-aware logger with automatic context propagation
    """

    def __init__(self, name: str = "orderflow.saga"):
        self.logger = logging.getLogger(name)
        if not any(isinstance(f, SagaContextFilter) for f in self.logger.filters):
            self.logger.addFilter(SagaContextFilter())

    def set_saga_context(
        self,
        saga_id: str,
        user_id: str | None = None,
        order_id: str | None = None,
        step_name: str | None = None,
        correlation_id: str | None = None,
    ) -> None:
        """Set saga context for the current task"""
        saga_context.set(
            {
                "saga_id": saga_id,
                "user_id": user_id,
                "order_id": order_id,
                "step_name": step_name,
                "correlation_id": correlation_id or saga_id,
            }
        )

    def update_saga_context(self, **fields: Any) -> None:
        """Merge fields into the current saga context"""
        saga_context.set({**saga_context.get({}), **fields})

    def clear_saga_context(self) -> None:
        saga_context.set({})

    def saga_started(
        self,
        saga_id: str,
        user_id: str,
        item_count: int,
        correlation_id: str | None = None,
    ) -> None:
        self.set_saga_context(saga_id, user_id=user_id, correlation_id=correlation_id)
        self.logger.info(
            f"Order request received for user {user_id} with {item_count} items",
            extra={"saga_id": saga_id, "user_id": user_id, "item_count": item_count},
        )

    def step_started(self, saga_id: str, step_name: str) -> None:
        self.update_saga_context(step_name=step_name)
        self.logger.info(
            f"Step started: {step_name}",
            extra={"saga_id": saga_id, "step_name": step_name},
        )

    def step_completed(self, saga_id: str, step_name: str, duration_ms: float) -> None:
        self.logger.info(
            f"Step completed: {step_name}",
            extra={"saga_id": saga_id, "step_name": step_name, "duration_ms": duration_ms},
        )

    def step_failed(self, saga_id: str, step_name: str, error: Exception) -> None:
        self.logger.error(
            f"Step failed: {step_name} - {error!s}",
            extra={
                "saga_id": saga_id,
                "step_name": step_name,
                "error_type": type(error).__name__,
                "error_code": getattr(error, "code", None),
            },
        )

    def compensation_completed(self, saga_id: str, action: str) -> None:
        self.logger.warning(
            f"Compensation completed: {action}",
            extra={"saga_id": saga_id, "step_name": action},
        )

    def compensation_failed(self, saga_id: str, action: str, error: Exception) -> None:
        """Log compensation failure - critical error"""
        self.logger.critical(
            f"Compensation FAILED: {action} - {error!s}",
            extra={
                "saga_id": saga_id,
                "step_name": action,
                "error_type": type(error).__name__,
            },
        )

    def saga_finished(
        self,
        saga_id: str,
        state: SagaState,
        duration_ms: float,
        order_id: str | None = None,
        error_code: str | None = None,
    ) -> None:
        log_level = logging.INFO if state == SagaState.COMPLETED else logging.WARNING

        self.logger.log(
            log_level,
            f"Saga finished: {state.value}" + (f" - order {order_id}" if order_id else ""),
            extra={
                "saga_id": saga_id,
                "order_id": order_id,
                "state": state.value,
                "duration_ms": duration_ms,
                "error_code": error_code,
            },
        )
        self.clear_saga_context()


def setup_saga_logging(
    log_level: str = "INFO", json_format: bool = True, include_console: bool = True
) -> OrderSagaLogger:
    """
    Set up structured logging for the ``orderflow`` namespace

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON formatting for structured logs
        include_console: Include console handler

    Returns:
        Configured OrderSagaLogger instance
    """
    root_logger = logging.getLogger("orderflow")
    root_logger.setLevel(getattr(logging, log_level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if include_console:
        console_handler = logging.StreamHandler()

        if json_format:
            console_handler.setFormatter(SagaJsonFormatter())
        else:
            console_handler.addFilter(SagaContextFilter())
            console_handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s - %(name)s - %(levelname)s - [%(saga_id)s:%(step_name)s] - %(message)s"
                )
            )

        root_logger.addHandler(console_handler)

    return OrderSagaLogger()
