"""
Logger lookup for orderflow modules.

Every module asks for its logger through ``get_logger(__name__)``. Loggers
live under the ``orderflow`` namespace so ``setup_saga_logging`` (or any
handler attached to ``logging.getLogger("orderflow")``) sees every saga,
ledger and client message. A structlog or loguru logger can replace them
with ``set_logger`` before the modules are imported.

Usage:
    from orderflow.core.logger import get_logger
    logger = get_logger(__name__)
    logger.info("Order persisted")
"""

import logging
from typing import Any

ROOT_LOGGER = "orderflow"

_custom_logger: Any = None


def set_logger(logger: Any) -> None:
    """
    Route all orderflow logging through ``logger``.

    Args:
        logger: Object with debug/info/warning/error/exception/critical methods,
                or None to go back to standard logging
    """
    global _custom_logger
    _custom_logger = logger


def get_logger(name: str = ROOT_LOGGER) -> Any:
    """
    Logger for ``name``, nested under the ``orderflow`` namespace.

    Names from outside the package (a caller's own module, say) are placed
    below ``orderflow.`` so saga-wide handlers still receive them.
    """
    if _custom_logger is not None:
        return _custom_logger

    if name != ROOT_LOGGER and not name.startswith(f"{ROOT_LOGGER}."):
        name = f"{ROOT_LOGGER}.{name}"

    root = logging.getLogger(ROOT_LOGGER)
    if not root.handlers:
        root.addHandler(logging.NullHandler())

    return logging.getLogger(name)
