"""
Remote port implementations.
"""

from orderflow.clients.http import (
    HttpInventoryService,
    HttpPaymentService,
    HttpProductCatalog,
    HttpUserDirectory,
    ServiceClient,
    create_remote_coordinator,
)

__all__ = [
    "HttpInventoryService",
    "HttpPaymentService",
    "HttpProductCatalog",
    "HttpUserDirectory",
    "ServiceClient",
    "create_remote_coordinator",
]
