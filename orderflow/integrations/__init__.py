"""
Web framework integrations.

The FastAPI integration lives in ``orderflow.integrations.fastapi`` and is
imported explicitly so that importing this package does not pull in FastAPI.
"""

from orderflow.integrations._base import (
    CORRELATION_HEADER,
    RequestContext,
    current_request,
    get_correlation_id,
    new_correlation_id,
    request_scope,
)

__all__ = [
    "CORRELATION_HEADER",
    "RequestContext",
    "current_request",
    "get_correlation_id",
    "new_correlation_id",
    "request_scope",
]
