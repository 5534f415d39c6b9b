"""
Request context shared by the HTTP surface and the HTTP clients.

The FastAPI middleware opens a ``RequestContext`` for every inbound request;
``ServiceClient`` reads it back and forwards the correlation id, so one
order can be followed through the user, product and payment services.
"""

import uuid
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass

CORRELATION_HEADER = "X-Correlation-ID"

_current: ContextVar["RequestContext | None"] = ContextVar("orderflow_request", default=None)


def new_correlation_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class RequestContext:
    """Identity of the request currently being served."""

    correlation_id: str

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "RequestContext":
        """Adopt the caller's correlation id, or mint one."""
        return cls(correlation_id=headers.get(CORRELATION_HEADER) or new_correlation_id())

    def outgoing_headers(self) -> dict[str, str]:
        return {CORRELATION_HEADER: self.correlation_id}


def current_request() -> RequestContext | None:
    return _current.get()


@contextmanager
def request_scope(context: RequestContext) -> Iterator[RequestContext]:
    """Make ``context`` current; the previous one is restored on exit."""
    token = _current.set(context)
    try:
        yield context
    finally:
        _current.reset(token)


def get_correlation_id() -> str:
    """
    Correlation id of the current request.

    Outside a request (CLI, direct library use) every call mints a new id.
    """
    context = _current.get()
    return context.correlation_id if context is not None else new_correlation_id()
