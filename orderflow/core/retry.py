"""
Transport retry policy.

Transient failures (connection errors, timeouts, 408/429/5xx) are retried a
bounded number of times with jittered exponential backoff *before* they reach
the coordinator. Business failures (not found, conflict) are never retried.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from orderflow.core.exceptions import TransientError, UnavailableError
from orderflow.core.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """
    Bounded retries with jittered exponential backoff.

    The delay before retry ``n`` (1-based) is
    ``base_delay * 2 ** (n - 1) + rng() * max_jitter`` seconds.

    Attributes:
        max_retries: Extra attempts after the first one
        base_delay: Base delay in seconds
        max_jitter: Upper bound of the random jitter in seconds
        sleep: Awaitable sleep function (injectable for tests)
        rng: Source of uniform randoms in [0, 1)
    """

    max_retries: int = 3
    base_delay: float = 0.5
    max_jitter: float = 0.5
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep, repr=False)
    rng: Callable[[], float] = field(default=random.random, repr=False)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            msg = "max_retries must be >= 0"
            raise ValueError(msg)

    @classmethod
    def none(cls) -> "RetryPolicy":
        """A policy that never retries."""
        return cls(max_retries=0)

    def delay_for(self, attempt: int) -> float:
        """Backoff delay before retry number ``attempt`` (1-based)."""
        return self.base_delay * (2 ** (attempt - 1)) + self.rng() * self.max_jitter

    async def run(
        self, fn: Callable[[], Awaitable[T]], operation: str = "request"
    ) -> T:
        """
        Call ``fn`` until it succeeds, raises a non-transient error, or the
        retry budget is spent.

        Raises:
            UnavailableError: When every attempt failed with a TransientError
        """
        last_error: TransientError | None = None

        for attempt in range(self.max_retries + 1):
            if attempt:
                delay = self.delay_for(attempt)
                logger.warning(
                    f"Retrying {operation} (attempt {attempt + 1}/{self.max_retries + 1}) "
                    f"in {delay:.2f}s after: {last_error}"
                )
                await self.sleep(delay)
            try:
                return await fn()
            except TransientError as e:
                last_error = e

        msg = f"{operation} failed after {self.max_retries + 1} attempts"
        raise UnavailableError(
            msg, details={"operation": operation, "last_error": str(last_error)}
        ) from last_error
