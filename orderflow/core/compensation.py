"""
Compensation stack for the fulfillment saga.

Each successful forward step pushes the action that semantically undoes it.
On failure the stack is unwound in reverse order. Unwinding is best-effort:
every action runs once, failures are logged and collected, nothing is
retried and nothing is re-raised, so the original failure is never masked.

Example:
    >>> stack = CompensationStack()
    >>> stack.push("refund_payment", payments.refund, order_id, ...)
    >>> stack.push("release_stock:p1", inventory.release, "p1", 3)
    >>> failures = await stack.unwind()   # release first, then refund
"""

import asyncio
import functools
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from orderflow.core.logger import get_logger

logger = get_logger(__name__)

CompensationObserver = Callable[[str, Exception | None], Awaitable[None]]


@dataclass(frozen=True)
class CompensationAction:
    """A named, zero-argument coroutine factory that undoes one step"""

    name: str
    fn: Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class CompensationFailure:
    """A compensation action that did not complete"""

    name: str
    error: Exception


class CompensationStack:
    """
    LIFO stack of compensating actions for one saga instance.

    Not shared between sagas; each saga run owns its own stack.
    """

    def __init__(self, timeout: float | None = None):
        """
        Args:
            timeout: Per-action timeout in seconds (None = unbounded)
        """
        self.timeout = timeout
        self._actions: list[CompensationAction] = []

    def push(self, name: str, fn: Callable[..., Awaitable[Any]], *args, **kwargs) -> None:
        """Register the compensation for a step that just succeeded."""
        self._actions.append(CompensationAction(name, functools.partial(fn, *args, **kwargs)))

    @property
    def names(self) -> list[str]:
        """Pending action names, bottom of the stack first."""
        return [action.name for action in self._actions]

    def __len__(self) -> int:
        return len(self._actions)

    def discard(self) -> None:
        """Drop every pending action (the saga committed)."""
        self._actions.clear()

    async def unwind(self, observer: CompensationObserver | None = None) -> list[CompensationFailure]:
        """
        Pop and execute every pending action, most recent first.

        Args:
            observer: Optional callback notified with (name, error or None)
                      after each action

        Returns:
            The actions that failed, in execution order
        """
        failures: list[CompensationFailure] = []

        while self._actions:
            action = self._actions.pop()
            error: Exception | None = None
            try:
                if self.timeout is not None:
                    await asyncio.wait_for(action.fn(), timeout=self.timeout)
                else:
                    await action.fn()
                logger.info(f"Compensation completed: {action.name}")
            except Exception as e:
                error = e
                failures.append(CompensationFailure(action.name, e))
                logger.critical(
                    f"Compensation FAILED: {action.name} - {e!s}. Manual intervention may be required.",
                    exc_info=True,
                )

            if observer is not None:
                await observer(action.name, error)

        return failures
