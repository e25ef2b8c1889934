"""Request coalescing for concurrent refreshes.

Provides a guard that lets concurrent callers share a single in-flight
coroutine instead of each issuing the same network call.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _retrieve_exception(task: asyncio.Future) -> None:
    # Marks the failure as seen when every caller has gone away
    if not task.cancelled() and task.exception() is not None:
        logger.debug("In-flight call failed", error=repr(task.exception()))


class SingleFlight(Generic[T]):
    """Coalesce concurrent calls onto one in-flight execution.

    While a call is running, further callers await the same result (or
    exception) instead of starting their own. Once it finishes, the next
    caller starts a fresh execution; results are never cached.
    """

    def __init__(self) -> None:
        self._inflight: asyncio.Future[T] | None = None

    @property
    def in_flight(self) -> bool:
        """Whether an execution is currently running."""
        return self._inflight is not None and not self._inflight.done()

    async def run(self, func: Callable[[], Awaitable[T]]) -> T:
        """Run ``func`` or join the execution already in progress.

        Args:
            func: Zero-argument coroutine function to execute.

        Returns:
            The result of the shared execution.

        Raises:
            Exception: Whatever the shared execution raised.
        """
        if self._inflight is not None and not self._inflight.done():
            logger.debug("Joining in-flight call")
            return await asyncio.shield(self._inflight)

        task = asyncio.ensure_future(func())
        task.add_done_callback(_retrieve_exception)
        self._inflight = task
        try:
            # Shielded so a cancelled caller does not cancel the joiners' work
            return await asyncio.shield(task)
        finally:
            if self._inflight is task and task.done():
                self._inflight = None
