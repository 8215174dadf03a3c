"""
Deadline enforcement for one in-flight call.

The guard runs the call as its own task. When the deadline passes the task
is cancelled and the guard reports a timeout straight away, without waiting
for the task to acknowledge the cancellation. Whatever the task produces
afterwards is dropped.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from lexiroute.modules.errors import ProviderTimeoutError

logger = logging.getLogger("lexiroute.timeout")

T = TypeVar("T")


class TimeoutGuard:
    """Run coroutines with a hard deadline and cooperative cancellation."""

    def __init__(self, default_timeout: Optional[float] = None):
        """
        Initialize timeout guard.

        Args:
            default_timeout: Seconds used when run() gets no explicit timeout
        """
        self.default_timeout = default_timeout
        self.late_results = 0

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        timeout: Optional[float] = None,
        *,
        label: str = "operation",
    ) -> T:
        """
        Run operation and return its result, or raise on deadline expiry.

        Args:
            operation: Zero-argument coroutine factory
            timeout: Seconds allowed; None falls back to default_timeout
            label: Name used in logs and the timeout message

        Returns:
            Result of the operation

        Raises:
            ProviderTimeoutError: Deadline passed before the operation finished
            asyncio.CancelledError: The caller was cancelled; the operation is cancelled too
        """
        timeout = self.default_timeout if timeout is None else timeout
        if timeout is not None and timeout <= 0:
            raise ProviderTimeoutError(f"{label} timeout: no time budget left", timeout=timeout)

        task = asyncio.ensure_future(operation())

        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
        except asyncio.CancelledError:
            task.cancel()
            task.add_done_callback(self._discard)
            raise

        if task in done:
            return task.result()

        # Deadline passed; signal the operation and stop waiting for it
        task.cancel()
        task.add_done_callback(self._discard)
        logger.warning(f"{label} timed out after {timeout:.3f}s")
        raise ProviderTimeoutError(f"{label} timeout after {timeout:.3f}s", timeout=timeout)

    def _discard(self, task: asyncio.Future) -> None:
        """Consume the outcome of an abandoned task."""
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.debug(f"Discarded late failure from timed out task: {error}")
        else:
            self.late_results += 1
            logger.debug("Discarded late result from timed out task")
