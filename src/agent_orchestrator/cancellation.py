"""
Cooperative cancellation token with an optional deadline.

A token is threaded through every strategy and checked at step boundaries.
Nothing is preempted: an in-flight model call finishes, and its result is
discarded once the token reports cancellation.
"""

import asyncio
import time

from .errors import CancellationError, OrchestrationTimeoutError


class CancellationToken:
    """
    Cancellation signal plus wall-clock deadline for one orchestration.

    Args:
        timeout: Seconds until the deadline expires (None for no deadline)
    """

    def __init__(self, timeout: float | None = None):
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self, reason: str = "Cancelled by caller") -> None:
        """Request cancellation. Idempotent; the first reason wins."""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None without a deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        """
        Check the token at a step boundary.

        Raises:
            CancellationError: If cancellation was requested
            OrchestrationTimeoutError: If the deadline has passed
        """
        if self.cancelled:
            raise CancellationError(self._reason or "Cancelled")
        if self.expired:
            raise OrchestrationTimeoutError("Orchestration deadline exceeded")

    async def wait(self) -> None:
        """Block until cancellation is requested."""
        await self._event.wait()
