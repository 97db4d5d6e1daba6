"""
Tests for the cancellation token.
"""

import asyncio
import time

import pytest

from agent_orchestrator.cancellation import CancellationToken
from agent_orchestrator.errors import CancellationError, OrchestrationTimeoutError


class TestCancellationToken:
    """Tests for cancel, deadlines and waiting."""

    def test_fresh_token_passes(self):
        """A new token without deadline never raises."""
        token = CancellationToken()
        token.raise_if_cancelled()
        assert token.cancelled is False
        assert token.remaining() is None

    def test_first_reason_wins(self):
        """Cancelling twice keeps the original reason."""
        token = CancellationToken()
        token.cancel("user abort")
        token.cancel("second")

        assert token.cancelled is True
        assert token.reason == "user abort"
        with pytest.raises(CancellationError, match="user abort"):
            token.raise_if_cancelled()

    def test_deadline_expires(self):
        """A passed deadline raises a timeout."""
        token = CancellationToken(timeout=0.01)
        time.sleep(0.02)
        assert token.expired is True
        assert token.remaining() == 0.0
        with pytest.raises(OrchestrationTimeoutError):
            token.raise_if_cancelled()

    def test_cancel_checked_before_deadline(self):
        """Cancellation takes precedence over an expired deadline."""
        token = CancellationToken(timeout=0)
        token.cancel()
        with pytest.raises(CancellationError, match="Cancelled by caller"):
            token.raise_if_cancelled()

    @pytest.mark.asyncio
    async def test_wait_wakes_on_cancel(self):
        """wait() returns once cancel() is called."""
        token = CancellationToken()
        waiter = asyncio.create_task(token.wait())
        await asyncio.sleep(0)
        assert not waiter.done()

        token.cancel()
        await asyncio.wait_for(waiter, timeout=1)
        assert waiter.done()
