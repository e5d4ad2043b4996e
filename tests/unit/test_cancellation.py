"""
Unit tests for cancellation tokens and the execution registry.
"""

import asyncio
import uuid

import pytest

from services.normative_scraper.cancellation import CancellationRegistry, CancellationToken
from services.normative_scraper.exceptions import ExecutionCancelledError


class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_cancel_sets_reason(self) -> None:
        """Test cancel records the first reason only."""
        token = CancellationToken()

        token.cancel("first")
        token.cancel("second")

        assert token.cancelled is True
        assert token.reason == "first"

    def test_raise_if_cancelled(self) -> None:
        """Test the check point raises once cancelled."""
        token = CancellationToken()
        token.raise_if_cancelled()

        token.cancel("stop")

        with pytest.raises(ExecutionCancelledError, match="stop"):
            token.raise_if_cancelled()

    def test_parent_cancels_child(self) -> None:
        """Test cancellation flows from parent to child."""
        parent = CancellationToken()
        child = CancellationToken(parent=parent)

        parent.cancel("shutdown")

        assert child.cancelled is True
        assert child.reason == "shutdown"

    def test_child_does_not_cancel_parent(self) -> None:
        """Test cancellation does not flow upwards."""
        parent = CancellationToken()
        child = CancellationToken(parent=parent)

        child.cancel()

        assert parent.cancelled is False

    def test_child_of_cancelled_parent(self) -> None:
        """Test a child linked to a cancelled parent starts cancelled."""
        parent = CancellationToken()
        parent.cancel("already")

        child = CancellationToken(parent=parent)

        assert child.cancelled is True

    def test_dispose_detaches_from_parent(self) -> None:
        """Test a disposed child no longer follows its parent."""
        parent = CancellationToken()
        child = CancellationToken(parent=parent)

        child.dispose()
        parent.cancel()

        assert child.cancelled is False

    @pytest.mark.asyncio
    async def test_sleep_wakes_on_cancel(self) -> None:
        """Test sleep returns early with ExecutionCancelledError."""
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)

        with pytest.raises(ExecutionCancelledError):
            await token.sleep(30)

    @pytest.mark.asyncio
    async def test_sleep_times_out_normally(self) -> None:
        """Test sleep returns quietly when not cancelled."""
        token = CancellationToken()

        await token.sleep(0.01)

        assert token.cancelled is False

    @pytest.mark.asyncio
    async def test_guard_returns_result(self) -> None:
        """Test guard passes through the awaited value."""
        token = CancellationToken()

        async def work() -> int:
            return 42

        assert await token.guard(work()) == 42

    @pytest.mark.asyncio
    async def test_guard_cancels_pending_work(self) -> None:
        """Test guard abandons work when the token fires."""
        token = CancellationToken()
        finished = asyncio.Event()

        async def slow() -> None:
            try:
                await asyncio.sleep(30)
            finally:
                finished.set()

        asyncio.get_running_loop().call_later(0.01, token.cancel, "stop")

        with pytest.raises(ExecutionCancelledError):
            await token.guard(slow())

        await asyncio.wait_for(finished.wait(), timeout=1)

    @pytest.mark.asyncio
    async def test_guard_propagates_errors(self) -> None:
        """Test errors of the guarded work reach the caller."""
        token = CancellationToken()

        async def broken() -> None:
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            await token.guard(broken())


class TestCancellationRegistry:
    """Tests for CancellationRegistry."""

    def test_register_and_cancel(self) -> None:
        """Test cancel signals the registered token."""
        registry = CancellationRegistry()
        execution_id = uuid.uuid4()
        token = registry.register(execution_id)

        assert execution_id in registry
        assert registry.cancel(execution_id, reason="user") is True
        assert token.cancelled is True
        assert token.reason == "user"

    def test_cancel_unknown(self) -> None:
        """Test cancel of an unknown id returns False."""
        assert CancellationRegistry().cancel(uuid.uuid4()) is False

    def test_release(self) -> None:
        """Test released executions can no longer be cancelled."""
        registry = CancellationRegistry()
        execution_id = uuid.uuid4()
        registry.register(execution_id)

        registry.release(execution_id)
        registry.release(execution_id)

        assert len(registry) == 0
        assert registry.running() == []
        assert registry.cancel(execution_id) is False

    def test_registered_token_follows_caller(self) -> None:
        """Test the caller token cancels the registered token."""
        registry = CancellationRegistry()
        caller = CancellationToken()
        token = registry.register(uuid.uuid4(), parent=caller)

        caller.cancel()

        assert token.cancelled is True
