"""
Execution Cancellation
======================

Cooperative cancellation tokens and the process-wide registry of
running executions.

A token can be linked to a parent: cancelling the parent cancels the
child, cancelling the child leaves the parent untouched. The registry
maps live execution ids to their tokens for cancel-by-id requests. It is
in-memory only; executions orphaned by a restart are repaired through
their persisted status instead.

Version: 0.1.0
"""

import asyncio
import uuid
from collections.abc import Awaitable
from typing import TypeVar

from services.normative_scraper.exceptions import ExecutionCancelledError
from shared.logging import get_logger


logger = get_logger(__name__)

T = TypeVar("T")


class CancellationToken:
    """A cancellation signal observed at explicit check points."""

    def __init__(self, parent: "CancellationToken | None" = None) -> None:
        self._event = asyncio.Event()
        self._children: set[CancellationToken] = set()
        self._parent = parent
        self.reason: str | None = None

        if parent is not None:
            if parent.cancelled:
                self.cancel(parent.reason)
            else:
                parent._children.add(self)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        """Signal cancellation to this token and every linked child."""
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()
        for child in list(self._children):
            child.cancel(reason)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ExecutionCancelledError(self.reason or "Operation was cancelled")

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds, waking up early if cancelled."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except TimeoutError:
            return
        self.raise_if_cancelled()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await ``awaitable`` unless the token fires first.

        When the token wins, the pending work is cancelled and
        ExecutionCancelledError is raised.
        """
        self.raise_if_cancelled()

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()

        if task in done:
            return task.result()
        raise ExecutionCancelledError(self.reason or "Operation was cancelled")

    def dispose(self) -> None:
        """Detach from the parent so the parent no longer references it."""
        if self._parent is not None:
            self._parent._children.discard(self)
            self._parent = None
        self._children.clear()


class CancellationRegistry:
    """Process-wide map of running execution id -> cancellation token."""

    def __init__(self) -> None:
        self._tokens: dict[uuid.UUID, CancellationToken] = {}

    def register(
        self,
        execution_id: uuid.UUID,
        parent: CancellationToken | None = None,
    ) -> CancellationToken:
        """Create a token for an execution, linked to the caller's token."""
        token = CancellationToken(parent=parent)
        self._tokens[execution_id] = token
        return token

    def cancel(self, execution_id: uuid.UUID, reason: str | None = None) -> bool:
        """Signal a running execution. Returns False if it is not registered."""
        token = self._tokens.get(execution_id)
        if token is None:
            return False
        token.cancel(reason)
        logger.info("execution_cancellation_requested", execution_id=str(execution_id))
        return True

    def release(self, execution_id: uuid.UUID) -> None:
        token = self._tokens.pop(execution_id, None)
        if token is not None:
            token.dispose()

    def running(self) -> list[uuid.UUID]:
        return list(self._tokens)

    def __contains__(self, execution_id: object) -> bool:
        return execution_id in self._tokens

    def __len__(self) -> int:
        return len(self._tokens)


execution_registry = CancellationRegistry()
