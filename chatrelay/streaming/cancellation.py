"""Cooperative cancellation for one streaming session.

A CancellationController is a per-session value: the caller creates one,
passes it into the read loop it wants to be able to stop, and calls
cancel() at most once. Read loops wrap every suspension point in
race(), so a loop blocked on a source that never produces still stops
as soon as cancel() is called.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from typing import TypeVar

from chatrelay.errors import StreamCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")

_EXHAUSTED = object()


class CancellationController:
    """Single-shot abort signal shared by a read loop and its transport."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason = ""
        self._callbacks: list[Callable[[str], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def on_cancel(self, callback: Callable[[str], None]) -> None:
        """Register a synchronous callback run inside cancel().

        Registered after cancellation, the callback runs immediately.
        """
        if self.cancelled:
            callback(self._reason)
            return
        self._callbacks.append(callback)

    def cancel(self, reason: str = "cancelled") -> bool:
        """Fire the signal.

        Returns True the first time; later calls are no-ops returning False.
        """
        if self.cancelled:
            return False
        self._reason = reason
        self._event.set()
        logger.debug("Stream cancelled: %s", reason)
        for callback in self._callbacks:
            try:
                callback(reason)
            except Exception:
                logger.exception("Cancellation callback failed")
        return True

    async def wait(self) -> None:
        """Suspend until cancel() is called."""
        await self._event.wait()

    async def race(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless cancellation fires first.

        A result that lands in the same iteration as the cancel is
        discarded.

        Raises:
            StreamCancelled: If cancel() was called before or while waiting.
                The pending awaitable is cancelled and allowed to unwind
                before this returns.
        """
        if self.cancelled:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise StreamCancelled(self._reason)

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                await asyncio.wait({task})

        if self.cancelled:
            if not task.cancelled():
                task.exception()  # mark retrieved
            raise StreamCancelled(self._reason)
        return task.result()

    async def iterate(self, source: AsyncIterable[T]) -> AsyncIterator[T]:
        """Yield from ``source`` with every read raced against cancellation.

        Raises:
            StreamCancelled: As soon as cancel() is called, even while a
                read is pending.
        """
        iterator = aiter(source)

        async def _step():
            try:
                return await anext(iterator)
            except StopAsyncIteration:
                return _EXHAUSTED

        while True:
            item = await self.race(_step())
            if item is _EXHAUSTED:
                return
            yield item
