"""
Broadcastable completion primitives.

A ``ResettableSignal`` wraps one asyncio future at a time. Any number of
coroutines can await it; it resolves once, and ``reset()`` swaps in a fresh
unresolved future for the next cycle.
"""

from __future__ import annotations

import asyncio
from typing import Optional


class ResettableSignal:
    """
    Single-producer, multi-consumer completion cell.

    Waiters always await the current future. Resolving an already resolved
    signal is a no-op, so duplicate notifications are harmless.

    Example:
        ```python
        connected = ResettableSignal()

        async def wait_for_connection():
            await connected.wait()

        connected.set()    # wakes every waiter
        connected.reset()  # next waiters block until the next set()
        ```
    """

    def __init__(self) -> None:
        self._future: Optional[asyncio.Future[None]] = None

    def _current(self) -> asyncio.Future[None]:
        # Futures are created lazily so the signal can be built outside a loop
        if self._future is None:
            self._future = asyncio.get_running_loop().create_future()
        return self._future

    @property
    def is_set(self) -> bool:
        """Check whether the current cycle resolved successfully."""
        future = self._future
        return (
            future is not None
            and future.done()
            and not future.cancelled()
            and future.exception() is None
        )

    @property
    def is_done(self) -> bool:
        """Check whether the current cycle resolved, successfully or not."""
        return self._future is not None and self._future.done()

    def future(self) -> asyncio.Future[None]:
        """Get the current future."""
        return self._current()

    async def wait(self) -> None:
        """Wait until the current cycle resolves."""
        await asyncio.shield(self._current())

    def set(self) -> None:
        """Resolve the current cycle successfully."""
        future = self._current()
        if not future.done():
            future.set_result(None)

    def fail(self, error: BaseException) -> None:
        """Resolve the current cycle with an error."""
        future = self._current()
        if not future.done():
            future.set_exception(error)
            # Mark retrieved so an unobserved failure does not warn on GC
            future.exception()

    def reset(self) -> None:
        """Start a new cycle if the current one already resolved."""
        if self._future is not None and self._future.done():
            self._future = None
