"""
Single-flight coordination for credential refresh.

When several in-flight requests discover an expired credential at the same
time, only the first one starts a refresh. Every other caller joins the same
pending future and resumes when that refresh finishes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Tuple

from ..exceptions import CredentialRefreshError

logger = logging.getLogger(__name__)


class RefreshBarrier:
    """
    Guards at most one outstanding credential refresh.

    The barrier is either idle or pending. ``acquire_or_join`` moves it from
    idle to pending and reports the caller as the initiator; later callers
    get the same future back. ``signal_success`` and ``signal_failure``
    resolve that future and return the barrier to idle, so the next expiry
    starts a fresh cycle. Signals received while idle are ignored.

    Example:
        ```python
        barrier = RefreshBarrier()

        waiter, initiator = barrier.acquire_or_join()
        if initiator:
            start_refresh()     # eventually calls barrier.signal_success()
        await waiter
        ```
    """

    def __init__(self) -> None:
        self._pending: Optional[asyncio.Future[None]] = None
        self._generation = 0

    @property
    def is_pending(self) -> bool:
        """Check whether a refresh is in flight."""
        return self._pending is not None

    @property
    def generation(self) -> int:
        """Number of refresh cycles that completed successfully."""
        return self._generation

    def acquire_or_join(self) -> Tuple[asyncio.Future[None], bool]:
        """
        Get the pending refresh future, creating it if the barrier is idle.

        Returns:
            Tuple of the shared future and whether this caller initiated it
        """
        if self._pending is not None:
            return self._pending, False

        self._pending = asyncio.get_running_loop().create_future()
        logger.debug("Credential refresh started")
        return self._pending, True

    def signal_success(self) -> None:
        """Resolve the pending refresh successfully and return to idle."""
        pending = self._pending
        if pending is None:
            return

        self._pending = None
        self._generation += 1
        if not pending.done():
            pending.set_result(None)
        logger.debug("Credential refresh succeeded (generation %d)", self._generation)

    def signal_failure(self, error: Optional[BaseException] = None) -> None:
        """
        Fail the pending refresh and return to idle.

        Args:
            error: Exception delivered to every waiter, defaults to
                ``CredentialRefreshError``
        """
        pending = self._pending
        if pending is None:
            return

        self._pending = None
        if not pending.done():
            pending.set_exception(error or CredentialRefreshError())
            # Waiters may all have gone away; avoid "exception never retrieved"
            pending.exception()
        logger.debug("Credential refresh failed: %s", error)
