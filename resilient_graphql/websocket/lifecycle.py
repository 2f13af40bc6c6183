"""
Connection lifecycle management.

The lifecycle manager is the only consumer of the transport's event queue.
All connection state transitions happen in its dispatch loop, so the state,
the connected signal and the registry's stream handles always change
together.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Coroutine, Deque, Dict, List, Optional, Set

from ..events import ClientEvent, EventCallbackManager
from ..exceptions import (
    FatalConnectionError,
    SubscriptionError,
    TransientConnectionError,
)
from ..utils.signals import ResettableSignal
from .classifier import CloseClassifier
from .models import (
    PING_TIMEOUT_CLOSE_CODE,
    RESTART_CLOSE_CODE,
    CloseCategory,
    Closed,
    Connected,
    Connecting,
    ConnectionState,
    Ping,
    Pong,
    TransportError,
    TransportEvent,
    describe_close,
)
from .registry import StreamHandle, SubscriptionEntry, SubscriptionRegistry
from .transport import StreamingTransport

logger = logging.getLogger(__name__)


class _EntrySink:
    """Delivers the messages of one stream to the application."""

    def __init__(self, manager: ConnectionLifecycleManager, entry: SubscriptionEntry):
        self.manager = manager
        self.entry = entry
        self.handle: Optional[StreamHandle] = None

    def next(self, payload: Dict[str, Any]) -> None:
        errors = payload.get("errors")
        if errors:
            self.manager.events.emit(
                ClientEvent.SUBSCRIPTION_ERROR, SubscriptionError(self.entry.key, errors)
            )
            return

        event = self.entry.transform(payload.get("data"))
        if event is None:
            return
        self.manager.events.emit(ClientEvent.DISPATCH, event)

    def error(self, errors: List[Dict[str, Any]]) -> None:
        self._release()
        self.manager.events.emit(
            ClientEvent.SUBSCRIPTION_ERROR, SubscriptionError(self.entry.key, errors)
        )

    def complete(self) -> None:
        logger.debug(f"Server completed subscription {self.entry.key}")
        self._release()

    def _release(self) -> None:
        # The stream ended server side; the entry gets a new one on the next connection
        if self.handle is not None and self.entry.handle is self.handle:
            self.entry.handle = None


class ConnectionLifecycleManager:
    """
    State machine for the streaming connection.

    States move ``disconnected -> connecting -> connected -> disconnected``
    as the transport reports events. On every connection the manager opens
    a stream for each registered subscription that has none, in registration
    order. Every close is classified as fatal, credential expired or
    transient and surfaced as exactly one event; fatal closes also veto the
    transport's reconnection through ``should_retry``.

    While connected, every ping the transport sends stays outstanding until
    a pong acknowledges it, oldest first. The watchdog always runs against
    the oldest outstanding ping, so further pings never extend its deadline.
    Each pong measures latency; a ping left unacknowledged past the timeout
    closes the socket with the ping timeout code and the transport
    reconnects.

    A restart requested before the connection is up is deferred: the next
    connection is closed with the restart code as soon as it opens. That
    close is not reported as an error.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        events: EventCallbackManager,
        classifier: Optional[CloseClassifier] = None,
        keep_alive_timeout: float = 5.0,
    ):
        """
        Initialize the lifecycle manager.

        Args:
            registry: Subscriptions to keep streaming
            events: Receives the events surfaced to the application
            classifier: Close event classifier
            keep_alive_timeout: Time to wait for a pong in seconds
        """
        self.registry = registry
        self.events = events
        self.classifier = classifier or CloseClassifier()
        self.keep_alive_timeout = keep_alive_timeout

        self.connected = ResettableSignal()
        self._state = ConnectionState.DISCONNECTED
        self._transport: Optional[StreamingTransport] = None

        self._restart_requested = False
        self._restarting = False
        self._pings_sent_at: Deque[float] = deque()

        self._dispatch_task: Optional[asyncio.Task[None]] = None
        self._watchdog_task: Optional[asyncio.Task[None]] = None
        self._tasks: Set[asyncio.Task[Any]] = set()

    @property
    def state(self) -> ConnectionState:
        """Get the current connection state."""
        return self._state

    @property
    def transport(self) -> Optional[StreamingTransport]:
        """Get the attached transport."""
        return self._transport

    @property
    def restart_pending(self) -> bool:
        """Check whether a restart waits for the next connection."""
        return self._restart_requested

    def should_retry(self, event: TransportEvent) -> bool:
        """Veto reconnection after fatal closes."""
        if isinstance(event, Closed) and self.classifier.is_fatal(event):
            return False
        return True

    def attach(self, transport: StreamingTransport) -> None:
        """Start consuming the events of a transport."""
        self._transport = transport
        self._dispatch_task = asyncio.create_task(
            self._dispatch_loop(transport), name=f"graphql-ws-lifecycle-{id(self)}"
        )

    async def detach(self) -> None:
        """Stop consuming events and return to ``disconnected``."""
        tasks = [self._dispatch_task, self._watchdog_task, *self._tasks]
        for task in tasks:
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._dispatch_task = None
        self._watchdog_task = None
        self._tasks.clear()
        self._pings_sent_at.clear()
        self._transport = None
        self._restarting = False
        self._restart_requested = False

        if self._state != ConnectionState.DISCONNECTED:
            self._state = ConnectionState.DISCONNECTED
            self.events.emit(ClientEvent.DISCONNECTED)
        self.connected.reset()

    async def request_restart(self) -> None:
        """
        Restart the connection without reporting an error.

        If the connection is up it is closed right away with the restart
        code. Otherwise the restart happens once the next connection opens.
        """
        transport = self._transport
        if self._state == ConnectionState.CONNECTED and transport is not None:
            logger.info("Restarting connection")
            self._restarting = True
            await transport.close_socket(RESTART_CLOSE_CODE, "Client restart")
        else:
            logger.debug("Restart deferred until connected")
            self._restart_requested = True

    def open_stream(self, entry: SubscriptionEntry) -> bool:
        """
        Open the stream of a subscription on the current connection.

        Returns:
            Whether a stream was opened
        """
        transport = self._transport
        if transport is None or self._state != ConnectionState.CONNECTED:
            return False

        sink = _EntrySink(self, entry)
        try:
            handle = transport.subscribe(entry.document, entry.variables, sink)
        except TransientConnectionError as e:
            # Replayed on the next connection
            logger.debug(f"Could not open stream for {entry.key}: {e}")
            return False

        sink.handle = handle
        entry.handle = handle
        return True

    async def _dispatch_loop(self, transport: StreamingTransport) -> None:
        while True:
            event = await transport.events.get()
            try:
                self.handle(event)
            except Exception as e:
                logger.error(f"Error handling transport event {event}: {e}")

    def handle(self, event: TransportEvent) -> None:
        """Apply one transport event to the state machine."""
        if isinstance(event, Connecting):
            self._on_connecting(event)
        elif isinstance(event, Connected):
            self._on_connected()
        elif isinstance(event, Closed):
            self._on_closed(event)
        elif isinstance(event, TransportError):
            self._on_transport_error(event)
        elif isinstance(event, Ping):
            self._on_ping(event)
        elif isinstance(event, Pong):
            self._on_pong(event)

    def _on_connecting(self, event: Connecting) -> None:
        logger.debug(f"Connecting (attempt {event.attempt})")
        self._state = ConnectionState.CONNECTING
        self.events.emit(ClientEvent.CONNECTING)

    def _on_connected(self) -> None:
        self._state = ConnectionState.CONNECTED
        self.events.emit(ClientEvent.CONNECTED)

        if self._restart_requested:
            self._restart_requested = False
            self._restarting = True
            logger.info("Restarting connection requested before it opened")
            self._close_socket(RESTART_CLOSE_CODE, "Client restart")
            return

        self.connected.set()
        self._replay()

    def _replay(self) -> None:
        pending = self.registry.entries_without_handle()
        opened = sum(1 for entry in pending if self.open_stream(entry))
        if pending:
            logger.info(f"Re-established {opened}/{len(pending)} subscriptions")

    def _on_closed(self, event: Closed) -> None:
        self._leave_connected()

        if event.code == RESTART_CLOSE_CODE and self._restarting:
            self._restarting = False
            logger.info("Connection closed for restart")
            return

        category = self.classifier.classify(event)
        description = describe_close(event.code, event.reason)

        if category == CloseCategory.FATAL:
            logger.error(f"Connection closed with fatal code {description}")
            self.events.emit(
                ClientEvent.FATAL_ERROR,
                FatalConnectionError(
                    f"Connection closed: {description}", code=event.code, reason=event.reason
                ),
            )
        elif category == CloseCategory.CREDENTIAL_EXPIRED:
            logger.info(f"Connection closed because the credential expired: {description}")
            self.events.emit(ClientEvent.CREDENTIAL_EXPIRED, event)
        else:
            logger.warning(f"Connection lost: {description}")
            self.events.emit(
                ClientEvent.SOCKET_ERROR,
                TransientConnectionError(
                    f"Connection lost: {description}", code=event.code, reason=event.reason
                ),
            )

    def _on_transport_error(self, event: TransportError) -> None:
        self._leave_connected()
        self.events.emit(
            ClientEvent.SOCKET_ERROR,
            TransientConnectionError(
                f"Connection failed: {event.error}", original_error=event.error
            ),
        )

    def _leave_connected(self) -> None:
        self._state = ConnectionState.DISCONNECTED
        self.connected.reset()
        self.registry.clear_handles()
        self._stop_watchdog()
        self._pings_sent_at.clear()
        self.events.emit(ClientEvent.DISCONNECTED)

    def _on_ping(self, event: Ping) -> None:
        if event.received or self._state != ConnectionState.CONNECTED:
            return
        self._pings_sent_at.append(asyncio.get_running_loop().time())
        if self._watchdog_task is None:
            self._start_watchdog(self.keep_alive_timeout)

    def _on_pong(self, event: Pong) -> None:
        if not event.received or not self._pings_sent_at:
            return
        now = asyncio.get_running_loop().time()
        sent_at = self._pings_sent_at.popleft()
        self.events.emit(ClientEvent.LATENCY_MEASURED, (now - sent_at) * 1000)

        self._stop_watchdog()
        if self._pings_sent_at:
            oldest = self._pings_sent_at[0]
            self._start_watchdog(max(0.0, self.keep_alive_timeout - (now - oldest)))

    def _start_watchdog(self, delay: float) -> None:
        self._watchdog_task = asyncio.create_task(
            self._watchdog(delay), name=f"graphql-ws-watchdog-{id(self)}"
        )

    async def _watchdog(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._watchdog_task = None
        if self._state == ConnectionState.CONNECTED:
            logger.warning(f"No pong within {self.keep_alive_timeout}s, closing socket")
            self._close_socket(PING_TIMEOUT_CLOSE_CODE, "Ping timeout")

    def _stop_watchdog(self) -> None:
        if self._watchdog_task and not self._watchdog_task.done():
            self._watchdog_task.cancel()
        self._watchdog_task = None

    def _close_socket(self, code: int, reason: str) -> None:
        """Close the socket without blocking the dispatch loop."""
        transport = self._transport
        if transport is not None:
            self._spawn(transport.close_socket(code, reason))

    def _spawn(self, coroutine: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coroutine)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
