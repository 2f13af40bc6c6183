"""
Subscription service.

The service is what applications subclass or instantiate: it owns the
subscription registry, the lifecycle manager and the transport, and exposes
connect/disconnect/reconnect plus declarative subscriptions.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, TypeVar, Union

import aiohttp
from graphql import DocumentNode

from ..events import ClientEvent, EventCallbackManager
from ..utils.signals import ResettableSignal
from .backoff import BackoffFunction, exponential_backoff
from .classifier import CloseClassifier
from .lifecycle import ConnectionLifecycleManager
from .models import Closed, ConnectionState, SubscriptionServiceConfig
from .registry import SubscriptionRegistry, Transformer, Variables
from .transport import GraphQLWebSocketTransport, StreamingTransport, WebSocketConnector

logger = logging.getLogger(__name__)

E = TypeVar("E")

TransportFactory = Callable[["SubscriptionService"], StreamingTransport]


@dataclass(frozen=True)
class Subscription(Generic[E]):
    """
    A declared subscription bound to a service.

    Calling ``subscribe`` with different variables starts independent
    streams; calling it twice with the same variables is a no-op.
    """

    service: SubscriptionService
    name: str
    document: Union[str, DocumentNode]
    event_creator: Callable[[Any], Optional[E]]

    async def subscribe(self, variables: Variables = None) -> None:
        """Subscribe, waiting for the connection if needed."""
        await self.service.subscribe(self.name, self.document, variables, self.event_creator)

    def unsubscribe(self, variables: Variables = None) -> None:
        """Stop the subscription with these variables."""
        self.service.unsubscribe(self.name, variables)


class SubscriptionService:
    """
    GraphQL subscription service with automatic reconnection.

    The service does not connect before ``signal_ready`` was called, which
    lets subclasses finish their own setup (loading credentials, for
    instance). Once connected it reconnects forever with backoff, except
    after a fatal close code, and re-subscribes every registered
    subscription on each new connection.

    Application events are delivered through ``on``: see ``ClientEvent``.
    Payloads of subscriptions arrive as ``ClientEvent.DISPATCH`` after going
    through the subscription's event creator; a creator returning None
    drops the payload.

    Examples:
        ```python
        class CatService(SubscriptionService):
            def __init__(self, tokens):
                super().__init__(SubscriptionServiceConfig(host="wss://api.example.com/graphql"))
                self.tokens = tokens
                self.cat_created = self.make_subscription(
                    "catCreated",
                    '''
                    subscription catCreated($owner: ID!) {
                        catCreated(owner: $owner) { id name }
                    }
                    ''',
                    lambda data: CatCreated(data["catCreated"]),
                )

            async def connection_params(self):
                return {"authorization": f"Bearer {await self.tokens.get()}"}

            def is_token_expired(self, event):
                return event.code == 4403

        service = CatService(tokens)
        service.on(ClientEvent.DISPATCH, store.dispatch)
        service.signal_ready()
        await service.connect()
        await service.cat_created.subscribe({"owner": "1"})
        ```
    """

    def __init__(
        self,
        config: SubscriptionServiceConfig,
        backoff: BackoffFunction = exponential_backoff,
        session: Optional[aiohttp.ClientSession] = None,
        ws_connect: Optional[WebSocketConnector] = None,
        transport_factory: Optional[TransportFactory] = None,
    ):
        """
        Initialize the subscription service.

        Args:
            config: Subscription service configuration
            backoff: Maps the retry count to a wait in seconds
            session: Optional existing aiohttp session to reuse
            ws_connect: Replaces ``session.ws_connect`` to open sockets
            transport_factory: Builds the streaming transport for each
                ``connect``, defaults to ``GraphQLWebSocketTransport``
        """
        self.config = config
        self.backoff = backoff
        self._session = session
        self._ws_connect = ws_connect
        self._transport_factory = transport_factory or self._create_transport

        self.events = EventCallbackManager()
        self.registry = SubscriptionRegistry()
        self.lifecycle = ConnectionLifecycleManager(
            self.registry,
            self.events,
            classifier=CloseClassifier(is_token_expired=self.is_token_expired),
            keep_alive_timeout=config.keep_alive_timeout,
        )

        self._ready = ResettableSignal()
        self._lifecycle_lock = asyncio.Lock()
        self._transport: Optional[StreamingTransport] = None
        self._started = False

    async def __aenter__(self) -> SubscriptionService:
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        exc_tb: Optional[object],
    ) -> None:
        """Async context manager exit."""
        await self.disconnect()

    @property
    def state(self) -> ConnectionState:
        """Get the current connection state."""
        return self.lifecycle.state

    @property
    def is_started(self) -> bool:
        """Check whether ``connect`` has started the transport."""
        return self._started

    def on(self, event: Union[ClientEvent, str], callback: Callable[..., Any]) -> None:
        """Register a callback for an event."""
        self.events.add_callback(event, callback)

    def off(self, event: Union[ClientEvent, str], callback: Callable[..., Any]) -> None:
        """Remove a callback for an event."""
        self.events.remove_callback(event, callback)

    async def connection_params(self) -> Dict[str, Any]:
        """
        Build the ``connection_init`` payload.

        Called before every connection attempt, so credentials refreshed in
        the meantime are picked up on reconnect.
        """
        return {}

    def is_token_expired(self, event: Closed) -> bool:
        """Tell whether a close event means the credential expired."""
        return False

    def signal_ready(self) -> None:
        """Allow ``connect`` to proceed."""
        self._ready.set()

    async def connect(self) -> None:
        """
        Start the connection.

        Waits for ``signal_ready``, then starts the transport. Returns
        without waiting for the connection to be acknowledged.
        """
        if self._started:
            return
        await self._ready.wait()

        async with self._lifecycle_lock:
            if self._started:
                return
            transport = self._transport_factory(self)
            self._transport = transport
            self.lifecycle.attach(transport)
            transport.start()
            self._started = True
            logger.info(f"Subscription service started for {self.config.host}")

    async def disconnect(self) -> None:
        """
        Stop the connection and every stream.

        Registered subscriptions are kept and resume on the next
        ``connect``. Does nothing if the service was not started.
        """
        async with self._lifecycle_lock:
            if not self._started:
                return

            for entry in self.registry.entries_with_handle():
                try:
                    entry.handle.unsubscribe()  # type: ignore[union-attr]
                except Exception as e:
                    logger.debug(f"Error stopping stream {entry.key}: {e}")

            transport = self._transport
            self._transport = None
            if transport is not None:
                try:
                    await transport.dispose()
                except Exception as e:
                    # The transport is being thrown away
                    logger.debug(f"Error disposing transport: {e}")

            await self.lifecycle.detach()
            self.registry.clear_handles()
            self._started = False
            logger.info("Subscription service stopped")

    async def reconnect(self) -> None:
        """Restart the connection without reporting an error."""
        await self.lifecycle.request_restart()

    async def subscribe(
        self,
        name: str,
        document: Union[str, DocumentNode],
        variables: Variables,
        transformer: Transformer,
    ) -> None:
        """
        Subscribe to a stream.

        The subscription is recorded immediately and its stream opens once
        connected. Subscribing twice with the same name and variables is a
        no-op.
        """
        entry, created = self.registry.add(name, document, variables, transformer)
        if not created:
            return

        await self.lifecycle.connected.wait()

        if self.registry.get(entry.key) is entry and entry.handle is None:
            self.lifecycle.open_stream(entry)

    def unsubscribe(self, name: str, variables: Variables = None) -> None:
        """Unsubscribe from a stream. Unknown subscriptions are ignored."""
        self.registry.remove(name, variables)

    def make_subscription(
        self,
        name: str,
        document: Union[str, DocumentNode],
        event_creator: Callable[[Any], Optional[E]],
    ) -> Subscription[E]:
        """
        Declare a subscription.

        Args:
            name: Subscription name, part of the subscription key
            document: Subscription document
            event_creator: Turns the payload ``data`` into an application
                event, or returns None to drop it
        """
        return Subscription(self, name, document, event_creator)

    def get_active_subscriptions(self) -> List[Tuple[str, Variables]]:
        """Get ``(name, variables)`` of every registered subscription."""
        return self.registry.list_active()

    def _create_transport(self, service: SubscriptionService) -> StreamingTransport:
        return GraphQLWebSocketTransport(
            self.config,
            connection_params=self.connection_params,
            should_retry=self.lifecycle.should_retry,
            backoff=self.backoff,
            session=self._session,
            ws_connect=self._ws_connect,
        )
