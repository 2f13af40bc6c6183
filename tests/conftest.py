"""
Shared test fixtures and configuration for the resilient_graphql test suite.
"""

import asyncio
from functools import partial
from typing import Any, Dict, List, Optional, Tuple

import pytest

from resilient_graphql import (
    ClientEvent,
    DomainError,
    GraphQLConfig,
    SubscriptionService,
    SubscriptionServiceConfig,
)
from resilient_graphql.exceptions import TransientConnectionError
from resilient_graphql.websocket.models import Closed, Connected, Connecting

GRAPHQL_URL = "https://api.example.com/graphql"
WS_URL = "wss://api.example.com/graphql"


class TokenExpired(DomainError):
    """Server reported an expired access token."""


class InvalidCredentials(DomainError):
    """Server rejected the credentials."""


class QuotaExceeded(DomainError):
    """Server reported an exhausted quota."""

    accepts_details = True


class FakeStreamHandle:
    """Stream handle recorded by the fake transport."""

    def __init__(self, document: Any, variables: Optional[Dict[str, Any]], sink: Any):
        self.document = document
        self.variables = variables
        self.sink = sink
        self.unsubscribed = False

    def unsubscribe(self) -> None:
        self.unsubscribed = True


class FakeStreamingTransport:
    """In-memory streaming transport driven by the test."""

    def __init__(self, queue_size: int = 100):
        self.events: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.started = False
        self.disposed = False
        self.connected = False
        self.streams: List[FakeStreamHandle] = []
        self.close_calls: List[Tuple[int, str]] = []

    @property
    def live_streams(self) -> List[FakeStreamHandle]:
        return [stream for stream in self.streams if not stream.unsubscribed]

    def start(self) -> None:
        self.started = True

    def subscribe(self, document: Any, variables: Optional[Dict[str, Any]], sink: Any) -> FakeStreamHandle:
        if not self.connected:
            raise TransientConnectionError("Not connected")
        handle = FakeStreamHandle(document, variables, sink)
        self.streams.append(handle)
        return handle

    async def close_socket(self, code: int, reason: str = "") -> None:
        self.close_calls.append((code, reason))
        if self.connected:
            self.connected = False
            await self.events.put(Closed(code, reason))

    async def dispose(self) -> None:
        self.disposed = True
        self.connected = False

    # Test helpers

    async def open(self, attempt: int = 0) -> None:
        """Simulate a successful connection attempt."""
        await self.events.put(Connecting(attempt=attempt))
        self.connected = True
        await self.events.put(Connected())

    async def drop(self, code: int = 1006, reason: str = "") -> None:
        """Simulate the server closing the socket."""
        self.connected = False
        await self.events.put(Closed(code, reason))


async def settle(transport: Optional[FakeStreamingTransport] = None, rounds: int = 20) -> None:
    """Let the dispatch loop drain the transport's events."""
    for _ in range(rounds):
        await asyncio.sleep(0)
    if transport is not None:
        while not transport.events.empty():
            await asyncio.sleep(0)
        for _ in range(rounds):
            await asyncio.sleep(0)


class RecordingSubscriptionService(SubscriptionService):
    """Subscription service that records every event it emits."""

    def __init__(self, config: Optional[SubscriptionServiceConfig] = None, **kwargs: Any):
        self.transports: List[FakeStreamingTransport] = []
        kwargs.setdefault("transport_factory", self._make_fake_transport)
        super().__init__(config or SubscriptionServiceConfig(host=WS_URL), **kwargs)
        self.recorded: List[Tuple[ClientEvent, Tuple[Any, ...]]] = []
        for event in ClientEvent:
            self.on(event, partial(self._record, event))

    def _make_fake_transport(self, service: SubscriptionService) -> FakeStreamingTransport:
        transport = FakeStreamingTransport()
        self.transports.append(transport)
        return transport

    @property
    def transport(self) -> FakeStreamingTransport:
        return self.transports[-1]

    def _record(self, event: ClientEvent, *args: Any) -> None:
        self.recorded.append((event, args))

    def names(self) -> List[ClientEvent]:
        return [event for event, _ in self.recorded]

    def payloads(self, event: ClientEvent) -> List[Tuple[Any, ...]]:
        return [args for recorded, args in self.recorded if recorded == event]

    def is_token_expired(self, event: Closed) -> bool:
        return event.code == 4403


@pytest.fixture
def graphql_config() -> GraphQLConfig:
    """Default configuration for the request client."""
    return GraphQLConfig(endpoint=GRAPHQL_URL, timeout=5.0)


@pytest.fixture
def service_config() -> SubscriptionServiceConfig:
    """Subscription service configuration with short liveness timeouts."""
    return SubscriptionServiceConfig(host=WS_URL, keep_alive=0.05, keep_alive_timeout=0.05)


@pytest.fixture
async def service(service_config: SubscriptionServiceConfig):
    """Ready subscription service running on fake transports."""
    service = RecordingSubscriptionService(service_config)
    service.signal_ready()
    yield service
    await service.disconnect()
