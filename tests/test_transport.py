"""
Tests for the graphql-transport-ws transport against a local aiohttp server.
"""

import asyncio
import json
from functools import partial
from typing import Any, Dict, List, Optional, Tuple

import aiohttp
import pytest
from aiohttp import WSMsgType, web
from aiohttp import test_utils

from resilient_graphql.exceptions import TransientConnectionError
from resilient_graphql.websocket import (
    FATAL_CLOSE_CODES,
    Closed,
    Connected,
    Connecting,
    GraphQLWebSocketTransport,
    Ping,
    Pong,
    SubscriptionServiceConfig,
    TransportError,
)
from resilient_graphql.websocket.models import GRAPHQL_TRANSPORT_WS_PROTOCOL

CAT_CREATED = "subscription catCreated($owner: ID!) { catCreated(owner: $owner) { id } }"


class ServerState:
    """Behaviour and observations of the test server."""

    def __init__(self):
        self.url = ""
        self.connections = 0
        self.received: List[Dict[str, Any]] = []
        self.init_payloads: List[Any] = []
        self.close_on_init: List[Tuple[int, str]] = []
        self.ping_after_ack = False
        self.close_codes: List[Optional[int]] = []

    def messages(self, message_type: str) -> List[Dict[str, Any]]:
        return [m for m in self.received if m.get("type") == message_type]


async def graphql_ws_handler(state: ServerState, request: web.Request) -> web.WebSocketResponse:
    ws = web.WebSocketResponse(protocols=(GRAPHQL_TRANSPORT_WS_PROTOCOL,))
    await ws.prepare(request)
    state.connections += 1

    async for msg in ws:
        if msg.type != WSMsgType.TEXT:
            break
        message = json.loads(msg.data)
        state.received.append(message)
        message_type = message.get("type")

        if message_type == "connection_init":
            state.init_payloads.append(message.get("payload"))
            if state.close_on_init:
                code, reason = state.close_on_init.pop(0)
                await ws.close(code=code, message=reason.encode())
                break
            await ws.send_json({"type": "connection_ack"})
            if state.ping_after_ack:
                await ws.send_json({"type": "ping"})
        elif message_type == "ping":
            await ws.send_json({"type": "pong"})
        elif message_type == "subscribe":
            operation_id = message["id"]
            owner = message["payload"]["variables"]["owner"]
            await ws.send_json(
                {
                    "id": operation_id,
                    "type": "next",
                    "payload": {"data": {"catCreated": {"id": owner}}},
                }
            )
            await ws.send_json({"id": operation_id, "type": "complete"})

    state.close_codes.append(ws.close_code)
    return ws


@pytest.fixture
async def graphql_server():
    """Local graphql-transport-ws server."""
    state = ServerState()
    app = web.Application()
    app.router.add_get("/graphql", partial(graphql_ws_handler, state))
    server = test_utils.TestServer(app)
    await server.start_server()
    state.url = f"ws://{server.host}:{server.port}/graphql"
    yield state
    await server.close()


class RecordingSink:
    """Subscription sink collecting messages."""

    def __init__(self):
        self.payloads: List[Dict[str, Any]] = []
        self.errors: List[Any] = []
        self.completed = asyncio.Event()

    def next(self, payload):
        self.payloads.append(payload)

    def error(self, errors):
        self.errors.append(errors)
        self.completed.set()

    def complete(self):
        self.completed.set()


class ParamsProvider:
    """Connection params recording every call."""

    def __init__(self):
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        return {"authorization": f"Bearer token-{self.calls}"}


def not_fatal(event):
    return not (isinstance(event, Closed) and event.code in FATAL_CLOSE_CODES)


async def collect_until(transport, predicate, timeout=2.0):
    """Collect transport events until one matches."""
    events = []

    async def collect():
        while True:
            event = await transport.events.get()
            events.append(event)
            if predicate(event):
                return

    await asyncio.wait_for(collect(), timeout)
    return events


@pytest.fixture
async def make_transport(graphql_server):
    """Build transports against the test server and dispose them afterwards."""
    transports = []

    def factory(**overrides):
        config_values = {"host": graphql_server.url}
        config_values.update(overrides.pop("config", {}))
        overrides.setdefault("connection_params", ParamsProvider())
        transport = GraphQLWebSocketTransport(
            SubscriptionServiceConfig(**config_values), **overrides
        )
        transports.append(transport)
        return transport

    yield factory

    for transport in transports:
        await transport.dispose()


class TestHandshake:
    """Test connection_init and connection_ack."""

    @pytest.mark.asyncio
    async def test_connects_and_sends_params(self, graphql_server, make_transport):
        transport = make_transport()
        transport.start()

        events = await collect_until(transport, lambda e: isinstance(e, Connected))

        assert events == [Connecting(attempt=0), Connected()]
        assert transport.is_connected
        assert graphql_server.init_payloads == [{"authorization": "Bearer token-1"}]

    @pytest.mark.asyncio
    async def test_fatal_close_stops_reconnecting(self, graphql_server, make_transport):
        graphql_server.close_on_init.append((4401, "Unauthorized"))
        transport = make_transport(should_retry=not_fatal, backoff=lambda retries: 0)
        transport.start()

        events = await collect_until(transport, lambda e: isinstance(e, Closed))
        await asyncio.wait_for(transport._run_task, timeout=1)

        assert events[-1] == Closed(4401, "Unauthorized")
        assert graphql_server.connections == 1
        assert not transport.is_connected

    @pytest.mark.asyncio
    async def test_reconnects_with_fresh_params(self, graphql_server, make_transport):
        graphql_server.close_on_init.append((4500, "Try again"))
        params = ParamsProvider()
        transport = make_transport(connection_params=params, backoff=lambda retries: 0)
        transport.start()

        events = await collect_until(transport, lambda e: isinstance(e, Connected))

        assert events == [
            Connecting(attempt=0),
            Closed(4500, "Try again"),
            Connecting(attempt=1),
            Connected(),
        ]
        assert params.calls == 2
        assert graphql_server.init_payloads == [
            {"authorization": "Bearer token-1"},
            {"authorization": "Bearer token-2"},
        ]

    @pytest.mark.asyncio
    async def test_open_failure_reports_transport_error(self, make_transport):
        async def refuse(*args, **kwargs):
            raise aiohttp.ClientConnectionError("refused")

        transport = make_transport(
            ws_connect=refuse,
            should_retry=lambda event: not isinstance(event, TransportError),
        )
        transport.start()

        events = await collect_until(transport, lambda e: isinstance(e, TransportError))

        assert isinstance(events[-1].error, aiohttp.ClientConnectionError)


class TestOperations:
    """Test subscribe operations."""

    @pytest.mark.asyncio
    async def test_subscribe_receives_next_and_complete(self, graphql_server, make_transport):
        transport = make_transport()
        transport.start()
        await collect_until(transport, lambda e: isinstance(e, Connected))

        sink = RecordingSink()
        transport.subscribe(CAT_CREATED, {"owner": "42"}, sink)
        await asyncio.wait_for(sink.completed.wait(), timeout=2)

        assert sink.payloads == [{"data": {"catCreated": {"id": "42"}}}]
        assert transport.active_operations == 0

        (subscribe,) = graphql_server.messages("subscribe")
        assert subscribe["payload"]["query"] == CAT_CREATED
        assert subscribe["payload"]["variables"] == {"owner": "42"}

    @pytest.mark.asyncio
    async def test_subscribe_requires_connection(self, make_transport):
        transport = make_transport()

        with pytest.raises(TransientConnectionError):
            transport.subscribe(CAT_CREATED, {"owner": "1"}, RecordingSink())


class TestKeepAlive:
    """Test ping and pong handling."""

    @pytest.mark.asyncio
    async def test_client_pings(self, graphql_server, make_transport):
        transport = make_transport(config={"keep_alive": 0.05})
        transport.start()

        events = await collect_until(transport, lambda e: e == Pong(received=True))

        assert Ping(received=False) in events
        assert graphql_server.messages("ping")

    @pytest.mark.asyncio
    async def test_server_ping_is_answered(self, graphql_server, make_transport):
        graphql_server.ping_after_ack = True
        transport = make_transport()
        transport.start()

        events = await collect_until(transport, lambda e: e == Pong(received=False))

        assert Ping(received=True) in events
        await asyncio.sleep(0.05)
        assert graphql_server.messages("pong")


class TestDispose:
    """Test shutting the transport down."""

    @pytest.mark.asyncio
    async def test_dispose_closes_normally(self, graphql_server, make_transport):
        transport = make_transport()
        transport.start()
        await collect_until(transport, lambda e: isinstance(e, Connected))

        await transport.dispose()

        for _ in range(50):
            if graphql_server.close_codes:
                break
            await asyncio.sleep(0.01)
        assert graphql_server.close_codes == [1000]
        assert not transport.is_connected

    @pytest.mark.asyncio
    async def test_close_socket_reports_local_code(self, graphql_server, make_transport):
        transport = make_transport(should_retry=lambda event: False)
        transport.start()
        await collect_until(transport, lambda e: isinstance(e, Connected))

        await transport.close_socket(4205, "Client restart")
        events = await collect_until(transport, lambda e: isinstance(e, Closed))

        assert events[-1] == Closed(4205, "Client restart")
