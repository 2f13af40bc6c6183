"""
Streaming transport for subscriptions.

This module implements the graphql-transport-ws protocol on top of aiohttp
WebSockets. The transport owns an always-retrying connection loop and reports
everything that happens to the socket as lifecycle events on a bounded
queue; deciding what those events mean is left to the lifecycle manager.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Set, Union

import aiohttp
from aiohttp import WSMsgType
from graphql import DocumentNode, print_ast

from ..exceptions import TransientConnectionError
from .backoff import BackoffFunction, exponential_backoff
from .models import (
    ABNORMAL_CLOSE_CODE,
    ACK_TIMEOUT_CLOSE_CODE,
    GRAPHQL_TRANSPORT_WS_PROTOCOL,
    NORMAL_CLOSE_CODE,
    Closed,
    Connected,
    Connecting,
    Ping,
    Pong,
    SubscriptionServiceConfig,
    TransportError,
    TransportEvent,
    describe_close,
)
from .registry import StreamHandle

logger = logging.getLogger(__name__)

ConnectionParamsProvider = Callable[[], Awaitable[Dict[str, Any]]]
RetryPredicate = Callable[[TransportEvent], bool]
WebSocketConnector = Callable[..., Awaitable[aiohttp.ClientWebSocketResponse]]


class SubscriptionSink(Protocol):
    """Receives the messages of one subscription."""

    def next(self, payload: Dict[str, Any]) -> None:
        ...

    def error(self, errors: List[Dict[str, Any]]) -> None:
        ...

    def complete(self) -> None:
        ...


class StreamingTransport(Protocol):
    """Duplex transport driven by the lifecycle manager."""

    events: "asyncio.Queue[TransportEvent]"

    def start(self) -> None:
        ...

    def subscribe(
        self,
        document: Union[str, DocumentNode],
        variables: Optional[Dict[str, Any]],
        sink: SubscriptionSink,
    ) -> StreamHandle:
        ...

    async def close_socket(self, code: int, reason: str = "") -> None:
        ...

    async def dispose(self) -> None:
        ...


@dataclass
class _Operation:
    id: str
    sink: SubscriptionSink


class OperationHandle:
    """Handle of one subscribe operation on the current socket."""

    def __init__(self, transport: GraphQLWebSocketTransport, operation_id: str):
        self._transport = transport
        self.operation_id = operation_id

    def unsubscribe(self) -> None:
        """Stop the operation, telling the server if the socket is still open."""
        self._transport._complete(self.operation_id)


class GraphQLWebSocketTransport:
    """
    graphql-transport-ws client transport.

    Once started, the transport keeps a connection open until disposed:

    - every attempt fetches fresh connection parameters for ``connection_init``
    - a successful ``connection_ack`` resets the retry counter
    - after the socket closes, ``should_retry`` may veto further attempts,
      otherwise the backoff function decides how long to wait
    - while connected, a ping is sent every ``keep_alive`` seconds

    Operations do not survive the socket they were started on. Re-subscribing
    after a reconnect is the caller's job.

    Example:
        ```python
        transport = GraphQLWebSocketTransport(
            SubscriptionServiceConfig(host="wss://api.example.com/graphql"),
            connection_params=get_params,
        )
        transport.start()

        while True:
            event = await transport.events.get()
            ...
        ```
    """

    def __init__(
        self,
        config: SubscriptionServiceConfig,
        connection_params: ConnectionParamsProvider,
        should_retry: Optional[RetryPredicate] = None,
        backoff: BackoffFunction = exponential_backoff,
        session: Optional[aiohttp.ClientSession] = None,
        ws_connect: Optional[WebSocketConnector] = None,
    ):
        """
        Initialize the transport.

        Args:
            config: Subscription service configuration
            connection_params: Coroutine function returning the
                ``connection_init`` payload
            should_retry: Returns False to stop reconnecting after an event
            backoff: Maps the retry count to a wait in seconds
            session: Optional existing aiohttp session to reuse
            ws_connect: Replaces ``session.ws_connect`` to open sockets
        """
        self.config = config
        self.connection_params = connection_params
        self.should_retry = should_retry or (lambda event: True)
        self.backoff = backoff
        self.events: asyncio.Queue[TransportEvent] = asyncio.Queue(
            maxsize=config.event_queue_size
        )

        self._session: Optional[aiohttp.ClientSession] = session
        self._external_session = session is not None
        self._ws_connect = ws_connect

        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._acknowledged = False
        self._acknowledged_once = False
        self._handshake: Optional[asyncio.Event] = None
        self._local_close: Optional[Closed] = None
        self._remote_close: Optional[Closed] = None

        self._operations: Dict[str, _Operation] = {}
        self._operation_ids = itertools.count(1)

        self._run_task: Optional[asyncio.Task[None]] = None
        self._keep_alive_task: Optional[asyncio.Task[None]] = None
        self._send_tasks: Set[asyncio.Task[None]] = set()
        self._disposed = False

    @property
    def is_connected(self) -> bool:
        """Check whether an acknowledged socket is open."""
        return self._acknowledged and self._ws is not None and not self._ws.closed

    @property
    def active_operations(self) -> int:
        """Get the number of operations on the current socket."""
        return len(self._operations)

    def start(self) -> None:
        """Start the connection loop."""
        if self._run_task is not None or self._disposed:
            return
        self._run_task = asyncio.create_task(
            self._run_loop(), name=f"graphql-ws-transport-{id(self)}"
        )

    def subscribe(
        self,
        document: Union[str, DocumentNode],
        variables: Optional[Dict[str, Any]],
        sink: SubscriptionSink,
    ) -> OperationHandle:
        """
        Start a subscribe operation on the current socket.

        Raises:
            TransientConnectionError: If no acknowledged socket is open
        """
        ws = self._ws
        if ws is None or ws.closed or not self._acknowledged:
            raise TransientConnectionError("Not connected")

        operation_id = str(next(self._operation_ids))
        self._operations[operation_id] = _Operation(operation_id, sink)

        query = document if isinstance(document, str) else print_ast(document)
        self._spawn_send(
            ws,
            {
                "id": operation_id,
                "type": "subscribe",
                "payload": {"query": query, "variables": variables or {}},
            },
        )
        return OperationHandle(self, operation_id)

    async def close_socket(self, code: int, reason: str = "") -> None:
        """
        Close the current socket with the given code.

        The close is reported with this code and reason even if the server
        answers the close handshake with a different one.
        """
        ws = self._ws
        if ws is None or ws.closed:
            return
        logger.debug(f"Closing socket: {describe_close(code, reason)}")
        self._local_close = Closed(code, reason)
        await ws.close(code=code, message=reason.encode())

    async def dispose(self) -> None:
        """
        Stop reconnecting and close the socket.

        An in-flight handshake is allowed to finish first, so the socket is
        never torn down half-open.
        """
        self._disposed = True

        handshake = self._handshake
        if handshake is not None and not handshake.is_set():
            try:
                await asyncio.wait_for(handshake.wait(), timeout=self.config.connection_ack_timeout)
            except asyncio.TimeoutError:
                logger.debug("Handshake still pending while disposing")

        try:
            await self.close_socket(NORMAL_CLOSE_CODE, "Normal Closure")
        finally:
            await self._stop_tasks()
            if self._session and not self._session.closed and not self._external_session:
                await self._session.close()
            self._session = None

    async def _stop_tasks(self) -> None:
        """Cancel the connection loop and pending sends."""
        tasks = [self._run_task, self._keep_alive_task, *self._send_tasks]
        for task in tasks:
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._run_task = None
        self._keep_alive_task = None
        self._send_tasks.clear()

    async def _get_session(self) -> aiohttp.ClientSession:
        """Create the HTTP session on first use."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(ssl=self.config.verify_ssl)
            self._session = aiohttp.ClientSession(connector=connector)
            self._external_session = False
        return self._session

    async def _emit(self, event: TransportEvent) -> None:
        await self.events.put(event)

    async def _run_loop(self) -> None:
        """Connect, serve and reconnect until disposed or vetoed."""
        retries = 0
        retrying = False

        while not self._disposed:
            if retrying:
                delay = self.backoff(retries)
                retries += 1
                logger.info(f"Reconnecting in {delay:.2f}s (retry {retries})")
                await asyncio.sleep(delay)
                if self._disposed:
                    break
            retrying = True

            await self._emit(Connecting(attempt=retries))
            event = await self._connect_once()
            if self._acknowledged_once:
                retries = 0
            await self._emit(event)

            if not self.should_retry(event):
                logger.info(f"Not reconnecting after {event}")
                break

    async def _connect_once(self) -> TransportEvent:
        """
        Run one connection from opening to close.

        Returns:
            The event describing how the connection ended
        """
        self._acknowledged_once = False
        self._local_close = None
        self._remote_close = None
        self._handshake = asyncio.Event()

        try:
            try:
                ws = await self._open_socket()
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                logger.warning(f"Failed to open socket to {self.config.host}: {e}")
                return TransportError(e)
            self._ws = ws

            try:
                acknowledged = await self._handshake_socket(ws)
            except (aiohttp.ClientError, ConnectionResetError) as e:
                logger.warning(f"Handshake failed: {e}")
                acknowledged = False
            finally:
                self._handshake.set()

            if acknowledged:
                self._acknowledged = True
                self._acknowledged_once = True
                logger.info(f"Connected to {self.config.host}")
                await self._emit(Connected())
                self._keep_alive_task = asyncio.create_task(
                    self._keep_alive_loop(ws), name=f"graphql-ws-keep-alive-{id(self)}"
                )
                await self._receive_loop(ws)

            if not ws.closed:
                await ws.close()
            return self._close_event(ws)
        finally:
            self._handshake.set()
            self._acknowledged = False
            self._ws = None
            self._operations.clear()
            if self._keep_alive_task and not self._keep_alive_task.done():
                self._keep_alive_task.cancel()
            self._keep_alive_task = None

    async def _open_socket(self) -> aiohttp.ClientWebSocketResponse:
        connect = self._ws_connect
        if connect is None:
            session = await self._get_session()
            connect = session.ws_connect
        return await connect(
            self.config.host,
            protocols=[GRAPHQL_TRANSPORT_WS_PROTOCOL],
            headers=self.config.headers,
            timeout=aiohttp.ClientWSTimeout(ws_close=self.config.close_grace_period),
        )

    async def _handshake_socket(self, ws: aiohttp.ClientWebSocketResponse) -> bool:
        """Send ``connection_init`` and wait for ``connection_ack``."""
        try:
            params = await self.connection_params()
        except Exception as e:
            logger.warning(f"Could not build connection params: {e}")
            await ws.close()
            return False

        await ws.send_json({"type": "connection_init", "payload": params})

        try:
            return await asyncio.wait_for(
                self._wait_for_ack(ws), timeout=self.config.connection_ack_timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Server did not acknowledge the connection in time")
            await self.close_socket(ACK_TIMEOUT_CLOSE_CODE, "Connection acknowledgement timeout")
            return False

    async def _wait_for_ack(self, ws: aiohttp.ClientWebSocketResponse) -> bool:
        while True:
            msg = await ws.receive()
            if msg.type == WSMsgType.TEXT:
                message = self._decode(msg.data)
                if message is None:
                    continue
                if message.get("type") == "connection_ack":
                    return True
                if message.get("type") == "ping":
                    await ws.send_json({"type": "pong"})
                continue
            if self._record_close(ws, msg):
                return False

    async def _receive_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        while True:
            msg = await ws.receive()
            if msg.type == WSMsgType.TEXT:
                message = self._decode(msg.data)
                if message is not None:
                    await self._handle_message(ws, message)
                continue
            if self._record_close(ws, msg):
                return

    def _record_close(self, ws: aiohttp.ClientWebSocketResponse, msg: aiohttp.WSMessage) -> bool:
        """Remember why the socket is closing. Returns True if it is."""
        if msg.type == WSMsgType.CLOSE:
            self._remote_close = Closed(int(msg.data), msg.extra or "")
            return True
        if msg.type == WSMsgType.ERROR:
            self._remote_close = Closed(ABNORMAL_CLOSE_CODE, str(ws.exception() or msg.data))
            return True
        return msg.type in (WSMsgType.CLOSING, WSMsgType.CLOSED)

    def _close_event(self, ws: aiohttp.ClientWebSocketResponse) -> Closed:
        if self._local_close is not None:
            return self._local_close
        if self._remote_close is not None:
            return self._remote_close
        return Closed(ws.close_code or ABNORMAL_CLOSE_CODE, "")

    def _decode(self, data: str) -> Optional[Dict[str, Any]]:
        try:
            message = json.loads(data)
        except json.JSONDecodeError:
            logger.warning(f"Dropping malformed message: {data[:100]}")
            return None
        if not isinstance(message, dict):
            logger.warning(f"Dropping malformed message: {data[:100]}")
            return None
        return message

    async def _handle_message(
        self, ws: aiohttp.ClientWebSocketResponse, message: Dict[str, Any]
    ) -> None:
        message_type = message.get("type")

        if message_type == "ping":
            await self._emit(Ping(received=True))
            await ws.send_json({"type": "pong"})
            await self._emit(Pong(received=False))
        elif message_type == "pong":
            await self._emit(Pong(received=True))
        elif message_type == "next":
            operation = self._operations.get(message.get("id", ""))
            if operation is not None:
                self._deliver(operation, "next", message.get("payload") or {})
        elif message_type == "error":
            operation = self._operations.pop(message.get("id", ""), None)
            if operation is not None:
                self._deliver(operation, "error", message.get("payload") or [])
        elif message_type == "complete":
            operation = self._operations.pop(message.get("id", ""), None)
            if operation is not None:
                self._deliver(operation, "complete")
        else:
            logger.debug(f"Ignoring message of type {message_type}")

    def _deliver(self, operation: _Operation, method: str, *args: Any) -> None:
        try:
            getattr(operation.sink, method)(*args)
        except Exception as e:
            logger.warning(f"Error in subscription sink for operation {operation.id}: {e}")

    async def _keep_alive_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        """Send a ping every ``keep_alive`` seconds while the socket is open."""
        while not ws.closed:
            await asyncio.sleep(self.config.keep_alive)
            if ws.closed:
                return
            try:
                await ws.send_json({"type": "ping"})
            except (aiohttp.ClientError, ConnectionResetError) as e:
                logger.debug(f"Could not send ping: {e}")
                return
            await self._emit(Ping(received=False))

    def _complete(self, operation_id: str) -> None:
        operation = self._operations.pop(operation_id, None)
        ws = self._ws
        if operation is None or ws is None or ws.closed:
            return
        self._spawn_send(ws, {"id": operation_id, "type": "complete"})

    def _spawn_send(self, ws: aiohttp.ClientWebSocketResponse, message: Dict[str, Any]) -> None:
        task = asyncio.create_task(self._send(ws, message))
        self._send_tasks.add(task)
        task.add_done_callback(self._send_tasks.discard)

    async def _send(self, ws: aiohttp.ClientWebSocketResponse, message: Dict[str, Any]) -> None:
        try:
            await ws.send_json(message)
        except (aiohttp.ClientError, ConnectionResetError) as e:
            # The close is reported through the connection loop
            logger.debug(f"Could not send {message.get('type')} message: {e}")
