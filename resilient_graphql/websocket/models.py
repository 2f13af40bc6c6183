"""
Streaming connection models and configuration.

This module contains the connection states, the close classification, the
lifecycle events emitted by the streaming transport and the configuration of
the subscription service.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

GRAPHQL_TRANSPORT_WS_PROTOCOL = "graphql-transport-ws"

# Close codes after which reconnecting cannot succeed
FATAL_CLOSE_CODES: FrozenSet[int] = frozenset({1002, 1011, 4400, 4401, 4409, 4429})

NORMAL_CLOSE_CODE = 1000
ABNORMAL_CLOSE_CODE = 1006
RESTART_CLOSE_CODE = 4205
PING_TIMEOUT_CLOSE_CODE = 4408
ACK_TIMEOUT_CLOSE_CODE = 4504


class ConnectionState(str, Enum):
    """Streaming connection states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class CloseCategory(str, Enum):
    """How a closed connection is handled."""

    FATAL = "fatal"
    CREDENTIAL_EXPIRED = "credential_expired"
    TRANSIENT = "transient"


# Transport lifecycle events


@dataclass(frozen=True)
class Connecting:
    """A connection attempt started."""

    attempt: int = 0


@dataclass(frozen=True)
class Connected:
    """The server acknowledged the connection."""

    pass


@dataclass(frozen=True)
class Closed:
    """The socket closed."""

    code: int
    reason: str = ""


@dataclass(frozen=True)
class TransportError:
    """The socket could not be opened."""

    error: BaseException


@dataclass(frozen=True)
class Ping:
    """A ping was sent (``received=False``) or received from the server."""

    received: bool


@dataclass(frozen=True)
class Pong:
    """A pong was received (``received=True``) or sent to the server."""

    received: bool


TransportEvent = Union[Connecting, Connected, Closed, TransportError, Ping, Pong]


class SubscriptionServiceConfig(BaseModel):
    """Configuration for the subscription service."""

    # Connection settings
    host: str = Field(description="GraphQL WebSocket URL (ws:// or wss://)")
    headers: Dict[str, str] = Field(
        default_factory=dict, description="Additional headers for the handshake"
    )
    verify_ssl: bool = Field(
        default=True, description="Verify SSL certificates for wss:// connections"
    )

    # Liveness settings
    keep_alive: float = Field(
        default=15.0, gt=0, description="Interval between client pings in seconds"
    )
    keep_alive_timeout: float = Field(
        default=5.0, gt=0, description="Time to wait for a pong before closing the socket"
    )

    # Timeout settings
    connection_ack_timeout: float = Field(
        default=10.0, gt=0, description="Time to wait for the server to acknowledge the connection"
    )
    close_grace_period: float = Field(
        default=5.0, gt=0, description="Time to wait for the close handshake in seconds"
    )

    # Event settings
    event_queue_size: int = Field(
        default=100, ge=1, description="Maximum number of undispatched transport events"
    )

    @field_validator("host")
    @classmethod
    def validate_websocket_url(cls, v: str) -> str:
        """Validate that the host uses a WebSocket scheme."""
        if not (v.startswith("ws://") or v.startswith("wss://")):
            raise ValueError("Host must use ws:// or wss:// scheme")
        return v

    model_config = ConfigDict(use_enum_values=True)


def describe_close(code: int, reason: Optional[str] = None) -> str:
    """Format a close code and reason for log messages."""
    return f"{code} ({reason})" if reason else str(code)
