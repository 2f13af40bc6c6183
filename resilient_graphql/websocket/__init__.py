"""
GraphQL subscription support for resilient_graphql.

This module provides the subscription service with its registry, connection
lifecycle manager, reconnection backoff and graphql-transport-ws transport.
"""

from .backoff import BackoffPolicy, exponential_backoff
from .classifier import CloseClassifier
from .lifecycle import ConnectionLifecycleManager
from .models import (
    FATAL_CLOSE_CODES,
    PING_TIMEOUT_CLOSE_CODE,
    RESTART_CLOSE_CODE,
    CloseCategory,
    Closed,
    Connected,
    Connecting,
    ConnectionState,
    Ping,
    Pong,
    SubscriptionServiceConfig,
    TransportError,
)
from .registry import SubscriptionEntry, SubscriptionRegistry, make_subscription_key
from .service import Subscription, SubscriptionService
from .transport import GraphQLWebSocketTransport, StreamingTransport, SubscriptionSink

__all__ = [
    # Service
    "SubscriptionService",
    "SubscriptionServiceConfig",
    "Subscription",
    # Lifecycle
    "ConnectionLifecycleManager",
    "ConnectionState",
    "CloseCategory",
    "CloseClassifier",
    "FATAL_CLOSE_CODES",
    "RESTART_CLOSE_CODE",
    "PING_TIMEOUT_CLOSE_CODE",
    # Events
    "Connecting",
    "Connected",
    "Closed",
    "TransportError",
    "Ping",
    "Pong",
    # Registry
    "SubscriptionEntry",
    "SubscriptionRegistry",
    "make_subscription_key",
    # Backoff
    "BackoffPolicy",
    "exponential_backoff",
    # Transport
    "GraphQLWebSocketTransport",
    "StreamingTransport",
    "SubscriptionSink",
]
