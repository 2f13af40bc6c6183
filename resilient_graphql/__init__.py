"""
Resilient async GraphQL client.

This package talks to one GraphQL backend over two transports and hides the
two hard parts of doing so:

Features:
- Queries and mutations with transparent, single-flight credential refresh
- One replay per request after a refresh, never more
- Subscriptions over graphql-transport-ws that survive network failures,
  server disconnects and credential rotation
- Liveness watchdog, graceful restarts and close code classification
- Server error codes mapped to application error classes
"""

from .auth import (
    AuthenticatedRequestPipeline,
    AuthenticationMode,
    AuthenticationOptions,
    CookieAuthentication,
    HeaderAuthentication,
    RefreshBarrier,
    RequestContext,
)
from .events import ClientEvent, EventCallbackManager
from .exceptions import (
    ConnectionError,
    CredentialRefreshError,
    DocumentError,
    DomainError,
    FatalConnectionError,
    GraphQLResponseError,
    HTTPStatusError,
    MissingCredentialError,
    NetworkError,
    ResilientGraphQLError,
    SubscriptionError,
    TransientConnectionError,
)
from .graphql import (
    AiohttpRequestExecutor,
    ErrorTranslator,
    GraphQLClient,
    GraphQLConfig,
    GraphQLOperation,
    GraphQLOperationType,
    RequestExecutor,
)
from .logging import LoggingConfig, LogLevel, setup_logging
from .utils import ResettableSignal
from .websocket import (
    BackoffPolicy,
    CloseCategory,
    CloseClassifier,
    Closed,
    ConnectionLifecycleManager,
    ConnectionState,
    GraphQLWebSocketTransport,
    Subscription,
    SubscriptionRegistry,
    SubscriptionService,
    SubscriptionServiceConfig,
    exponential_backoff,
    make_subscription_key,
)

__version__ = "1.0.0"

__all__ = [
    # Clients
    "GraphQLClient",
    "GraphQLConfig",
    "SubscriptionService",
    "SubscriptionServiceConfig",
    "Subscription",
    # Authentication
    "AuthenticationMode",
    "AuthenticationOptions",
    "CookieAuthentication",
    "HeaderAuthentication",
    "AuthenticatedRequestPipeline",
    "RefreshBarrier",
    "RequestContext",
    # GraphQL
    "GraphQLOperation",
    "GraphQLOperationType",
    "ErrorTranslator",
    "RequestExecutor",
    "AiohttpRequestExecutor",
    # Subscriptions
    "ConnectionLifecycleManager",
    "ConnectionState",
    "CloseCategory",
    "CloseClassifier",
    "Closed",
    "GraphQLWebSocketTransport",
    "SubscriptionRegistry",
    "make_subscription_key",
    "BackoffPolicy",
    "exponential_backoff",
    # Events
    "ClientEvent",
    "EventCallbackManager",
    # Utilities
    "ResettableSignal",
    "LoggingConfig",
    "LogLevel",
    "setup_logging",
    # Exceptions
    "ResilientGraphQLError",
    "MissingCredentialError",
    "CredentialRefreshError",
    "DomainError",
    "NetworkError",
    "GraphQLResponseError",
    "HTTPStatusError",
    "DocumentError",
    "ConnectionError",
    "FatalConnectionError",
    "TransientConnectionError",
    "SubscriptionError",
]
