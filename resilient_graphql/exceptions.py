"""
Exception hierarchy for resilient_graphql.

This module defines the errors raised to callers of queries and mutations and
the connection errors that are delivered as out-of-band events by the
subscription service.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class ResilientGraphQLError(Exception):
    """
    Base exception for all resilient_graphql errors.

    Attributes:
        message: Human-readable error message
        details: Additional error details as keyword arguments
    """

    def __init__(self, message: str = "", **kwargs: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = kwargs


class MissingCredentialError(ResilientGraphQLError):
    """Raised when an authenticated call finds no credential to attach."""

    def __init__(self, message: str = "Missing access token") -> None:
        super().__init__(message)


class CredentialRefreshError(ResilientGraphQLError):
    """Raised to waiting callers when a credential refresh fails without a cause."""

    def __init__(self, message: str = "Credential refresh failed") -> None:
        super().__init__(message)


class DomainError(ResilientGraphQLError):
    """
    Base class for business errors reported by the server.

    Applications subclass it once per ``extensions.code`` they care about and
    register the subclasses in the client's error map. Subclasses that set
    ``accepts_details`` receive ``extensions.details`` from the server error.

    Example:
        ```python
        class InvalidCredentials(DomainError):
            pass

        class QuotaExceeded(DomainError):
            accepts_details = True
        ```
    """

    accepts_details: bool = False

    def __init__(self, message: Optional[str] = None, details: Any = None) -> None:
        super().__init__(message or self.__class__.__name__)
        self.details = details


class NetworkError(ResilientGraphQLError):
    """
    Raised for transport-level failures that match no domain error code.

    Attributes:
        original_error: The exception raised by the transport
    """

    def __init__(
        self,
        original_error: Optional[BaseException] = None,
        message: Optional[str] = None,
    ) -> None:
        super().__init__(message or f"Network error: {original_error}")
        self.original_error = original_error


class GraphQLResponseError(ResilientGraphQLError):
    """
    Raised by request executors when the server answers with GraphQL errors.

    Attributes:
        errors: List of GraphQL error objects as returned by the server
        data: Partial data returned alongside the errors, if any
        status_code: HTTP status code of the response
    """

    def __init__(
        self,
        errors: List[Dict[str, Any]],
        data: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ) -> None:
        messages = "; ".join(error.get("message", "Unknown error") for error in errors)
        super().__init__(f"GraphQL errors: {messages}")
        self.errors = errors
        self.data = data
        self.status_code = status_code

    @property
    def codes(self) -> List[str]:
        """Get the ``extensions.code`` of every error that carries one."""
        codes = []
        for error in self.errors:
            code = (error.get("extensions") or {}).get("code")
            if code is not None:
                codes.append(code)
        return codes


class HTTPStatusError(ResilientGraphQLError):
    """Raised by the HTTP executor when the response is not a GraphQL payload."""

    def __init__(self, status_code: int, response_text: Optional[str] = None) -> None:
        super().__init__(f"Unexpected HTTP status {status_code}")
        self.status_code = status_code
        self.response_text = response_text


class DocumentError(ResilientGraphQLError):
    """Raised when an operation document cannot be used by the client."""

    pass


# Streaming connection errors. These are passed to event handlers and never
# raised into query, mutation or subscribe callers.


class ConnectionError(ResilientGraphQLError):
    """
    Base class for streaming connection errors.

    Attributes:
        code: WebSocket close code, when the connection was closed
        reason: Close reason sent by the peer
        original_error: Underlying transport exception, if any
    """

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        reason: str = "",
        original_error: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message, code=code, reason=reason)
        self.code = code
        self.reason = reason
        self.original_error = original_error


class FatalConnectionError(ConnectionError):
    """The connection was closed with a code that must not be retried."""

    pass


class TransientConnectionError(ConnectionError):
    """The connection was lost for a reason that is retried with backoff."""

    pass


class SubscriptionError(ResilientGraphQLError):
    """
    Raised into the subscription error event when the server rejects an operation.

    Attributes:
        key: Subscription key of the failing subscription
        errors: GraphQL errors sent by the server
    """

    def __init__(self, key: str, errors: List[Dict[str, Any]]) -> None:
        messages = "; ".join(error.get("message", "Unknown error") for error in errors)
        super().__init__(f"Subscription {key} failed: {messages}")
        self.key = key
        self.errors = errors
