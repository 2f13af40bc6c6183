"""
GraphQL client implementation.

This module provides the request/response client. Each query or mutation
document is turned into an async function once; every call of that function
goes through the authenticated request pipeline, so credential expiry is
handled transparently for authenticated operations.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Type, Union

from graphql import DocumentNode

from ..auth import (
    AuthenticatedRequestPipeline,
    AuthenticationMode,
    AuthenticationOptions,
    RefreshBarrier,
    RequestContext,
)
from ..exceptions import DocumentError, DomainError
from .documents import parse_operation
from .errors import ErrorTranslator
from .models import GraphQLConfig, GraphQLOperationType
from .transport import AiohttpRequestExecutor, RequestExecutor

logger = logging.getLogger(__name__)

Converter = Callable[[Any], Any]
OperationFunction = Callable[..., Awaitable[Any]]


class GraphQLClient:
    """
    GraphQL client with transparent credential refresh.

    Operations are declared once with ``create_query`` / ``create_mutation``
    and called many times. Authenticated operations attach the current
    credential and, when the server reports it expired, wait for a single
    shared refresh before replaying the request once.

    The refresh is either driven by ``refresh_credential`` or by the
    application: ``on_credential_expired`` is called once per refresh cycle
    and the application reports the outcome through
    ``signal_credential_refreshed`` / ``signal_credential_refresh_failed``.

    Examples:
        Declaring operations:
        ```python
        class CatClient(GraphQLClient):
            error_map = {"INVALID_CREDENTIALS": InvalidCredentials}

            def __init__(self, config, tokens):
                super().__init__(
                    config,
                    HeaderAuthentication(
                        is_token_expired=lambda e: isinstance(e, TokenExpired),
                        get_access_token=tokens.get,
                    ),
                    refresh_credential=tokens.refresh,
                )
                self.cat = self.create_query(
                    '''
                    query cat($id: ID!) {
                        cat(id: $id) { id name }
                    }
                    ''',
                    authenticated=True,
                    converter=Cat.from_dict,
                )

        async with CatClient(GraphQLConfig(endpoint="https://api.example.com/graphql"), tokens) as client:
            cat = await client.cat({"id": "1"})
        ```
    """

    error_map: Dict[str, Type[DomainError]] = {}

    def __init__(
        self,
        config: GraphQLConfig,
        authentication: AuthenticationOptions,
        error_map: Optional[Dict[str, Type[DomainError]]] = None,
        executor: Optional[RequestExecutor] = None,
        refresh_credential: Optional[Callable[[], Awaitable[Any]]] = None,
        on_request: Optional[Callable[[str, str], Any]] = None,
        on_success: Optional[Callable[[str, str, float], Any]] = None,
        on_error: Optional[Callable[[str, str, float, BaseException], Any]] = None,
    ):
        """
        Initialize GraphQL client.

        Args:
            config: GraphQL configuration
            authentication: Credential transport mode and expiry predicate
            error_map: Maps server error codes to domain error classes,
                merged over the class-level ``error_map``
            executor: Request executor, defaults to the aiohttp executor
            refresh_credential: Coroutine function that refreshes the credential
            on_request: Called before every attempt with (type, name)
            on_success: Called after a successful attempt with (type, name, ms)
            on_error: Called after a failed attempt with (type, name, ms, error)
        """
        self.config = config
        self.authentication = authentication

        self._translator = ErrorTranslator({**type(self).error_map, **(error_map or {})})
        self._executor: RequestExecutor = executor or AiohttpRequestExecutor(
            config, use_cookies=authentication.mode == AuthenticationMode.COOKIES
        )
        self._barrier = RefreshBarrier()
        self._pipeline = AuthenticatedRequestPipeline(
            authentication,
            barrier=self._barrier,
            default_headers=config.headers,
            translate_error=self._translator,
            refresh_credential=refresh_credential,
            on_credential_expired=self.on_credential_expired,
            on_request=on_request,
            on_success=on_success,
            on_error=on_error,
        )

    async def __aenter__(self) -> GraphQLClient:
        """Async context manager entry."""
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        exc_tb: Optional[object],
    ) -> None:
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Close the request executor."""
        await self._executor.close()

    @property
    def translator(self) -> ErrorTranslator:
        """Get the error translator used by every operation."""
        return self._translator

    @property
    def refresh_pending(self) -> bool:
        """Check whether a credential refresh is in flight."""
        return self._barrier.is_pending

    def on_credential_expired(self) -> Any:
        """
        Called once when a refresh cycle starts.

        Subclasses running their own refresh flow override this and later
        call ``signal_credential_refreshed`` or
        ``signal_credential_refresh_failed``.
        """
        logger.debug("Credential expired")

    def signal_credential_refreshed(self) -> None:
        """Resume every request waiting for the credential refresh."""
        self._barrier.signal_success()

    def signal_credential_refresh_failed(self, error: Optional[BaseException] = None) -> None:
        """Fail every request waiting for the credential refresh."""
        self._barrier.signal_failure(error)

    def create_query(
        self,
        document: Union[str, DocumentNode],
        authenticated: bool = False,
        converter: Optional[Converter] = None,
    ) -> OperationFunction:
        """
        Create an async function executing a query.

        Args:
            document: Query with exactly one top-level field
            authenticated: Attach the credential and refresh it on expiry
            converter: Applied to the top-level field value before returning

        Returns:
            Coroutine function taking the query variables
        """
        return self._create_operation(
            document, GraphQLOperationType.QUERY, authenticated, converter
        )

    def create_mutation(
        self,
        document: Union[str, DocumentNode],
        authenticated: bool = False,
        converter: Optional[Converter] = None,
    ) -> OperationFunction:
        """
        Create an async function executing a mutation.

        Args:
            document: Mutation with exactly one top-level field
            authenticated: Attach the credential and refresh it on expiry
            converter: Applied to the top-level field value before returning

        Returns:
            Coroutine function taking the mutation variables
        """
        return self._create_operation(
            document, GraphQLOperationType.MUTATION, authenticated, converter
        )

    def _create_operation(
        self,
        document: Union[str, DocumentNode],
        expected_type: GraphQLOperationType,
        authenticated: bool,
        converter: Optional[Converter],
    ) -> OperationFunction:
        operation = parse_operation(document)
        if operation.operation_type != expected_type:
            raise DocumentError(
                f"Expected a {expected_type.value} document, got {operation.operation_type.value}"
            )

        executor = self._executor

        async def request(
            variables: Optional[Dict[str, Any]], context: RequestContext
        ) -> Any:
            data = await executor.execute(operation, variables, context)
            result = data.get(operation.result_key)
            return converter(result) if converter else result

        return self._pipeline.wrap(
            request,
            operation_type=expected_type.value,
            operation_name=operation.result_key,
            authenticated=authenticated,
        )

