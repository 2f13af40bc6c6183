"""
Request/response transport for queries and mutations.

The client only depends on the ``RequestExecutor`` protocol. The aiohttp
implementation posts JSON payloads to the configured endpoint.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Protocol

import aiohttp

from ..auth.pipeline import RequestContext
from ..exceptions import GraphQLResponseError, HTTPStatusError
from .documents import GraphQLOperation
from .models import GraphQLConfig

logger = logging.getLogger(__name__)


class RequestExecutor(Protocol):
    """Executes one GraphQL operation and returns its ``data`` object."""

    async def execute(
        self,
        operation: GraphQLOperation,
        variables: Optional[Dict[str, Any]],
        context: RequestContext,
    ) -> Dict[str, Any]:
        ...

    async def close(self) -> None:
        ...


class AiohttpRequestExecutor:
    """
    aiohttp based request executor.

    In cookie mode the session keeps a cookie jar so that server-issued
    session cookies travel with every request. In header mode cookies are
    ignored and the credential comes from the request context.
    """

    def __init__(
        self,
        config: GraphQLConfig,
        session: Optional[aiohttp.ClientSession] = None,
        use_cookies: bool = False,
    ):
        """
        Initialize the executor.

        Args:
            config: GraphQL client configuration
            session: Optional existing aiohttp session to reuse
            use_cookies: Keep a cookie jar for cookie based authentication
        """
        self.config = config
        self.use_cookies = use_cookies
        self._session: Optional[aiohttp.ClientSession] = session
        self._external_session = session is not None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Create the HTTP session on first use."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=100,  # Total connection pool size
                limit_per_host=30,  # Connections per host
                ttl_dns_cache=300,  # DNS cache TTL (5 minutes)
                enable_cleanup_closed=True,
                ssl=self.config.verify_ssl,
            )
            timeout = aiohttp.ClientTimeout(
                total=self.config.timeout,
                connect=self.config.connect_timeout,
            )
            cookie_jar = (
                aiohttp.CookieJar(unsafe=True) if self.use_cookies else aiohttp.DummyCookieJar()
            )
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                connector=connector,
                cookie_jar=cookie_jar,
                headers={"User-Agent": self.config.user_agent},
                raise_for_status=False,  # Handle status codes manually
            )
            self._external_session = False
        return self._session

    async def execute(
        self,
        operation: GraphQLOperation,
        variables: Optional[Dict[str, Any]],
        context: RequestContext,
    ) -> Dict[str, Any]:
        """
        Post an operation and return the ``data`` object of the response.

        Raises:
            GraphQLResponseError: If the response carries GraphQL errors
            HTTPStatusError: If the response is not a GraphQL payload
            aiohttp.ClientError: On connection failures
        """
        session = await self._get_session()
        headers = dict(context.headers)
        headers["Content-Type"] = "application/json"

        async with session.post(
            self.config.endpoint, json=operation.to_payload(variables), headers=headers
        ) as response:
            status = response.status
            response_text = await response.text()

        try:
            body = json.loads(response_text)
        except json.JSONDecodeError:
            raise HTTPStatusError(status, response_text)

        if not isinstance(body, dict):
            raise HTTPStatusError(status, response_text)

        if body.get("errors"):
            raise GraphQLResponseError(body["errors"], data=body.get("data"), status_code=status)

        if status >= 400:
            raise HTTPStatusError(status, response_text)

        return body.get("data") or {}

    async def close(self) -> None:
        """Close the HTTP session if this executor created it."""
        if self._session and not self._session.closed and not self._external_session:
            await self._session.close()
        self._session = None
