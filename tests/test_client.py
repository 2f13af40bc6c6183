"""
Tests for the GraphQL request client.
"""

import asyncio
from unittest.mock import AsyncMock

import aiohttp
import pytest
from aioresponses import CallbackResult, aioresponses

from conftest import GRAPHQL_URL, InvalidCredentials, TokenExpired
from resilient_graphql import (
    CookieAuthentication,
    GraphQLClient,
    GraphQLConfig,
    HeaderAuthentication,
)
from resilient_graphql.exceptions import DocumentError, GraphQLResponseError, NetworkError

CAT_QUERY = """
query cat($id: ID!) {
    cat(id: $id) { id name }
}
"""

CREATE_CAT = """
mutation createCat($name: String!) {
    createCat(name: $name) { id name }
}
"""

ERROR_MAP = {"TOKEN_EXPIRED": TokenExpired, "INVALID_CREDENTIALS": InvalidCredentials}


def graphql_error(code):
    return {"errors": [{"message": code.lower(), "extensions": {"code": code}}], "data": None}


class Tokens:
    """Token store used by header authentication."""

    def __init__(self):
        self.token = "old"
        self.refreshes = 0

    def get(self):
        return self.token

    async def refresh(self):
        self.refreshes += 1
        self.token = "new"


@pytest.fixture
def tokens():
    return Tokens()


@pytest.fixture
async def client(graphql_config, tokens):
    client = GraphQLClient(
        graphql_config,
        HeaderAuthentication(
            is_token_expired=lambda e: isinstance(e, TokenExpired),
            get_access_token=tokens.get,
        ),
        error_map=ERROR_MAP,
        refresh_credential=tokens.refresh,
    )
    yield client
    await client.close()


class TestGraphQLClient:
    """Test query and mutation functions."""

    @pytest.mark.asyncio
    async def test_query_returns_converted_field(self, client):
        """The top-level field is extracted and converted."""
        cat = client.create_query(CAT_QUERY, converter=lambda data: data["name"].upper())

        with aioresponses() as mocked:
            mocked.post(GRAPHQL_URL, payload={"data": {"cat": {"id": "1", "name": "Tom"}}})
            assert await cat({"id": "1"}) == "TOM"

    @pytest.mark.asyncio
    async def test_request_payload_and_bearer_header(self, client):
        """Authenticated operations send the bearer token."""
        seen = []

        def callback(url, **kwargs):
            seen.append(kwargs)
            return CallbackResult(payload={"data": {"createCat": {"id": "2", "name": "Kit"}}})

        create_cat = client.create_mutation(CREATE_CAT, authenticated=True)

        with aioresponses() as mocked:
            mocked.post(GRAPHQL_URL, callback=callback)
            result = await create_cat({"name": "Kit"})

        assert result == {"id": "2", "name": "Kit"}
        assert seen[0]["headers"]["authorization"] == "Bearer old"
        assert seen[0]["json"]["variables"] == {"name": "Kit"}
        assert seen[0]["json"]["operationName"] == "createCat"

    @pytest.mark.asyncio
    async def test_unauthenticated_operation_sends_no_credential(self, client):
        seen = []

        def callback(url, **kwargs):
            seen.append(kwargs["headers"])
            return CallbackResult(payload={"data": {"cat": None}})

        cat = client.create_query(CAT_QUERY)

        with aioresponses() as mocked:
            mocked.post(GRAPHQL_URL, callback=callback)
            assert await cat({"id": "1"}) is None

        assert "authorization" not in seen[0]

    @pytest.mark.asyncio
    async def test_expired_token_is_refreshed_and_replayed(self, client, tokens):
        """The replay carries the refreshed token."""
        seen = []

        def callback(url, **kwargs):
            token = kwargs["headers"]["authorization"]
            seen.append(token)
            if token == "Bearer old":
                return CallbackResult(payload=graphql_error("TOKEN_EXPIRED"))
            return CallbackResult(payload={"data": {"cat": {"id": "1", "name": "Tom"}}})

        cat = client.create_query(CAT_QUERY, authenticated=True)

        with aioresponses() as mocked:
            mocked.post(GRAPHQL_URL, callback=callback, repeat=True)
            result = await cat({"id": "1"})

        assert result["name"] == "Tom"
        assert seen == ["Bearer old", "Bearer new"]
        assert tokens.refreshes == 1
        assert not client.refresh_pending

    @pytest.mark.asyncio
    async def test_domain_error_raised(self, client):
        """Mapped error codes raise the domain error."""
        cat = client.create_query(CAT_QUERY, authenticated=True)

        with aioresponses() as mocked:
            mocked.post(GRAPHQL_URL, payload=graphql_error("INVALID_CREDENTIALS"))
            with pytest.raises(InvalidCredentials):
                await cat({"id": "1"})

    @pytest.mark.asyncio
    async def test_connection_failure_raises_network_error(self, client):
        cat = client.create_query(CAT_QUERY)

        with aioresponses() as mocked:
            mocked.post(GRAPHQL_URL, exception=aiohttp.ClientConnectionError("refused"))
            with pytest.raises(NetworkError) as exc_info:
                await cat({"id": "1"})

        assert isinstance(exc_info.value.original_error, aiohttp.ClientConnectionError)

    @pytest.mark.asyncio
    async def test_non_graphql_response_raises_network_error(self, client):
        cat = client.create_query(CAT_QUERY)

        with aioresponses() as mocked:
            mocked.post(GRAPHQL_URL, status=500, body="Internal Server Error")
            with pytest.raises(NetworkError):
                await cat({"id": "1"})

    def test_operation_type_mismatch(self, graphql_config):
        """A mutation document cannot become a query function."""
        client = GraphQLClient(
            graphql_config,
            CookieAuthentication(is_token_expired=lambda e: False),
            executor=AsyncMock(),
        )

        with pytest.raises(DocumentError, match="Expected a query document, got mutation"):
            client.create_query(CREATE_CAT)

    @pytest.mark.asyncio
    async def test_application_driven_refresh(self, graphql_config, tokens):
        """Subclasses can refresh through on_credential_expired."""

        class AppClient(GraphQLClient):
            error_map = {"TOKEN_EXPIRED": TokenExpired}
            expired_calls = 0

            def on_credential_expired(self):
                self.expired_calls += 1
                tokens.token = "new"
                asyncio.get_running_loop().call_soon(self.signal_credential_refreshed)

        executor = AsyncMock()

        async def execute(operation, variables, context):
            if context.headers["authorization"] == "Bearer old":
                raise GraphQLResponseError(graphql_error("TOKEN_EXPIRED")["errors"])
            return {"cat": {"id": variables["id"]}}

        executor.execute.side_effect = execute
        client = AppClient(
            graphql_config,
            HeaderAuthentication(
                is_token_expired=lambda e: isinstance(e, TokenExpired),
                get_access_token=tokens.get,
            ),
            executor=executor,
        )
        cat = client.create_query(CAT_QUERY, authenticated=True)

        assert await cat({"id": "7"}) == {"id": "7"}
        assert client.expired_calls == 1
        assert executor.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_application_refresh_failure(self, graphql_config, tokens):
        """A failed application refresh fails the waiting call."""

        class AppClient(GraphQLClient):
            error_map = {"TOKEN_EXPIRED": TokenExpired}

            def on_credential_expired(self):
                asyncio.get_running_loop().call_soon(
                    self.signal_credential_refresh_failed, PermissionError("logged out")
                )

        executor = AsyncMock()
        executor.execute.side_effect = TokenExpired()
        client = AppClient(
            graphql_config,
            HeaderAuthentication(
                is_token_expired=lambda e: isinstance(e, TokenExpired),
                get_access_token=tokens.get,
            ),
            executor=executor,
        )
        cat = client.create_query(CAT_QUERY, authenticated=True)

        with pytest.raises(PermissionError, match="logged out"):
            await cat({"id": "1"})
        assert executor.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_context_manager_closes_executor(self, graphql_config):
        executor = AsyncMock()

        async with GraphQLClient(
            graphql_config,
            CookieAuthentication(is_token_expired=lambda e: False),
            executor=executor,
        ):
            pass

        executor.close.assert_awaited_once()

    def test_cookie_mode_uses_cookie_jar(self, graphql_config):
        """Cookie authentication makes the executor keep cookies."""
        cookie_client = GraphQLClient(
            graphql_config, CookieAuthentication(is_token_expired=lambda e: False)
        )
        header_client = GraphQLClient(
            graphql_config,
            HeaderAuthentication(is_token_expired=lambda e: False, get_access_token=lambda: "t"),
        )

        assert cookie_client._executor.use_cookies is True
        assert header_client._executor.use_cookies is False

    def test_error_map_merges_class_level_map(self, graphql_config):
        class AppClient(GraphQLClient):
            error_map = {"TOKEN_EXPIRED": TokenExpired}

        client = AppClient(
            graphql_config,
            CookieAuthentication(is_token_expired=lambda e: False),
            error_map={"INVALID_CREDENTIALS": InvalidCredentials},
            executor=AsyncMock(),
        )

        assert client.translator.error_map == ERROR_MAP

    def test_config_rejects_non_http_endpoint(self):
        with pytest.raises(ValueError):
            GraphQLConfig(endpoint="ftp://example.com/graphql")
