"""
Tests for the credential transport modes.
"""

import pytest

from resilient_graphql.auth import (
    AuthenticationMode,
    CookieAuthentication,
    HeaderAuthentication,
    resolve_access_token,
)
from resilient_graphql.exceptions import MissingCredentialError


class TestAuthenticationOptions:
    """Test cookie and header authentication."""

    def test_modes(self):
        """Each option reports its mode."""
        cookies = CookieAuthentication(is_token_expired=lambda e: False)
        headers = HeaderAuthentication(is_token_expired=lambda e: False, get_access_token=lambda: "t")

        assert cookies.mode == AuthenticationMode.COOKIES
        assert headers.mode == AuthenticationMode.HEADERS

    @pytest.mark.asyncio
    async def test_cookie_mode_leaves_headers_untouched(self):
        """Cookie authentication attaches nothing."""
        auth = CookieAuthentication(is_token_expired=lambda e: False)
        headers = {"x-client": "test"}

        await auth.authorize(headers)

        assert headers == {"x-client": "test"}

    @pytest.mark.asyncio
    async def test_header_mode_attaches_bearer_token(self):
        """Header authentication attaches the token with its scheme."""
        auth = HeaderAuthentication(is_token_expired=lambda e: False, get_access_token=lambda: "abc")
        headers = {}

        await auth.authorize(headers)

        assert headers == {"authorization": "Bearer abc"}

    @pytest.mark.asyncio
    async def test_header_mode_with_async_provider(self):
        """Async token providers are awaited."""

        async def get_token():
            return "async-token"

        auth = HeaderAuthentication(
            is_token_expired=lambda e: False,
            get_access_token=get_token,
            header_name="x-token",
            scheme="",
        )
        headers = {}

        await auth.authorize(headers)

        assert headers == {"x-token": "async-token"}

    @pytest.mark.asyncio
    async def test_missing_token_fails_fast(self):
        """A provider returning no token raises MissingCredentialError."""
        auth = HeaderAuthentication(is_token_expired=lambda e: False, get_access_token=lambda: None)

        with pytest.raises(MissingCredentialError, match="Missing access token"):
            await auth.authorize({})

    @pytest.mark.asyncio
    async def test_resolve_access_token(self):
        """Sync and async providers resolve to the same value."""

        async def async_provider():
            return "a"

        assert await resolve_access_token(lambda: "a") == "a"
        assert await resolve_access_token(async_provider) == "a"
