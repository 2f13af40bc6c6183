"""
Credential transport modes.

The client either relies on cookies managed by the HTTP session or attaches a
bearer token to every authenticated request. The mode is picked once, when
the client is built.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Union

from ..exceptions import MissingCredentialError

TokenExpiredPredicate = Callable[[BaseException], bool]
AccessTokenProvider = Callable[[], Union[Awaitable[Optional[str]], Optional[str]]]


class AuthenticationMode(str, Enum):
    """How credentials travel with requests."""

    COOKIES = "cookies"
    HEADERS = "headers"


async def resolve_access_token(provider: AccessTokenProvider) -> Optional[str]:
    """Call a token provider that may be sync or async."""
    token = provider()
    if inspect.isawaitable(token):
        token = await token
    return token


@dataclass(frozen=True)
class CookieAuthentication:
    """
    Cookie based authentication.

    The session cookie jar carries the credential, so nothing is attached to
    the request context.

    Attributes:
        is_token_expired: Predicate telling whether an error means the
            session expired
    """

    is_token_expired: TokenExpiredPredicate

    @property
    def mode(self) -> AuthenticationMode:
        return AuthenticationMode.COOKIES

    async def authorize(self, headers: Dict[str, str]) -> None:
        """Cookie mode leaves the headers untouched."""
        return None


@dataclass(frozen=True)
class HeaderAuthentication:
    """
    Bearer token authentication.

    Attributes:
        is_token_expired: Predicate telling whether an error means the token
            expired
        get_access_token: Provider returning the current token, or None
        header_name: Header that carries the token
        scheme: Prefix placed before the token
    """

    is_token_expired: TokenExpiredPredicate
    get_access_token: AccessTokenProvider
    header_name: str = "authorization"
    scheme: str = "Bearer"

    @property
    def mode(self) -> AuthenticationMode:
        return AuthenticationMode.HEADERS

    async def authorize(self, headers: Dict[str, str]) -> None:
        """
        Fetch a token and attach it to the given header bag.

        Raises:
            MissingCredentialError: If the provider returns no token
        """
        token = await resolve_access_token(self.get_access_token)
        if not token:
            raise MissingCredentialError()
        headers[self.header_name] = f"{self.scheme} {token}" if self.scheme else token


AuthenticationOptions = Union[CookieAuthentication, HeaderAuthentication]
