"""
Translation of transport errors into domain errors.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Mapping, Optional, Type

import aiohttp

from ..exceptions import DomainError, GraphQLResponseError, HTTPStatusError, NetworkError

logger = logging.getLogger(__name__)

ErrorMap = Mapping[str, Type[DomainError]]

NETWORK_EXCEPTIONS = (aiohttp.ClientError, asyncio.TimeoutError, HTTPStatusError, OSError)


class ErrorTranslator:
    """
    Maps server and transport errors to the application's error kinds.

    GraphQL errors are matched on ``extensions.code`` against the error map.
    When several errors match, the last one wins. Errors raised by the
    transport itself become ``NetworkError``. Anything else is left alone
    and the caller sees the original exception.

    Example:
        ```python
        translator = ErrorTranslator({
            "INVALID_CREDENTIALS": InvalidCredentials,
            "QUOTA_EXCEEDED": QuotaExceeded,
        })
        ```
    """

    def __init__(self, error_map: Optional[ErrorMap] = None):
        self.error_map: Dict[str, Type[DomainError]] = dict(error_map or {})

    def register(self, code: str, error_class: Type[DomainError]) -> None:
        """Map an error code to a domain error class."""
        self.error_map[code] = error_class

    def __call__(self, error: BaseException) -> Optional[BaseException]:
        return self.translate(error)

    def translate(self, error: BaseException) -> Optional[BaseException]:
        """
        Translate an error.

        Args:
            error: Exception raised by the request executor

        Returns:
            The translated error, or None when no translation applies
        """
        if isinstance(error, GraphQLResponseError) and error.errors:
            converted: Optional[DomainError] = None
            for graphql_error in error.errors:
                extensions = graphql_error.get("extensions") or {}
                error_class = self.error_map.get(extensions.get("code"))
                if error_class is None:
                    continue
                if error_class.accepts_details:
                    converted = error_class(graphql_error.get("message"), extensions.get("details"))
                else:
                    converted = error_class()
            return converted

        if isinstance(error, NETWORK_EXCEPTIONS):
            return NetworkError(error)

        return None
