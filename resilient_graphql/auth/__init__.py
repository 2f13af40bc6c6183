"""
Authentication support for resilient_graphql.

This module provides the credential transport modes, the single-flight
refresh barrier and the request pipeline that replays requests after a
credential refresh.
"""

from .barrier import RefreshBarrier
from .options import (
    AuthenticationMode,
    AuthenticationOptions,
    CookieAuthentication,
    HeaderAuthentication,
    resolve_access_token,
)
from .pipeline import AuthenticatedRequestPipeline, RequestContext

__all__ = [
    # Barrier
    "RefreshBarrier",
    # Options
    "AuthenticationMode",
    "AuthenticationOptions",
    "CookieAuthentication",
    "HeaderAuthentication",
    "resolve_access_token",
    # Pipeline
    "AuthenticatedRequestPipeline",
    "RequestContext",
]
