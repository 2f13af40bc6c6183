"""
GraphQL request/response support for resilient_graphql.

This module provides the query and mutation client, document parsing,
error translation and the aiohttp request executor.
"""

from .client import GraphQLClient
from .documents import GraphQLOperation, parse_document, parse_operation
from .errors import ErrorTranslator
from .models import GraphQLConfig, GraphQLOperationType
from .transport import AiohttpRequestExecutor, RequestExecutor

__all__ = [
    # Client
    "GraphQLClient",
    "GraphQLConfig",
    # Documents
    "GraphQLOperation",
    "GraphQLOperationType",
    "parse_document",
    "parse_operation",
    # Errors
    "ErrorTranslator",
    # Transport
    "RequestExecutor",
    "AiohttpRequestExecutor",
]
