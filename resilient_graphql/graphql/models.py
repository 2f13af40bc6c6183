"""
GraphQL models and configuration.

This module defines the operation types and the configuration of the
request/response client.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict

from pydantic import BaseModel, ConfigDict, Field, field_validator


class GraphQLOperationType(str, Enum):
    """GraphQL operation types."""

    QUERY = "query"
    MUTATION = "mutation"
    SUBSCRIPTION = "subscription"


class GraphQLConfig(BaseModel):
    """Configuration for the GraphQL request client."""

    # Endpoint settings
    endpoint: str = Field(description="GraphQL endpoint URL (http:// or https://)")

    # Request settings
    timeout: float = Field(default=30.0, ge=1.0, description="Request timeout in seconds")
    connect_timeout: float = Field(default=10.0, ge=0.1, description="Connection timeout in seconds")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")

    # Headers
    headers: Dict[str, str] = Field(
        default_factory=dict, description="Default headers sent with every request"
    )
    user_agent: str = Field(
        default="resilient-graphql/1.0", description="User-Agent header value"
    )

    @field_validator("endpoint")
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        """Validate that the endpoint uses an HTTP scheme."""
        if not (v.startswith("http://") or v.startswith("https://")):
            raise ValueError("Endpoint must use http:// or https:// scheme")
        return v

    model_config = ConfigDict(use_enum_values=True)
