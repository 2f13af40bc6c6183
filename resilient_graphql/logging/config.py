"""
Logging configuration models.
"""

from enum import Enum
from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator

PACKAGE_LOGGER = "resilient_graphql"

# Sub-packages that can be given their own level
COMPONENTS = frozenset({"auth", "graphql", "websocket", "events"})


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LoggingConfig(BaseModel):
    """
    Logging configuration for the client library.

    Handlers are attached to the ``resilient_graphql`` logger only, so an
    application's own logging setup is left alone. Set ``propagate`` to
    False to keep client records out of the root handlers as well.
    """

    level: LogLevel = Field(default=LogLevel.INFO, description="Level of the package logger")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format for plain output",
    )
    propagate: bool = Field(
        default=True, description="Pass client records on to the root logger"
    )

    # Outputs
    enable_console: bool = Field(default=True, description="Log to stdout")
    file_path: Optional[Path] = Field(default=None, description="Rotating log file path")
    max_file_size: int = Field(
        default=10 * 1024 * 1024, gt=0, description="Max log file size in bytes"
    )
    backup_count: int = Field(default=5, ge=0, description="Number of rotated files to keep")
    enable_structured: bool = Field(
        default=False, description="Write JSON records instead of plain lines"
    )

    # Connection params and headers carry credentials
    mask_sensitive_data: bool = Field(
        default=True, description="Mask tokens, passwords and URL credentials"
    )

    component_levels: Dict[str, LogLevel] = Field(
        default_factory=dict,
        description="Levels for sub-packages: auth, graphql, websocket, events",
    )

    @field_validator("component_levels")
    @classmethod
    def validate_components(cls, v: Dict[str, LogLevel]) -> Dict[str, LogLevel]:
        """Validate that component levels name known sub-packages."""
        unknown = set(v) - COMPONENTS
        if unknown:
            raise ValueError(f"Unknown logging components: {', '.join(sorted(unknown))}")
        return v
