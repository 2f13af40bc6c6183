"""
Credential masking for log records.

Connection params, request headers and endpoint URLs end up in debug logs.
The filter rewrites every record before it reaches a handler.
"""

import logging
import re
from typing import Iterable, List, Optional, Pattern, Tuple

MASK = "***MASKED***"

MaskingRule = Tuple[Pattern[str], str]

DEFAULT_RULES: List[MaskingRule] = [
    # Bearer tokens
    (re.compile(r"(bearer\s+)([A-Za-z0-9\-._~+/=]{8,})", re.IGNORECASE), rf"\1{MASK}"),
    # Authorization values that are not bearer tokens
    (
        re.compile(r"""(authorization["']?\s*[:=]\s*["']?)(?!bearer\s)([^\s"',}]+)""", re.IGNORECASE),
        rf"\1{MASK}",
    ),
    # Session cookies in cookie authentication mode
    (re.compile(r"""((?:set-)?cookie["']?\s*[:=]\s*["']?)([^"'\n]+)""", re.IGNORECASE), rf"\1{MASK}"),
    # Tokens and secrets in connection params
    (
        re.compile(r"""((?:access[_-]?|refresh[_-]?)?token|secret|api[_-]?key)(["']?\s*[:=]\s*["']?)([^\s"',}]{8,})""", re.IGNORECASE),
        rf"\1\2{MASK}",
    ),
    # Passwords
    (re.compile(r"""(password|passwd|pwd)(["']?\s*[:=]\s*["']?)([^\s"',}]+)""", re.IGNORECASE), rf"\1\2{MASK}"),
    # Credentials embedded in endpoint URLs
    (re.compile(r"((?:https?|wss?)://[^:/\s]+):([^@\s]+)@", re.IGNORECASE), rf"\1:{MASK}@"),
]


class SensitiveDataFilter(logging.Filter):
    """Filter to mask credentials in log messages."""

    def __init__(self, extra_rules: Optional[Iterable[MaskingRule]] = None) -> None:
        """
        Initialize sensitive data filter.

        Args:
            extra_rules: Additional (pattern, replacement) pairs applied
                after the default ones
        """
        super().__init__()
        self.rules: List[MaskingRule] = [*DEFAULT_RULES, *(extra_rules or [])]

    def mask(self, message: str) -> str:
        """Mask every credential found in a message."""
        for pattern, replacement in self.rules:
            message = pattern.sub(replacement, message)
        return message

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter log record to mask sensitive data."""
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            # Malformed format arguments are left for the formatter to report
            return True

        record.msg = self.mask(message)
        record.args = ()
        return True
