"""
Close event classification.
"""

from __future__ import annotations

from typing import Callable, Iterable, Optional

from .models import FATAL_CLOSE_CODES, Closed, CloseCategory

TokenExpiredPredicate = Callable[[Closed], bool]


class CloseClassifier:
    """
    Maps a close event to one of fatal, credential expired or transient.

    Fatal codes are looked up in a fixed table first. Other closes are
    credential expired when the application predicate says so, and transient
    otherwise.
    """

    def __init__(
        self,
        is_token_expired: Optional[TokenExpiredPredicate] = None,
        fatal_codes: Iterable[int] = FATAL_CLOSE_CODES,
    ):
        self.is_token_expired = is_token_expired
        self.fatal_codes = frozenset(fatal_codes)

    def classify(self, event: Closed) -> CloseCategory:
        """Classify a close event."""
        if event.code in self.fatal_codes:
            return CloseCategory.FATAL
        if self.is_token_expired is not None and self.is_token_expired(event):
            return CloseCategory.CREDENTIAL_EXPIRED
        return CloseCategory.TRANSIENT

    def is_fatal(self, event: Closed) -> bool:
        """Check whether a close event must not be retried."""
        return self.classify(event) == CloseCategory.FATAL
