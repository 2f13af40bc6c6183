"""
Reconnection backoff.

The default policy doubles the wait on every retry and adds random jitter so
that many clients losing the same server do not reconnect in lockstep.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Callable, Optional

BackoffFunction = Callable[[int], float]

MIN_WAIT = 1.0
MAX_WAIT = 15.0


def exponential_backoff(retries: int, rng: Optional[random.Random] = None) -> float:
    """
    Compute the wait before a reconnection attempt.

    Args:
        retries: Number of retries already made since the last connection
        rng: Random source for the jitter

    Returns:
        Wait in seconds, between 1 and 15
    """
    policy = BackoffPolicy(rng=rng) if rng is not None else _DEFAULT_POLICY
    return policy.wait(retries)


@dataclass
class BackoffPolicy:
    """
    Exponential backoff with jitter and bounds.

    ``wait(n) = clamp(base ** n + uniform(jitter_min, jitter_max), min_wait, max_wait)``

    Any ``Callable[[int], float]`` can be used in its place.
    """

    min_wait: float = MIN_WAIT
    max_wait: float = MAX_WAIT
    base: float = 2.0
    jitter_min: float = 0.3
    jitter_max: float = 3.0
    rng: random.Random = field(default_factory=random.Random, repr=False)

    def wait(self, retries: int) -> float:
        """Get the wait in seconds before the given retry."""
        # Cap the exponent so large retry counts do not overflow
        delay = self.base ** min(retries, 32)
        delay += self.rng.uniform(self.jitter_min, self.jitter_max)
        return min(self.max_wait, max(self.min_wait, delay))

    def __call__(self, retries: int) -> float:
        return self.wait(retries)


_DEFAULT_POLICY = BackoffPolicy()
