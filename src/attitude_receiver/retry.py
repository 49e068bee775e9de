"""Reconnect backoff policy."""

from __future__ import annotations

import random
from typing import Callable, Optional


class BackoffPolicy:
    """Capped exponential backoff with full jitter.

    The n-th consecutive failure waits ``uniform(0, min(max_delay, base * 2**n))``
    seconds before scanning again. The failure count is cleared once a
    subscription is established.
    """

    def __init__(
        self,
        base_delay: float = 0.5,
        max_delay: float = 30.0,
        rand: Optional[Callable[[float, float], float]] = None,
    ) -> None:
        if base_delay < 0 or max_delay < 0:
            raise ValueError("Backoff delays must be non-negative")
        self._base_delay = base_delay
        self._max_delay = max(max_delay, base_delay)
        self._rand = rand or random.uniform
        self._failures = 0

    @property
    def failures(self) -> int:
        return self._failures

    def ceiling(self, failures: int) -> float:
        # Exponent is clamped so large failure counts cannot overflow
        return min(self._max_delay, self._base_delay * (2 ** min(failures, 32)))

    def next_delay(self) -> float:
        """Record one failure and return how long to wait before retrying."""
        ceiling = self.ceiling(self._failures)
        self._failures += 1
        if ceiling <= 0:
            return 0.0
        return self._rand(0.0, ceiling)

    def reset(self) -> None:
        self._failures = 0
