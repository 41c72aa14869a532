"""
Token bucket admission control.

Gates how often the orchestrator may dispatch a request to a backend.
Tokens here are admission credits, not language-model tokens.
"""

import logging
import math
import threading
import time
from typing import Callable

logger = logging.getLogger(__name__)


class TokenBucketRateLimiter:
    """Token bucket refilled continuously from a monotonic clock.

    Capacity equals the per-minute rate, so a full bucket allows one
    minute's worth of requests in a burst. Every admission check refills
    the bucket first, which makes the check a mutating operation.
    """

    def __init__(
        self,
        tokens_per_minute: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize a full bucket.

        Args:
            tokens_per_minute: Maximum admissions per minute (>= 0)
            clock: Monotonic time source in seconds

        Raises:
            ValueError: If the rate is negative
        """
        if tokens_per_minute < 0:
            raise ValueError("tokens_per_minute cannot be negative")
        self._clock = clock
        self._lock = threading.Lock()
        self._capacity = float(tokens_per_minute)
        self._tokens = float(tokens_per_minute)
        self._rate_per_second = tokens_per_minute / 60.0
        self._last_refill = clock()

    @property
    def capacity(self) -> float:
        return self._capacity

    @property
    def rate_per_second(self) -> float:
        return self._rate_per_second

    def try_admit(self) -> bool:
        """Consume one token if available.

        Returns:
            True if the request may proceed, False if rate limited
        """
        with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            remaining = self._tokens
        logger.debug("Rate limiter refused admission (%.3f tokens)", remaining)
        return False

    def available_tokens(self) -> float:
        """Current token count after refilling."""
        with self._lock:
            self._refill()
            return self._tokens

    def wait_seconds(self) -> float:
        """Seconds until one whole token is available (0 if available now)."""
        with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                return 0.0
            if self._rate_per_second <= 0 or self._capacity < 1.0:
                return math.inf
            return (1.0 - self._tokens) / self._rate_per_second

    def reset(self) -> None:
        """Refill the bucket to capacity."""
        with self._lock:
            self._tokens = self._capacity
            self._last_refill = self._clock()

    def set_rate(self, tokens_per_minute: float) -> None:
        """Change the rate and capacity, clamping the current tokens.

        Raises:
            ValueError: If the rate is negative
        """
        if tokens_per_minute < 0:
            raise ValueError("tokens_per_minute cannot be negative")
        with self._lock:
            self._refill()
            self._capacity = float(tokens_per_minute)
            self._rate_per_second = tokens_per_minute / 60.0
            self._tokens = min(self._tokens, self._capacity)

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed <= 0:
            return
        self._tokens = min(self._capacity, self._tokens + elapsed * self._rate_per_second)
        self._last_refill = now
