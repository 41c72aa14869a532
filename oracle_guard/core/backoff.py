"""
Retry backoff calculation.

Computes how long to wait before the next attempt of a failed call.
"""

import random
from enum import Enum
from typing import Optional

MIN_DELAY_MS = 1


class RetryStrategy(Enum):
    """How the delay grows with the attempt number."""
    EXPONENTIAL = "exponential"  # base * 2^n
    LINEAR = "linear"            # base * (1 + n)
    FIXED = "fixed"              # base


class BackoffCalculator:
    """Delay calculator with optional jitter."""

    def __init__(
        self,
        base_delay_ms: int = 1000,
        max_delay_ms: int = 30000,
        strategy: RetryStrategy = RetryStrategy.EXPONENTIAL,
        use_jitter: bool = True,
        jitter_factor: float = 0.1,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the calculator.

        Args:
            base_delay_ms: Delay for the first retry
            max_delay_ms: Upper bound on any delay
            strategy: Growth strategy
            use_jitter: Perturb delays by +/- jitter_factor
            jitter_factor: Relative jitter amplitude (0-1)
            rng: Random source for jitter, injectable for reproducibility
        """
        if base_delay_ms < 0 or max_delay_ms < 0:
            raise ValueError("Delays cannot be negative")
        if not 0 <= jitter_factor <= 1:
            raise ValueError("jitter_factor must be between 0 and 1")
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.strategy = strategy
        self.use_jitter = use_jitter
        self.jitter_factor = jitter_factor
        self._rng = rng or random.Random()

    def calculate_delay(self, attempt: int) -> int:
        """Delay in milliseconds before retry number `attempt` (0-based)."""
        return self.calculate_delay_with_strategy(attempt, self.strategy)

    def calculate_delay_with_strategy(self, attempt: int, strategy: RetryStrategy) -> int:
        attempt = max(0, attempt)
        if strategy == RetryStrategy.EXPONENTIAL:
            # Cap the exponent so huge attempt numbers do not build huge ints
            delay = float(self.base_delay_ms) * (2 ** min(attempt, 32))
        elif strategy == RetryStrategy.LINEAR:
            delay = float(self.base_delay_ms) * (1 + attempt)
        else:
            delay = float(self.base_delay_ms)

        if self.use_jitter and self.jitter_factor > 0:
            delay += delay * self._rng.uniform(-self.jitter_factor, self.jitter_factor)

        delay = min(delay, float(self.max_delay_ms))
        return max(MIN_DELAY_MS, int(delay))

    def next_retry_time(self, now_ms: int, attempt: int) -> int:
        """Absolute time in milliseconds at which to retry."""
        return now_ms + self.calculate_delay(attempt)
