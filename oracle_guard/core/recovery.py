"""
Error recovery policy.

Classifies failed calls, decides whether to retry, fall back or fail,
and tracks the error history that drives degraded mode.
"""

import logging
import random
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Dict, List, Optional

from .backoff import BackoffCalculator, RetryStrategy
from .results import CallError, ErrorType

logger = logging.getLogger(__name__)

RECENT_ERRORS_LIMIT = 100


class RecoveryAction(Enum):
    """What to do after a failed attempt."""
    RETRY_LATER = "retry_later"
    RETRY_NOW = "retry_now"
    USE_FALLBACK = "use_fallback"
    FAIL = "fail"


@dataclass(frozen=True)
class RecoveryConfig:
    """Retry and degradation settings."""
    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL
    jitter_enabled: bool = True
    jitter_factor: float = 0.1
    fallback_enabled: bool = True
    degraded_cooldown_seconds: float = 300.0
    consecutive_error_threshold: int = 3
    error_rate_threshold: float = 0.5
    min_attempts_for_rate: int = 10
    window_size: int = RECENT_ERRORS_LIMIT


class ErrorRecoveryManager:
    """Retry decisions plus degraded-mode bookkeeping.

    The error rate is computed over the last `window_size` attempts, failed
    and successful alike. Degraded mode lasts for the configured cooldown and
    expires on its own; `is_degraded()` is the single source of truth.
    """

    def __init__(
        self,
        config: Optional[RecoveryConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ):
        self.config = config or RecoveryConfig()
        self._clock = clock
        self.backoff = BackoffCalculator(
            base_delay_ms=self.config.base_delay_ms,
            max_delay_ms=self.config.max_delay_ms,
            strategy=self.config.strategy,
            use_jitter=self.config.jitter_enabled,
            jitter_factor=self.config.jitter_factor,
            rng=rng,
        )
        self._lock = threading.RLock()
        self.reset()

    def reset(self) -> None:
        """Forget all error history and leave degraded mode."""
        with self._lock:
            self._outcomes: Deque[bool] = deque(maxlen=self.config.window_size)
            self._recent_errors: Deque[CallError] = deque(maxlen=RECENT_ERRORS_LIMIT)
            self._total_errors = 0
            self._retryable_errors = 0
            self._consecutive_errors = 0
            self._successes = 0
            self._degraded_until: Optional[float] = None
            self._degraded_entries = 0

    def is_retryable(self, error: CallError) -> bool:
        if error.error_type == ErrorType.API_ERROR:
            return error.status_code >= 500
        if error.error_type == ErrorType.UNKNOWN:
            return error.retryable
        return True

    def handle_error(self, error: CallError, attempt: int) -> RecoveryAction:
        """Record a failed attempt and decide what happens next.

        Args:
            error: Classified failure
            attempt: Zero-based number of the attempt that failed

        Returns:
            The recovery action for the caller to carry out
        """
        self.record_error(error)

        if not self.is_retryable(error):
            logger.info("Non-retryable error: %s", error)
            return RecoveryAction.FAIL

        if attempt >= self.config.max_retries:
            if self.config.fallback_enabled:
                return RecoveryAction.USE_FALLBACK
            return RecoveryAction.FAIL

        if self.should_enter_degraded_mode():
            self.enter_degraded_mode()
            return RecoveryAction.USE_FALLBACK

        if error.error_type in (ErrorType.TIMEOUT, ErrorType.RATE_LIMITED):
            return RecoveryAction.RETRY_LATER
        return RecoveryAction.RETRY_NOW

    def record_error(self, error: CallError) -> None:
        with self._lock:
            self._total_errors += 1
            self._outcomes.append(False)
            self._recent_errors.append(error)
            if self.is_retryable(error):
                self._retryable_errors += 1
                self._consecutive_errors += 1
            else:
                self._consecutive_errors = 0

    def record_success(self) -> None:
        with self._lock:
            self._successes += 1
            self._outcomes.append(True)
            self._consecutive_errors = 0

    def retry_delay_ms(self, attempt: int) -> int:
        return self.backoff.calculate_delay(attempt)

    def error_rate(self) -> float:
        """Failed fraction of the attempts in the window (0-1)."""
        with self._lock:
            return self._error_rate_unlocked()

    def should_enter_degraded_mode(self) -> bool:
        with self._lock:
            if self._consecutive_errors >= self.config.consecutive_error_threshold:
                return True
            attempts = len(self._outcomes)
        if attempts < self.config.min_attempts_for_rate:
            return False
        return self.error_rate() > self.config.error_rate_threshold

    def enter_degraded_mode(self) -> None:
        with self._lock:
            already = self._degraded_until is not None
            self._degraded_until = self._clock() + self.config.degraded_cooldown_seconds
            if not already:
                self._degraded_entries += 1
        if not already:
            logger.warning(
                "Entering degraded mode for %.0fs after repeated backend errors",
                self.config.degraded_cooldown_seconds,
            )

    def exit_degraded_mode(self) -> None:
        with self._lock:
            was_degraded = self._degraded_until is not None
            self._degraded_until = None
            self._consecutive_errors = 0
        if was_degraded:
            logger.warning("Leaving degraded mode, probing live providers again")

    def is_degraded(self) -> bool:
        """True while the cooldown is running. Expires the mode when it ends."""
        with self._lock:
            if self._degraded_until is None:
                return False
            if self._clock() < self._degraded_until:
                return True
        self.exit_degraded_mode()
        return False

    def recent_errors(self) -> List[CallError]:
        with self._lock:
            return list(self._recent_errors)

    @property
    def consecutive_errors(self) -> int:
        return self._consecutive_errors

    def statistics(self) -> Dict[str, float]:
        degraded = self.is_degraded()
        with self._lock:
            return {
                "total_errors": self._total_errors,
                "retryable_errors": self._retryable_errors,
                "consecutive_errors": self._consecutive_errors,
                "successes": self._successes,
                "error_rate": self._error_rate_unlocked(),
                "degraded": degraded,
                "degraded_entries": self._degraded_entries,
                "cooldown_seconds": self.config.degraded_cooldown_seconds,
            }

    def _error_rate_unlocked(self) -> float:
        if not self._outcomes:
            return 0.0
        return sum(1 for ok in self._outcomes if not ok) / len(self._outcomes)
