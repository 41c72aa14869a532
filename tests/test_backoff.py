"""
Unit tests for retry backoff.

Tests delay growth per strategy, the cap and jitter bounds.
"""

import random

import pytest

from oracle_guard.core.backoff import BackoffCalculator, RetryStrategy


class TestExponentialBackoff:
    """Test the default exponential strategy."""

    def setup_method(self):
        """Set up a calculator without jitter."""
        self.backoff = BackoffCalculator(base_delay_ms=1000, max_delay_ms=30000, use_jitter=False)

    def test_first_delay_is_base(self):
        """Attempt 0 waits the base delay."""
        assert self.backoff.calculate_delay(0) == 1000

    def test_delay_doubles(self):
        """Each attempt doubles the delay."""
        assert self.backoff.calculate_delay(1) == 2000
        assert self.backoff.calculate_delay(2) == 4000
        assert self.backoff.calculate_delay(3) == 8000

    def test_delay_is_monotone_until_cap(self):
        """Delays never decrease and never exceed the cap."""
        delays = [self.backoff.calculate_delay(attempt) for attempt in range(50)]
        assert delays == sorted(delays)
        assert max(delays) == 30000

    def test_huge_attempt_number(self):
        """Very large attempt numbers are capped without overflow."""
        assert self.backoff.calculate_delay(10 ** 6) == 30000

    def test_negative_attempt_treated_as_zero(self):
        """Negative attempts behave like the first one."""
        assert self.backoff.calculate_delay(-3) == 1000

    def test_next_retry_time(self):
        """The absolute retry time adds the delay to now."""
        assert self.backoff.next_retry_time(5000, 1) == 7000


class TestOtherStrategies:
    """Test linear and fixed strategies."""

    def test_linear(self):
        """Linear delays grow by the base each attempt."""
        backoff = BackoffCalculator(base_delay_ms=500, strategy=RetryStrategy.LINEAR, use_jitter=False)
        assert [backoff.calculate_delay(n) for n in range(4)] == [500, 1000, 1500, 2000]

    def test_fixed(self):
        """Fixed delays stay at the base."""
        backoff = BackoffCalculator(base_delay_ms=750, strategy=RetryStrategy.FIXED, use_jitter=False)
        assert {backoff.calculate_delay(n) for n in range(5)} == {750}

    def test_strategy_override(self):
        """A strategy can be chosen per call."""
        backoff = BackoffCalculator(base_delay_ms=100, use_jitter=False)
        assert backoff.calculate_delay_with_strategy(3, RetryStrategy.FIXED) == 100
        assert backoff.calculate_delay_with_strategy(3, RetryStrategy.EXPONENTIAL) == 800

    def test_minimum_delay(self):
        """A zero base still yields a positive delay."""
        backoff = BackoffCalculator(base_delay_ms=0, use_jitter=False)
        assert backoff.calculate_delay(0) == 1


class TestJitter:
    """Test jitter bounds and validation."""

    def test_jitter_stays_within_factor(self):
        """Jittered delays stay within +/- jitter_factor of the base value."""
        backoff = BackoffCalculator(base_delay_ms=1000, jitter_factor=0.1, rng=random.Random(42))
        for _ in range(200):
            assert 900 <= backoff.calculate_delay(0) <= 1100

    def test_jitter_respects_cap(self):
        """Jitter never pushes a delay past the cap."""
        backoff = BackoffCalculator(base_delay_ms=1000, max_delay_ms=30000, rng=random.Random(7))
        for _ in range(50):
            assert backoff.calculate_delay(10) <= 30000

    def test_seeded_jitter_is_reproducible(self):
        """The same seed gives the same delays."""
        first = BackoffCalculator(rng=random.Random(3))
        second = BackoffCalculator(rng=random.Random(3))
        assert [first.calculate_delay(n) for n in range(5)] == [second.calculate_delay(n) for n in range(5)]

    def test_invalid_arguments(self):
        """Negative delays and out-of-range jitter are rejected."""
        with pytest.raises(ValueError):
            BackoffCalculator(base_delay_ms=-1)
        with pytest.raises(ValueError):
            BackoffCalculator(jitter_factor=1.5)
