"""
Unit tests for the response cache.

Tests TTL expiry, hit accounting and the capacity cap.
"""

import pytest

from oracle_guard.core.response_cache import ResponseCache
from oracle_guard.core.results import OracleResult, ProviderType

from fakes import FakeClock


def _result(text="answer"):
    return OracleResult(success=True, text=text, provider=ProviderType.OPENAI, provider_name="openai")


class TestCacheLookup:
    """Test get/put and expiry."""

    def setup_method(self):
        """Set up a cache on a fake clock."""
        self.clock = FakeClock()
        self.cache = ResponseCache(ttl_seconds=300, clock=self.clock)

    def test_put_then_get_returns_identical_result(self):
        """An immediate get returns the stored result."""
        result = _result()
        assert self.cache.put("allocate food", result)
        assert self.cache.get("allocate food") is result

    def test_miss_returns_none(self):
        """Unknown prompts miss."""
        assert self.cache.get("unknown") is None

    def test_expired_entry_is_a_miss(self):
        """After the TTL an entry is evicted on access and counted as a miss."""
        self.cache.put("allocate food", _result())
        self.clock.advance(301)
        assert self.cache.get("allocate food") is None
        assert len(self.cache) == 0
        assert self.cache.statistics()["misses"] == 1
        assert self.cache.statistics()["hits"] == 0

    def test_entry_live_until_ttl(self):
        """An entry is still served exactly at its expiry time."""
        self.cache.put("allocate food", _result())
        self.clock.advance(300)
        assert self.cache.get("allocate food") is not None

    def test_zero_ttl_never_expires(self):
        """TTL 0 entries survive any amount of time."""
        self.cache.put("template", _result(), ttl_seconds=0)
        self.clock.advance(10 ** 9)
        assert self.cache.get("template") is not None
        assert self.cache.evict_expired() == 0

    def test_hit_rate(self):
        """One hit and one miss give a hit rate of 0.5."""
        self.cache.put("a", _result())
        self.cache.get("a")
        self.cache.get("b")
        assert self.cache.hit_rate() == 0.5

    def test_hit_rate_empty(self):
        """No lookups give a hit rate of zero."""
        assert self.cache.hit_rate() == 0.0

    def test_contains_does_not_count(self):
        """contains() leaves hit and miss counters untouched."""
        self.cache.put("a", _result())
        assert self.cache.contains("a")
        assert not self.cache.contains("b")
        stats = self.cache.statistics()
        assert stats["hits"] == 0
        assert stats["misses"] == 0


class TestCacheMaintenance:
    """Test invalidation, eviction and capacity."""

    def setup_method(self):
        """Set up a small cache on a fake clock."""
        self.clock = FakeClock()
        self.cache = ResponseCache(ttl_seconds=10, max_entries=2, clock=self.clock)

    def test_invalidate(self):
        """Invalidation removes an entry and reports whether it existed."""
        self.cache.put("a", _result())
        assert self.cache.invalidate("a")
        assert not self.cache.invalidate("a")
        assert self.cache.get("a") is None

    def test_evict_expired(self):
        """The sweep removes only expired entries."""
        self.cache.put("old", _result())
        self.clock.advance(5)
        self.cache.put("new", _result())
        self.clock.advance(6)
        assert self.cache.evict_expired() == 1
        assert self.cache.contains("new")

    def test_full_cache_rejects_new_keys(self):
        """At capacity new prompts are refused instead of evicting."""
        assert self.cache.put("a", _result("1"))
        assert self.cache.put("b", _result("2"))
        assert not self.cache.put("c", _result("3"))
        assert self.cache.get("a").text == "1"
        assert self.cache.get("c") is None

    def test_full_cache_allows_overwrite(self):
        """Existing prompts can be refreshed at capacity."""
        self.cache.put("a", _result("1"))
        self.cache.put("b", _result("2"))
        assert self.cache.put("a", _result("updated"))
        assert self.cache.get("a").text == "updated"

    def test_clear_resets_counters(self):
        """Clear empties the cache and the statistics."""
        self.cache.put("a", _result())
        self.cache.get("a")
        self.cache.clear()
        assert len(self.cache) == 0
        assert self.cache.hit_rate() == 0.0

    def test_hash_prompt_is_stable(self):
        """Keys are the SHA-256 of the prompt text."""
        key = ResponseCache.hash_prompt("allocate food")
        assert key == ResponseCache.hash_prompt("allocate food")
        assert key != ResponseCache.hash_prompt("allocate Food")
        assert len(key) == 64

    def test_negative_ttl_rejected(self):
        """Negative TTLs are invalid."""
        with pytest.raises(ValueError):
            ResponseCache(ttl_seconds=-1)
