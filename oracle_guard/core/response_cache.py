"""
Response caching.

Memoizes oracle results by prompt hash with a time-to-live. The cache is
bounded and rejects new entries when full instead of evicting.
"""

import hashlib
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .results import OracleResult

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300
MAX_CACHE_SIZE = 1000


@dataclass
class CacheEntry:
    """A cached result with expiry bookkeeping."""
    key: str
    result: OracleResult
    created_at: float
    expires_at: float  # 0 = never expires
    hit_count: int = 0

    def is_expired(self, now: float) -> bool:
        return self.expires_at > 0 and now > self.expires_at


class ResponseCache:
    """Prompt-keyed result cache with TTL and a hard size cap."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = MAX_CACHE_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize an empty cache.

        Args:
            ttl_seconds: Default lifetime of an entry; 0 means never expire
            max_entries: Maximum number of entries held at once
            clock: Time source in seconds
        """
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds cannot be negative")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._lock = threading.Lock()

    @staticmethod
    def hash_prompt(prompt: str) -> str:
        return hashlib.sha256(prompt.encode("utf-8")).hexdigest()

    def get(self, prompt: str) -> Optional[OracleResult]:
        """Return the cached result, or None on a miss or expired entry."""
        key = self.hash_prompt(prompt)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                return None
            entry.hit_count += 1
            self._hits += 1
            return entry.result

    def put(
        self,
        prompt: str,
        result: OracleResult,
        ttl_seconds: Optional[float] = None,
    ) -> bool:
        """Store a result.

        Args:
            prompt: Prompt the result answers
            result: Result to cache
            ttl_seconds: Override of the default TTL; 0 means never expire

        Returns:
            False if the cache is full and the prompt is not already cached
        """
        key = self.hash_prompt(prompt)
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_entries:
                logger.debug("Cache full (%d entries), not caching", len(self._entries))
                return False
            now = self._clock()
            self._entries[key] = CacheEntry(
                key=key,
                result=result,
                created_at=now,
                expires_at=now + ttl if ttl > 0 else 0,
            )
        return True

    def contains(self, prompt: str) -> bool:
        """Check for a live entry without touching the hit/miss counters."""
        key = self.hash_prompt(prompt)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return False
            return True

    def invalidate(self, prompt: str) -> bool:
        with self._lock:
            return self._entries.pop(self.hash_prompt(prompt), None) is not None

    def evict_expired(self) -> int:
        """Drop every expired entry. Returns the number evicted."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("Evicted %d expired cache entries", len(expired))
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def hit_rate(self) -> float:
        """Fraction of lookups that hit (0-1)."""
        with self._lock:
            total = self._hits + self._misses
            return self._hits / total if total else 0.0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def statistics(self) -> Dict[str, float]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._entries),
                "max_entries": self.max_entries,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / total if total else 0.0,
                "ttl_seconds": self.ttl_seconds,
            }
