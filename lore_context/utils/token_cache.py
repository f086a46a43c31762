"""Small TTL cache used to memoise token counts."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 10000
DEFAULT_CLEANUP_INTERVAL = 1000


@dataclass
class CacheEntry:
    data: Any
    timestamp: float
    expires_at: float


class TTLCache:
    """Thread-safe key/value cache whose entries expire after ``ttl_seconds``.

    Expired entries are swept every ``cleanup_interval`` writes. The cache never
    holds more than ``max_entries`` keys; when full, the oldest writes are
    evicted first.
    """

    def __init__(self,
                 ttl_seconds: float = 300,
                 clock: Optional[Callable[[], float]] = None,
                 max_entries: int = DEFAULT_MAX_ENTRIES,
                 cleanup_interval: int = DEFAULT_CLEANUP_INTERVAL):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.ttl = ttl_seconds
        self.max_entries = max_entries
        self.cleanup_interval = max(1, cleanup_interval)
        self._clock = clock or time.monotonic
        self._entries: Dict[str, CacheEntry] = {}
        self._writes = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() > entry.expires_at:
                del self._entries[key]
                return None
            return entry.data

    def set(self, key: str, data: Any, ttl_seconds: Optional[float] = None):
        now = self._clock()
        ttl = self.ttl if ttl_seconds is None else ttl_seconds
        with self._lock:
            # Re-inserting moves the key to the newest position.
            self._entries.pop(key, None)
            self._entries[key] = CacheEntry(data=data, timestamp=now, expires_at=now + ttl)
            self._writes += 1
            if self._writes % self.cleanup_interval == 0:
                self._remove_expired(now)
            if len(self._entries) > self.max_entries:
                self._evict(now)

    def delete(self, key: str):
        with self._lock:
            self._entries.pop(key, None)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def cleanup(self) -> int:
        """Drop expired entries and return how many were removed."""
        now = self._clock()
        with self._lock:
            return self._remove_expired(now)

    def get_stats(self) -> Dict[str, int]:
        now = self._clock()
        with self._lock:
            total = len(self._entries)
            valid = sum(1 for e in self._entries.values() if e.expires_at > now)
        return {"total": total, "valid": valid, "expired": total - valid}

    def _remove_expired(self, now: float) -> int:
        # caller holds self._lock
        expired = [k for k, e in self._entries.items() if now > e.expires_at]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Cleaned up %d expired cache entries", len(expired))
        return len(expired)

    def _evict(self, now: float):
        # caller holds self._lock; shrinks to 90% of max_entries
        self._remove_expired(now)
        target = self.max_entries - self.max_entries // 10
        evicted = 0
        while len(self._entries) > target:
            del self._entries[next(iter(self._entries))]
            evicted += 1
        if evicted:
            logger.debug("Evicted %d cache entries (max %d)", evicted, self.max_entries)
