"""Tests for TTLCache."""

import pytest

from lore_context.core.tokenizer_service import TokenizerService
from lore_context.utils.token_cache import TTLCache


class ManualClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestTTLCache:
    """Test cases for TTLCache."""

    def test_set_and_get(self):
        cache = TTLCache(10)
        cache.set("a", 1)
        assert cache.get("a") == 1
        assert cache.get("b") is None

    def test_expiry(self):
        clock = ManualClock()
        cache = TTLCache(10, clock=clock)
        cache.set("a", 1)

        clock.now = 10
        assert cache.get("a") == 1
        clock.now = 10.5
        assert cache.get("a") is None

    def test_per_entry_ttl(self):
        clock = ManualClock()
        cache = TTLCache(10, clock=clock)
        cache.set("short", 1, ttl_seconds=1)
        cache.set("long", 2)
        clock.now = 5
        assert cache.get("short") is None
        assert cache.get("long") == 2

    def test_cleanup_and_stats(self):
        clock = ManualClock()
        cache = TTLCache(10, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2, ttl_seconds=100)
        clock.now = 20

        assert cache.get_stats() == {"total": 2, "valid": 1, "expired": 1}
        assert cache.cleanup() == 1
        assert cache.get_stats() == {"total": 1, "valid": 1, "expired": 0}

    def test_delete_and_clear(self):
        cache = TTLCache(10)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.delete("a")
        assert cache.get("a") is None
        cache.clear()
        assert cache.get_stats()["total"] == 0

    def test_expired_entries_swept_on_write_interval(self):
        """Test that expired keys are removed without being read again."""
        clock = ManualClock()
        cache = TTLCache(10, clock=clock, cleanup_interval=10)
        for i in range(10):
            cache.set(f"old-{i}", i)

        clock.now = 20
        for i in range(10):
            cache.set(f"new-{i}", i)

        assert len(cache) == 10
        assert cache.get_stats()["expired"] == 0

    def test_size_is_capped(self):
        """Test that live keys beyond max_entries evict the oldest writes."""
        cache = TTLCache(1000, max_entries=100)
        for i in range(5000):
            cache.set(f"key-{i}", i)

        assert len(cache) <= 100
        assert cache.get("key-4999") == 4999
        assert cache.get("key-0") is None

    def test_rewrite_refreshes_position(self):
        cache = TTLCache(1000, max_entries=10)
        for i in range(10):
            cache.set(f"key-{i}", i)
        cache.set("key-0", "fresh")
        cache.set("key-10", 10)

        assert cache.get("key-0") == "fresh"
        assert cache.get("key-1") is None

    def test_max_entries_must_be_positive(self):
        with pytest.raises(ValueError):
            TTLCache(10, max_entries=0)

    def test_tokenizer_cache_stays_bounded(self):
        """Test that many distinct texts do not grow the token cache without limit."""
        cache = TTLCache(300, max_entries=500)
        service = TokenizerService("heuristic", cache=cache)
        for i in range(5000):
            service.estimate_tokens(f"message number {i}")

        assert len(cache) <= 500
