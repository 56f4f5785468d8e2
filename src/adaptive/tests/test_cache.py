"""Tests for the bounded LRU cache."""

from __future__ import annotations

import pytest

from src.adaptive.cache import BoundedCache


class TestBoundedCache:
    def test_get_miss_and_hit(self) -> None:
        cache: BoundedCache[str, int] = BoundedCache(capacity=2)
        assert cache.get("a") is None
        cache.put("a", 1)
        assert cache.get("a") == 1
        assert (cache.hits, cache.misses) == (1, 1)

    def test_evicts_least_recently_used(self) -> None:
        cache: BoundedCache[str, int] = BoundedCache(capacity=2)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.get("a")  # refresh "a"; "b" is now the oldest
        cache.put("c", 3)
        assert "b" not in cache
        assert cache.keys() == ["a", "c"]
        assert cache.evictions == 1

    def test_never_exceeds_capacity(self) -> None:
        cache: BoundedCache[int, int] = BoundedCache(capacity=50)
        for i in range(200):
            cache.put(i, i)
        assert len(cache) == 50
        assert cache.keys()[0] == 150

    def test_put_replaces_and_refreshes(self) -> None:
        cache: BoundedCache[str, int] = BoundedCache(capacity=2)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.put("a", 10)
        cache.put("c", 3)
        assert cache.get("a") == 10
        assert "b" not in cache

    def test_discard_and_clear(self) -> None:
        cache: BoundedCache[str, int] = BoundedCache(capacity=3)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.discard("a")
        cache.discard("missing")
        assert cache.keys() == ["b"]
        cache.clear()
        assert len(cache) == 0
        assert cache.hits == cache.misses == cache.evictions == 0

    def test_invalid_capacity_raises(self) -> None:
        with pytest.raises(ValueError, match="capacity must be at least 1"):
            BoundedCache(capacity=0)
