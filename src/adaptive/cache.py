"""Bounded in-process cache for derived engine results.

The feature gate stores one evaluation per metrics fingerprint.  The cache
has an explicit capacity and an explicit eviction policy: least recently
used.  A ``get`` hit refreshes the entry; inserting beyond capacity evicts
the entry that has gone unused the longest.

Usage::

    cache = BoundedCache(capacity=50)
    value = cache.get(key)
    if value is None:
        value = compute()
        cache.put(key, value)
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Generic, Hashable, TypeVar

logger = logging.getLogger("lunara.adaptive.cache")

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class BoundedCache(Generic[K, V]):
    """LRU cache with a fixed capacity.

    Attributes:
        capacity:  Maximum number of entries kept.
        hits:      Number of successful lookups since creation / clear.
        misses:    Number of failed lookups since creation / clear.
        evictions: Number of entries dropped to respect ``capacity``.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self._entries: OrderedDict[K, V] = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def get(self, key: K) -> V | None:
        """Return the cached value for ``key`` (refreshing its recency) or None."""
        if key not in self._entries:
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return self._entries[key]

    def put(self, key: K, value: V) -> None:
        """Insert or replace ``key``; evict the least recently used entry if full."""
        self._entries[key] = value
        self._entries.move_to_end(key)
        while len(self._entries) > self.capacity:
            evicted, _ = self._entries.popitem(last=False)
            self.evictions += 1
            logger.debug("Evicted cache entry %s", evicted)

    def discard(self, key: K) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        """Reset the cache."""
        self._entries.clear()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def keys(self) -> list[K]:
        """Keys from least to most recently used."""
        return list(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
