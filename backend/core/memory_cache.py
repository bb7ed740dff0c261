"""
Local memory cache.

Provides a bounded, thread-safe LRU cache with per-entry expiry for
frequently resolved, rarely changing data.
"""

import time
import logging
import threading
from typing import Any, Callable, Dict, Hashable, Optional
from collections import OrderedDict

logger = logging.getLogger(__name__)

_MISSING = object()


class LRUCache:
    """Thread-safe LRU (Least Recently Used) cache implementation."""

    def __init__(
        self,
        max_size: int = 1000,
        ttl_seconds: float = 60,
        timer: Callable[[], float] = time.monotonic,
    ):
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._timer = timer
        self.cache: "OrderedDict[Hashable, tuple[Any, float]]" = OrderedDict()
        self.lock = threading.Lock()
        self.stats = {
            "hits": 0,
            "misses": 0,
            "evictions": 0,
            "expirations": 0
        }

    def get(self, key: Hashable, default: Any = None) -> Any:
        """Get value from cache, or ``default`` when absent or expired."""
        with self.lock:
            entry = self.cache.get(key, _MISSING)
            if entry is _MISSING:
                self.stats["misses"] += 1
                return default

            value, expiry_time = entry

            if self._timer() > expiry_time:
                del self.cache[key]
                self.stats["expirations"] += 1
                self.stats["misses"] += 1
                return default

            # Move to end (most recently used)
            self.cache.move_to_end(key)
            self.stats["hits"] += 1
            return value

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        """Set value in cache."""
        with self.lock:
            ttl = self.ttl_seconds if ttl is None else ttl
            expiry_time = self._timer() + ttl

            if key in self.cache:
                del self.cache[key]

            # Remove oldest items if at capacity
            while len(self.cache) >= self.max_size:
                self.cache.popitem(last=False)
                self.stats["evictions"] += 1

            self.cache[key] = (value, expiry_time)

    def clear(self) -> None:
        """Clear all cache entries."""
        with self.lock:
            self.cache.clear()

    def __len__(self) -> int:
        with self.lock:
            return len(self.cache)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        total_requests = self.stats["hits"] + self.stats["misses"]
        hit_rate = (
            (self.stats["hits"] / total_requests * 100)
            if total_requests > 0
            else 0
        )

        return {
            **self.stats,
            "size": len(self.cache),
            "max_size": self.max_size,
            "hit_rate": f"{hit_rate:.2f}%"
        }
