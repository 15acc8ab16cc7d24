"""
Evaluation Cache for the Markov Cohort Model
Memoises model evaluations keyed by the frozen parameter record together with
the state space and simulator settings that produced them.

Evaluations are deterministic, so entries never go stale and are only dropped
when the cache is full (least recently used first). Cached values are
immutable (frozen dataclasses over read-only numpy arrays); handing the same
result to several callers or threads shares nothing that can be written.
"""

import logging
from collections import OrderedDict
from threading import Lock
from typing import Callable, Dict, Hashable, Optional

from config import Config

logger = logging.getLogger(__name__)


class CacheManager:
    """Thread-safe LRU memo of evaluation results, bounded by ``max_size``"""

    def __init__(self, max_size: Optional[int] = None):
        self.max_size = max_size or Config.CACHE_MAX_SIZE
        self._entries = OrderedDict()
        self._lock = Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: Hashable):
        """Cached value for ``key``, or None on a miss"""
        with self._lock:
            if key not in self._entries:
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return self._entries[key]

    def put(self, key: Hashable, value) -> None:
        with self._lock:
            self._entries[key] = value
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)
                self._evictions += 1

    def memoize(self, key: Hashable, compute: Callable[[], object]):
        """
        Return the value stored under ``key``, computing and storing it on a miss.

        Two threads missing on the same key both compute; the results are
        identical, so the second store simply replaces the first.
        """
        value = self.get(key)
        if value is not None:
            logger.debug("[Cache] HIT %s", key[0] if isinstance(key, tuple) else key)
            return value

        value = compute()
        if value is not None:
            self.put(key, value)
        return value

    def __len__(self):
        with self._lock:
            return len(self._entries)

    def __contains__(self, key):
        with self._lock:
            return key in self._entries

    def clear(self) -> int:
        """Drop every entry; returns how many were dropped"""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def get_stats(self) -> Dict:
        with self._lock:
            total = self._hits + self._misses
            hit_rate = (self._hits / total * 100) if total > 0 else 0

            return {
                "entries": len(self._entries),
                "max_size": self.max_size,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate_percent": round(hit_rate, 1),
                "evictions": self._evictions,
            }


# Shared by the HTTP API; models built without a cache never touch it
cache = CacheManager()
