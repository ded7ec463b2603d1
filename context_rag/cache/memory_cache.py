"""
In-process result and embedding cache.

Each store is an insertion-ordered map, so the oldest surviving entry is
always at the front: eviction pops it in O(1) and expiry is checked only
when an entry is read.
"""

import copy
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, replace
from typing import Any, Callable, List, Optional

from ..config import CachingConfig
from ..models import RAGResult
from .base import BaseRAGCache, QueryKeySource, RAGCacheStats, query_cache_key

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass
class CacheEntry:
    key: str
    value: Any
    created_at: float


class RAGCache(BaseRAGCache):
    """Thread-safe TTL cache with FIFO eviction at ``max_entries`` per store."""

    def __init__(self, config: CachingConfig, clock: Clock = time.monotonic):
        super().__init__(config)
        self.clock = clock
        self.query_cache: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self.embedding_cache: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self.hits = 0
        self.misses = 0
        self._lock = threading.Lock()

    async def get_cached_result(self, query: QueryKeySource) -> Optional[RAGResult]:
        if not self.config.enabled:
            with self._lock:
                self.misses += 1
            return None

        key = query_cache_key(query)
        with self._lock:
            entry = self._get_live(self.query_cache, key)
            if entry is None:
                self.misses += 1
                return None
            self.hits += 1

        logger.debug(f"Query cache hit for '{key[:60]}'")
        return replace(copy.deepcopy(entry.value), cache_hit=True)

    async def cache_result(self, query: QueryKeySource, result: RAGResult):
        if not self.config.enabled:
            return
        key = query_cache_key(query)
        # Entries are private copies so callers cannot mutate later hits
        stored = replace(copy.deepcopy(result), cache_hit=False)
        with self._lock:
            self._insert(self.query_cache, key, stored)

    async def get_cached_embedding(self, text: str) -> Optional[List[float]]:
        if not self.config.enabled:
            return None
        with self._lock:
            entry = self._get_live(self.embedding_cache, text)
        return list(entry.value) if entry is not None else None

    async def cache_embedding(self, text: str, embedding: List[float]):
        if not self.config.enabled:
            return
        with self._lock:
            self._insert(self.embedding_cache, text, list(embedding))

    async def invalidate(self, pattern: Optional[str] = None):
        with self._lock:
            if pattern is None:
                self.query_cache.clear()
                self.embedding_cache.clear()
                return
            matching = [key for key in self.query_cache if pattern.lower() in key]
            for key in matching:
                del self.query_cache[key]
        logger.debug(f"Invalidated {len(matching)} cached results matching '{pattern}'")

    async def cleanup(self):
        with self._lock:
            removed = self._drop_expired(self.query_cache) + self._drop_expired(self.embedding_cache)
        if removed:
            logger.debug(f"Removed {removed} expired cache entries")

    async def get_stats(self) -> RAGCacheStats:
        with self._lock:
            return RAGCacheStats(
                query_count=len(self.query_cache),
                embedding_count=len(self.embedding_cache),
                hits=self.hits,
                misses=self.misses,
            )

    def reset_stats(self):
        with self._lock:
            self.hits = 0
            self.misses = 0

    async def clear(self, reset_stats: bool = True):
        with self._lock:
            self.query_cache.clear()
            self.embedding_cache.clear()
        if reset_stats:
            self.reset_stats()

    def _is_expired(self, entry: CacheEntry) -> bool:
        return self.clock() - entry.created_at > self.config.ttl_seconds

    def _get_live(self, store: "OrderedDict[str, CacheEntry]", key: str) -> Optional[CacheEntry]:
        entry = store.get(key)
        if entry is None:
            return None
        if self._is_expired(entry):
            del store[key]
            return None
        return entry

    def _insert(self, store: "OrderedDict[str, CacheEntry]", key: str, value: Any):
        # A re-inserted key moves to the back with a fresh age
        store.pop(key, None)
        while len(store) >= self.config.max_entries:
            store.popitem(last=False)
        store[key] = CacheEntry(key=key, value=value, created_at=self.clock())

    def _drop_expired(self, store: "OrderedDict[str, CacheEntry]") -> int:
        expired = [key for key, entry in store.items() if self._is_expired(entry)]
        for key in expired:
            del store[key]
        return len(expired)


class NoOpRAGCache(BaseRAGCache):
    """Cache used when caching is disabled: always misses, never stores."""

    def __init__(self, config: Optional[CachingConfig] = None):
        super().__init__(config or CachingConfig(enabled=False))

    async def get_cached_result(self, query: QueryKeySource) -> Optional[RAGResult]:
        return None

    async def cache_result(self, query: QueryKeySource, result: RAGResult):
        pass

    async def get_cached_embedding(self, text: str) -> Optional[List[float]]:
        return None

    async def cache_embedding(self, text: str, embedding: List[float]):
        pass

    async def invalidate(self, pattern: Optional[str] = None):
        pass

    async def cleanup(self):
        pass

    async def get_stats(self) -> RAGCacheStats:
        return RAGCacheStats()

    def reset_stats(self):
        pass

    async def clear(self, reset_stats: bool = True):
        pass
