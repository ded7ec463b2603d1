"""
Redis-backed cache for deployments running several pipeline instances.

Values are stored as JSON with ``SETEX`` so Redis enforces the TTL; capacity
is left to the server's eviction policy and keys are listed with ``SCAN``.
Any Redis failure is wrapped in a CacheError, logged and treated as a miss,
never raised to the pipeline.
"""

import hashlib
import json
import logging
import math
from dataclasses import replace
from typing import Any, List, Optional

from ..config import CachingConfig
from ..errors import CacheError
from ..models import RAGResult
from .base import BaseRAGCache, QueryKeySource, RAGCacheStats, query_cache_key

logger = logging.getLogger(__name__)

_GLOB_SPECIAL = "\\*?[]"


def _escape_glob(text: str) -> str:
    return "".join(f"\\{ch}" if ch in _GLOB_SPECIAL else ch for ch in text)


class RedisRAGCache(BaseRAGCache):
    """Cache over a ``redis.asyncio`` client (or anything with the same methods)."""

    def __init__(self, client: Any, config: CachingConfig, prefix: Optional[str] = None):
        super().__init__(config)
        self.client = client
        self.prefix = prefix if prefix is not None else config.key_prefix
        self.hits = 0
        self.misses = 0
        self.last_error: Optional[CacheError] = None

    def _query_key(self, query: QueryKeySource) -> str:
        return f"{self.prefix}query:{query_cache_key(query)}"

    def _embedding_key(self, text: str) -> str:
        return f"{self.prefix}embedding:{hashlib.sha256(text.encode('utf-8')).hexdigest()}"

    @property
    def _ttl(self) -> int:
        return int(math.ceil(self.config.ttl_seconds))

    async def get_cached_result(self, query: QueryKeySource) -> Optional[RAGResult]:
        if not self.config.enabled:
            self.misses += 1
            return None

        raw = await self._get(self._query_key(query))
        if raw is None:
            self.misses += 1
            return None

        try:
            result = RAGResult.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable cached result: {e}")
            self.misses += 1
            return None

        self.hits += 1
        return replace(result, cache_hit=True)

    async def cache_result(self, query: QueryKeySource, result: RAGResult):
        if not self.config.enabled or self._ttl <= 0:
            return
        payload = {**result.to_dict(), "cache_hit": False}
        await self._setex(self._query_key(query), json.dumps(payload))

    async def get_cached_embedding(self, text: str) -> Optional[List[float]]:
        if not self.config.enabled:
            return None
        raw = await self._get(self._embedding_key(text))
        if raw is None:
            return None
        try:
            return [float(value) for value in json.loads(raw)]
        except (ValueError, TypeError) as e:
            logger.warning(f"Discarding unreadable cached embedding: {e}")
            return None

    async def cache_embedding(self, text: str, embedding: List[float]):
        if not self.config.enabled or self._ttl <= 0:
            return
        await self._setex(self._embedding_key(text), json.dumps([float(value) for value in embedding]))

    async def invalidate(self, pattern: Optional[str] = None):
        if pattern is None:
            await self._delete_matching(f"{self.prefix}*")
        else:
            await self._delete_matching(f"{self.prefix}query:*{_escape_glob(pattern.lower())}*")

    async def cleanup(self):
        # Redis expires keys itself
        pass

    async def get_stats(self) -> RAGCacheStats:
        query_keys = await self._keys(f"{self.prefix}query:*")
        embedding_keys = await self._keys(f"{self.prefix}embedding:*")
        return RAGCacheStats(
            query_count=len(query_keys),
            embedding_count=len(embedding_keys),
            hits=self.hits,
            misses=self.misses,
        )

    def reset_stats(self):
        self.hits = 0
        self.misses = 0

    async def clear(self, reset_stats: bool = True):
        await self._delete_matching(f"{self.prefix}*")
        if reset_stats:
            self.reset_stats()

    async def health_check(self) -> bool:
        try:
            return bool(await self.client.ping())
        except Exception as e:
            logger.warning(f"{self._fault('PING', e)}")
            return False

    async def close(self):
        try:
            await self.client.aclose()
        except Exception as e:
            logger.warning(f"{self._fault('close', e)}")

    def _fault(self, operation: str, error: Exception) -> CacheError:
        fault = CacheError(f"Redis {operation} failed: {error}", error)
        self.last_error = fault
        return fault

    async def _get(self, key: str) -> Optional[str]:
        try:
            return await self.client.get(key)
        except Exception as e:
            logger.warning(f"{self._fault('GET', e)}, treating as miss")
            return None

    async def _setex(self, key: str, value: str):
        try:
            await self.client.setex(key, self._ttl, value)
        except Exception as e:
            logger.warning(f"{self._fault('SETEX', e)}, entry not cached")

    async def _keys(self, pattern: str) -> List[str]:
        try:
            return [key async for key in self.client.scan_iter(match=pattern)]
        except Exception as e:
            logger.warning(f"{self._fault('SCAN', e)}")
            return []

    async def _delete_matching(self, pattern: str):
        keys = await self._keys(pattern)
        if not keys:
            return
        try:
            await self.client.delete(*keys)
        except Exception as e:
            logger.warning(f"{self._fault('DEL', e)}")


def create_redis_client(url: str):
    """Create a ``redis.asyncio`` client that returns str values."""
    try:
        import redis.asyncio as redis
    except ImportError:
        raise ImportError("redis not installed. Install with: pip install 'context-rag[redis]'")
    return redis.from_url(url, decode_responses=True)
