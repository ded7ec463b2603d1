"""
Query-result and embedding caches.
"""

import logging
from typing import Any, Optional

from ..config import CachingConfig
from ..errors import InvalidConfigError
from .base import BaseRAGCache, RAGCacheStats, normalize_query_text, query_cache_key
from .memory_cache import NoOpRAGCache, RAGCache
from .redis_cache import RedisRAGCache, create_redis_client

logger = logging.getLogger(__name__)


def create_rag_cache(config: CachingConfig, client: Optional[Any] = None) -> BaseRAGCache:
    """
    Build the cache selected by the caching config.

    Args:
        config: Caching settings
        client: Optional ready-made Redis client for the ``redis`` backend

    Returns:
        A no-op cache when caching is disabled, otherwise the configured backend
    """
    if not config.enabled:
        return NoOpRAGCache(config)

    if config.backend == "redis":
        if client is None:
            if not config.redis_url:
                raise InvalidConfigError("caching.redis_url is required for the redis backend", "caching.redis_url")
            client = create_redis_client(config.redis_url)
        logger.info(f"Using Redis cache with prefix '{config.key_prefix}'")
        return RedisRAGCache(client, config)

    return RAGCache(config)


__all__ = [
    "BaseRAGCache",
    "NoOpRAGCache",
    "RAGCache",
    "RAGCacheStats",
    "RedisRAGCache",
    "create_rag_cache",
    "create_redis_client",
    "normalize_query_text",
    "query_cache_key",
]
