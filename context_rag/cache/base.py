"""
Cache contract shared by the in-process and Redis backends.
"""

import hashlib
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from ..config import CachingConfig, RAGConfig
from ..models import RAGQuery, RAGResult
from ..query.text_scan import collapse_whitespace

QueryKeySource = Union[RAGQuery, str]


@dataclass
class RAGCacheStats:
    """Snapshot of cache occupancy and effectiveness."""
    query_count: int = 0
    embedding_count: int = 0
    hits: int = 0
    misses: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query_count": self.query_count,
            "embedding_count": self.embedding_count,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
        }


def normalize_query_text(text: str) -> str:
    """Lowercase and collapse whitespace so trivially different queries share a key."""
    return collapse_whitespace(text).lower()


def query_cache_key(query: QueryKeySource) -> str:
    """Key for the query-result cache.

    The key is the normalised text, followed by a digest of the per-request
    overrides when the request carries any.
    """
    if isinstance(query, str):
        return normalize_query_text(query)

    overrides: Dict[str, Any] = {}
    if query.sources:
        overrides["sources"] = sorted(source.value for source in query.sources)
    if query.max_tokens is not None:
        overrides["max_tokens"] = query.max_tokens
    if query.top_k is not None:
        overrides["top_k"] = query.top_k
    if query.context is not None and query.context.to_dict():
        overrides["context"] = query.context.to_dict()

    normalized = normalize_query_text(query.text)
    if not overrides:
        return normalized

    digest = hashlib.sha256(json.dumps(overrides, sort_keys=True).encode("utf-8")).hexdigest()[:16]
    return f"{normalized}#{digest}"


def merge_caching_config(config: CachingConfig, updates: Union[Dict[str, Any], CachingConfig]) -> CachingConfig:
    """Apply a partial update to a caching config, validated like the full config."""
    if isinstance(updates, CachingConfig):
        updates = {name: getattr(updates, name) for name in updates.__dataclass_fields__}
    merged = RAGConfig(caching=config).merge({"caching": updates})
    return merged.caching


class BaseRAGCache(ABC):
    """Query-result and embedding cache.

    Query results are keyed by ``query_cache_key``; embeddings by the raw
    text. Entries expire ``ttl_seconds`` after insertion. Hits and misses are
    counted on query-result lookups.
    """

    def __init__(self, config: CachingConfig):
        self.config = config

    @abstractmethod
    async def get_cached_result(self, query: QueryKeySource) -> Optional[RAGResult]:
        """Return the stored result with ``cache_hit=True``, or None."""

    @abstractmethod
    async def cache_result(self, query: QueryKeySource, result: RAGResult):
        """Store a result for the query."""

    @abstractmethod
    async def get_cached_embedding(self, text: str) -> Optional[List[float]]:
        """Return the stored embedding for the text, or None."""

    @abstractmethod
    async def cache_embedding(self, text: str, embedding: List[float]):
        """Store an embedding for the text."""

    @abstractmethod
    async def invalidate(self, pattern: Optional[str] = None):
        """Drop query results whose key contains ``pattern``, or everything when omitted."""

    @abstractmethod
    async def cleanup(self):
        """Drop expired entries."""

    @abstractmethod
    async def get_stats(self) -> RAGCacheStats:
        """Return occupancy and hit/miss counters."""

    @abstractmethod
    def reset_stats(self):
        """Zero the hit/miss counters."""

    @abstractmethod
    async def clear(self, reset_stats: bool = True):
        """Empty both stores, and the counters unless told otherwise."""

    async def health_check(self) -> bool:
        return True

    async def close(self):
        """Release backend connections."""

    def update_config(self, updates: Union[Dict[str, Any], CachingConfig]):
        self.config = merge_caching_config(self.config, updates)
