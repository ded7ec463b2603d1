"""
Tests for the result and embedding caches.
"""

import asyncio
import json
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import AsyncMock, Mock

import pytest

from context_rag.cache import (
    NoOpRAGCache,
    RAGCache,
    RedisRAGCache,
    create_rag_cache,
    normalize_query_text,
    query_cache_key,
)
from context_rag.config import CachingConfig
from context_rag.errors import CacheError, InvalidConfigError, RAGErrorCode
from context_rag.models import QueryContext, RAGQuery, RAGResult
from context_rag.retrieval import RetrievedChunk, SourceAttribution, SourceType


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_result(query_id="rag-1", text="<retrieved_context/>"):
    return RAGResult(
        query_id=query_id,
        retrieved_chunks=[RetrievedChunk(id="k1", content="login", source=SourceType.KEYWORD, score=1.2)],
        assembled_context=text,
        token_count=5,
        sources=[SourceAttribution(source=SourceType.KEYWORD, count=1, avg_score=1.2, latency_ms=3.0)],
        latency_ms=12.0,
    )


class TestQueryCacheKey:
    """Test query key derivation."""

    def test_normalization(self):
        assert normalize_query_text("  Find   the\tLOGIN ") == "find the login"
        assert query_cache_key("Find the login") == query_cache_key(RAGQuery(text="find  the login"))

    def test_overrides_change_key(self):
        plain = query_cache_key(RAGQuery(text="login"))
        assert plain == "login"
        assert query_cache_key(RAGQuery(text="login", max_tokens=100)) != plain
        assert query_cache_key(RAGQuery(text="login", top_k=3)) != plain
        assert query_cache_key(RAGQuery(text="login", context=QueryContext(language="go"))) != plain

    def test_source_order_does_not_matter(self):
        a = RAGQuery(text="login", sources=[SourceType.DOCS, SourceType.KEYWORD])
        b = RAGQuery(text="login", sources=[SourceType.KEYWORD, SourceType.DOCS])
        assert query_cache_key(a) == query_cache_key(b)


class TestRAGCache:
    """Test the in-process cache."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def cache(self, clock):
        return RAGCache(CachingConfig(ttl_seconds=10, max_entries=3), clock=clock)

    @pytest.mark.asyncio
    async def test_hit_then_expiry(self, cache, clock):
        result = make_result()
        await cache.cache_result("q", result)

        cached = await cache.get_cached_result("q")
        assert cached.cache_hit
        assert cached.assembled_context == result.assembled_context
        assert cached.query_id == result.query_id

        clock.advance(11)
        assert await cache.get_cached_result("q") is None
        assert (await cache.get_stats()).query_count == 0

    @pytest.mark.asyncio
    async def test_lookup_is_case_and_whitespace_insensitive(self, cache):
        await cache.cache_result("Find the login", make_result())

        assert await cache.get_cached_result("  find THE login ") is not None

    @pytest.mark.asyncio
    async def test_fifo_eviction(self, cache):
        for i in range(4):
            await cache.cache_result(f"q{i}", make_result(f"rag-{i}"))

        assert await cache.get_cached_result("q0") is None
        for i in range(1, 4):
            assert (await cache.get_cached_result(f"q{i}")).query_id == f"rag-{i}"

    @pytest.mark.asyncio
    async def test_reads_do_not_protect_from_eviction(self, cache):
        for i in range(3):
            await cache.cache_result(f"q{i}", make_result(f"rag-{i}"))
        await cache.get_cached_result("q0")

        await cache.cache_result("q3", make_result("rag-3"))

        assert await cache.get_cached_result("q0") is None

    @pytest.mark.asyncio
    async def test_stats(self, cache):
        await cache.cache_result("q", make_result())
        await cache.get_cached_result("q")
        await cache.get_cached_result("missing")

        stats = await cache.get_stats()
        assert stats.hits == 1
        assert stats.misses == 1
        assert stats.hit_rate == 0.5
        assert stats.to_dict()["query_count"] == 1

        cache.reset_stats()
        stats = await cache.get_stats()
        assert stats.hits == 0
        assert stats.hit_rate == 0.0

    @pytest.mark.asyncio
    async def test_hits_are_isolated_copies(self, cache):
        await cache.cache_result("q", make_result())

        first = await cache.get_cached_result("q")
        first.retrieved_chunks.clear()
        first.sources[0].count = 99

        second = await cache.get_cached_result("q")
        assert [c.id for c in second.retrieved_chunks] == ["k1"]
        assert second.sources[0].count != 99

    def test_concurrent_reads_and_writes(self, clock):
        cache = RAGCache(CachingConfig(ttl_seconds=300, max_entries=16), clock=clock)

        def worker(worker_id):
            async def run():
                for i in range(50):
                    query = f"query {(worker_id * 7 + i) % 40}"
                    await cache.cache_result(query, make_result(f"rag-{worker_id}-{i}"))
                    await cache.get_cached_result(query)
                    await cache.cache_embedding(query, [float(i), float(worker_id)])
                    await cache.get_cached_embedding(query)

            asyncio.run(run())

        with ThreadPoolExecutor(max_workers=8) as executor:
            list(executor.map(worker, range(8)))

        stats = asyncio.run(cache.get_stats())
        assert len(cache.query_cache) <= 16
        assert len(cache.embedding_cache) <= 16
        assert stats.hits + stats.misses == 400

    @pytest.mark.asyncio
    async def test_embedding_store(self, cache, clock):
        await cache.cache_embedding("Login", [0.1, 0.2])

        assert await cache.get_cached_embedding("Login") == [0.1, 0.2]
        assert await cache.get_cached_embedding("login") is None

        clock.advance(11)
        assert await cache.get_cached_embedding("Login") is None

    @pytest.mark.asyncio
    async def test_invalidate_pattern(self, cache):
        await cache.cache_result("login handler", make_result("rag-1"))
        await cache.cache_result("logout handler", make_result("rag-2"))

        await cache.invalidate("LOGIN")

        assert await cache.get_cached_result("login handler") is None
        assert await cache.get_cached_result("logout handler") is not None

    @pytest.mark.asyncio
    async def test_invalidate_all_and_clear(self, cache):
        await cache.cache_result("q", make_result())
        await cache.cache_embedding("q", [1.0])
        await cache.get_cached_result("q")

        await cache.invalidate()
        stats = await cache.get_stats()
        assert stats.query_count == 0
        assert stats.embedding_count == 0
        assert stats.hits == 1

        await cache.clear(reset_stats=True)
        assert (await cache.get_stats()).hits == 0

    @pytest.mark.asyncio
    async def test_cleanup(self, cache, clock):
        await cache.cache_result("old", make_result())
        clock.advance(8)
        await cache.cache_result("new", make_result())
        clock.advance(3)

        await cache.cleanup()

        stats = await cache.get_stats()
        assert stats.query_count == 1
        assert await cache.get_cached_result("new") is not None

    @pytest.mark.asyncio
    async def test_disabled_cache_misses(self, clock):
        cache = RAGCache(CachingConfig(enabled=False), clock=clock)
        await cache.cache_result("q", make_result())

        assert await cache.get_cached_result("q") is None
        assert (await cache.get_stats()).misses == 1

    def test_update_config(self, cache):
        cache.update_config({"ttl_seconds": 60})
        assert cache.config.ttl_seconds == 60
        assert cache.config.max_entries == 3

        with pytest.raises(InvalidConfigError):
            cache.update_config({"max_entries": 0})


class TestNoOpCache:
    """Test the cache used when caching is off."""

    @pytest.mark.asyncio
    async def test_never_stores(self):
        cache = NoOpRAGCache()
        await cache.cache_result("q", make_result())
        await cache.cache_embedding("q", [1.0])

        assert await cache.get_cached_result("q") is None
        assert await cache.get_cached_embedding("q") is None
        assert (await cache.get_stats()).query_count == 0


class TestCreateRAGCache:
    """Test backend selection."""

    def test_disabled(self):
        assert isinstance(create_rag_cache(CachingConfig(enabled=False)), NoOpRAGCache)

    def test_memory(self):
        assert isinstance(create_rag_cache(CachingConfig()), RAGCache)

    def test_redis_requires_url(self):
        with pytest.raises(InvalidConfigError) as exc_info:
            create_rag_cache(CachingConfig(backend="redis"))
        assert exc_info.value.field == "caching.redis_url"

    def test_redis_with_client(self):
        cache = create_rag_cache(CachingConfig(backend="redis"), client=AsyncMock())
        assert isinstance(cache, RedisRAGCache)
        assert cache.prefix == "ctxrag:"


def scan_results(*keys):
    """Mock for ``scan_iter`` yielding the given keys on every call."""
    async def scan_iter(match=None):
        for key in keys:
            yield key
    return Mock(side_effect=scan_iter)


class TestRedisRAGCache:
    """Test the Redis-backed cache against a mocked client."""

    @pytest.fixture
    def client(self):
        client = AsyncMock()
        client.get = AsyncMock(return_value=None)
        client.setex = AsyncMock(return_value=True)
        client.scan_iter = scan_results()
        client.delete = AsyncMock(return_value=1)
        client.ping = AsyncMock(return_value=True)
        return client

    @pytest.fixture
    def cache(self, client):
        return RedisRAGCache(client, CachingConfig(backend="redis", ttl_seconds=300))

    @pytest.mark.asyncio
    async def test_cache_result_uses_setex(self, cache, client):
        await cache.cache_result("Find Login", make_result())

        key, ttl, value = client.setex.call_args.args
        assert key == "ctxrag:query:find login"
        assert ttl == 300
        assert json.loads(value)["cache_hit"] is False

    @pytest.mark.asyncio
    async def test_hit(self, cache, client):
        client.get.return_value = json.dumps(make_result().to_dict())

        cached = await cache.get_cached_result("find login")

        client.get.assert_awaited_once_with("ctxrag:query:find login")
        assert cached.cache_hit
        assert cached.retrieved_chunks[0].id == "k1"
        assert cached.sources[0].source == SourceType.KEYWORD
        assert (await cache.get_stats()).hits == 1

    @pytest.mark.asyncio
    async def test_backend_errors_are_misses(self, cache, client):
        client.get.side_effect = ConnectionError("connection refused")
        client.setex.side_effect = ConnectionError("connection refused")

        await cache.cache_result("q", make_result())
        assert await cache.get_cached_result("q") is None
        assert await cache.get_cached_embedding("q") is None
        assert cache.misses == 1
        assert isinstance(cache.last_error, CacheError)
        assert cache.last_error.code == RAGErrorCode.CACHE_ERROR
        assert isinstance(cache.last_error.cause, ConnectionError)

    @pytest.mark.asyncio
    async def test_unreadable_value_is_miss(self, cache, client):
        client.get.return_value = "not json"

        assert await cache.get_cached_result("q") is None

    @pytest.mark.asyncio
    async def test_embedding_keys_are_hashed(self, cache, client):
        await cache.cache_embedding("some query", [0.5, 0.25])

        key, _, value = client.setex.call_args.args
        assert key.startswith("ctxrag:embedding:")
        assert "some query" not in key
        assert json.loads(value) == [0.5, 0.25]

    @pytest.mark.asyncio
    async def test_invalidate_pattern(self, cache, client):
        client.scan_iter = scan_results("ctxrag:query:login")

        await cache.invalidate("Login*")

        client.scan_iter.assert_called_once_with(match="ctxrag:query:*login\\**")
        client.delete.assert_awaited_once_with("ctxrag:query:login")

    @pytest.mark.asyncio
    async def test_clear_and_stats(self, cache, client):
        await cache.clear()

        client.scan_iter.assert_called_with(match="ctxrag:*")
        client.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stats_count_scanned_keys(self, cache, client):
        client.scan_iter = scan_results("ctxrag:query:a", "ctxrag:query:b")

        stats = await cache.get_stats()

        assert stats.query_count == 2
        client.scan_iter.assert_any_call(match="ctxrag:query:*")
        client.scan_iter.assert_any_call(match="ctxrag:embedding:*")

    @pytest.mark.asyncio
    async def test_scan_failure_is_logged_not_raised(self, cache, client):
        client.scan_iter = Mock(side_effect=ConnectionError("connection reset"))

        await cache.invalidate()

        client.delete.assert_not_awaited()
        assert cache.last_error.code == RAGErrorCode.CACHE_ERROR

    @pytest.mark.asyncio
    async def test_zero_ttl_skips_writes(self, client):
        cache = RedisRAGCache(client, CachingConfig(backend="redis", ttl_seconds=0))

        await cache.cache_result("q", make_result())

        client.setex.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_health_check(self, cache, client):
        assert await cache.health_check()

        client.ping.side_effect = ConnectionError("down")
        assert not await cache.health_check()

    @pytest.mark.asyncio
    async def test_close_swallows_errors(self, cache, client):
        client.aclose = AsyncMock(side_effect=ConnectionError("gone"))

        await cache.close()
