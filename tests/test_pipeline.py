"""
Tests for the RAG pipeline end to end.
"""

import asyncio
import time
from unittest.mock import AsyncMock, Mock, patch

import pytest

from context_rag import RAGPipeline, RAGQuery, QueryContext, RelevanceFeedback, RelevanceRating, SourceType
from context_rag.cache import NoOpRAGCache, RAGCache
from context_rag.errors import FeedbackError, InvalidConfigError, NotInitializedError
from context_rag.feedback import FeedbackTracker
from context_rag.retrieval import (
    BaseRAGSource,
    ChunkMetadata,
    KeywordDocument,
    KeywordSource,
    VectorDocument,
    VectorSource,
)


class FailingSource(BaseRAGSource):
    name = SourceType.ISSUES

    async def _do_retrieve(self, query, options):
        raise ConnectionError("issue tracker unreachable")


@pytest.fixture
def keyword_source():
    source = KeywordSource()
    source.add_documents([
        KeywordDocument(id="k1", content="function handleLogin(user,password)"),
        KeywordDocument(id="k2", content="function handleLogout(session)"),
    ])
    return source


@pytest.fixture
def pipeline():
    return RAGPipeline({"sources": {"keyword": {"enabled": True, "weight": 1.0, "top_k": 5}}})


class TestRAGPipeline:
    """Test RAG Pipeline functionality."""

    @pytest.mark.asyncio
    async def test_end_to_end_with_cache(self, pipeline, keyword_source):
        await pipeline.initialize(sources=[keyword_source])

        first = await pipeline.retrieve(RAGQuery(text="login"))

        ids = [chunk.id for chunk in first.retrieved_chunks]
        assert ids[0] == "k1"
        if "k2" in ids:
            assert ids.index("k2") > ids.index("k1")
        assert first.token_count <= pipeline.config.assembly.max_tokens
        assert not first.cache_hit
        assert "handleLogin" in first.assembled_context

        second = await pipeline.retrieve(RAGQuery(text="login"))

        assert second.cache_hit
        assert second.assembled_context == first.assembled_context
        assert second.query_id != first.query_id

    @pytest.mark.asyncio
    async def test_attribution(self, pipeline, keyword_source):
        await pipeline.initialize(sources=[keyword_source])

        result = await pipeline.retrieve("login")

        assert [a.source for a in result.sources] == [SourceType.KEYWORD]
        assert result.sources[0].count == len(result.retrieved_chunks)

    @pytest.mark.asyncio
    async def test_not_initialized(self, pipeline):
        with pytest.raises(NotInitializedError):
            await pipeline.retrieve("login")

    @pytest.mark.asyncio
    async def test_invalid_query_options(self, pipeline, keyword_source):
        await pipeline.initialize(sources=[keyword_source])

        with pytest.raises(InvalidConfigError) as exc_info:
            await pipeline.retrieve(RAGQuery(text="login", max_tokens=0))
        assert exc_info.value.field == "max_tokens"

        with pytest.raises(InvalidConfigError):
            await pipeline.retrieve(RAGQuery(text="login", sources=["wiki"]))

    @pytest.mark.asyncio
    async def test_string_sources_and_top_k(self, pipeline, keyword_source):
        await pipeline.initialize(sources=[keyword_source])

        result = await pipeline.retrieve(RAGQuery(text="function", sources=["keyword"], top_k=1))

        assert len(result.retrieved_chunks) == 1

    @pytest.mark.asyncio
    async def test_query_max_tokens_overrides_budget(self, pipeline, keyword_source):
        await pipeline.initialize(sources=[keyword_source])

        result = await pipeline.retrieve(RAGQuery(text="function", max_tokens=15))

        assert result.token_count <= 15
        assert result.truncated

    @pytest.mark.asyncio
    async def test_context_filter(self, pipeline):
        source = KeywordSource()
        source.add_documents([
            KeywordDocument(id="ts", content="login handler", metadata=ChunkMetadata(file_path="src/auth.ts", language="typescript")),
            KeywordDocument(id="py", content="login handler", metadata=ChunkMetadata(file_path="app/auth.py", language="python")),
        ])
        await pipeline.initialize(sources=[source])

        result = await pipeline.retrieve(RAGQuery(text="login", context=QueryContext(language="python")))

        assert [chunk.id for chunk in result.retrieved_chunks] == ["py"]

    @pytest.mark.asyncio
    async def test_failing_source_degrades(self, pipeline, keyword_source):
        await pipeline.initialize(sources=[keyword_source, FailingSource()])

        result = await pipeline.retrieve("login")

        assert [a.source for a in result.sources] == [SourceType.KEYWORD]
        assert result.retrieved_chunks[0].id == "k1"

    @pytest.mark.asyncio
    async def test_embedding_cache(self, pipeline):
        provider = Mock()
        provider.embed = AsyncMock(return_value=[1.0, 0.0])
        vector = VectorSource()
        vector.add_document(VectorDocument(id="v1", content="login flow", embedding=[1.0, 0.0]))
        await pipeline.initialize(sources=[vector], embedding_provider=provider)

        first = await pipeline.retrieve(RAGQuery(text="login", top_k=1))
        await pipeline.retrieve(RAGQuery(text="login", top_k=2))

        assert first.retrieved_chunks[0].id == "v1"
        assert provider.embed.await_count == 1
        assert (await pipeline.get_cache_stats()).embedding_count == 1

    @pytest.mark.asyncio
    async def test_embedding_failure_degrades(self, pipeline, keyword_source):
        provider = Mock()
        provider.embed = AsyncMock(side_effect=RuntimeError("model offline"))
        await pipeline.initialize(sources=[keyword_source, VectorSource()], embedding_provider=provider)

        result = await pipeline.retrieve("login")

        assert result.retrieved_chunks[0].id == "k1"

    @pytest.mark.asyncio
    async def test_configure_partial_update(self, pipeline, keyword_source):
        await pipeline.initialize(sources=[keyword_source])

        await pipeline.configure({"assembly": {"format": "markdown"}})
        result = await pipeline.retrieve("login")

        assert pipeline.config.assembly.format == "markdown"
        assert pipeline.config.assembly.max_tokens == 4000
        assert result.assembled_context.startswith("###")

    @pytest.mark.asyncio
    async def test_configure_rejects_invalid_value(self, pipeline):
        before = pipeline.config

        with pytest.raises(InvalidConfigError) as exc_info:
            await pipeline.configure({"ranking": {"mmr_lambda": 2}})

        assert exc_info.value.field == "ranking.mmr_lambda"
        assert pipeline.config is before

    @pytest.mark.asyncio
    async def test_configure_disables_cache(self, pipeline, keyword_source):
        assert isinstance(pipeline.cache, RAGCache)
        await pipeline.initialize(sources=[keyword_source])

        await pipeline.configure({"caching": {"enabled": False}})
        await pipeline.retrieve("login")
        second = await pipeline.retrieve("login")

        assert isinstance(pipeline.cache, NoOpRAGCache)
        assert not second.cache_hit

    @pytest.mark.asyncio
    async def test_configure_failed_backend_switch_keeps_cache(self, pipeline, keyword_source):
        await pipeline.initialize(sources=[keyword_source])
        cache = pipeline.cache
        await pipeline.retrieve("login")

        with patch("context_rag.pipeline.create_rag_cache", side_effect=ImportError("redis not installed")):
            with pytest.raises(ImportError):
                await pipeline.configure({"caching": {"backend": "redis", "redis_url": "redis://localhost:6379/0"}})

        assert pipeline.config.caching.backend == "memory"
        assert pipeline.cache is cache
        assert (await pipeline.retrieve("login")).cache_hit

    @pytest.mark.asyncio
    async def test_configure_redis_without_url(self, pipeline):
        cache = pipeline.cache

        with pytest.raises(InvalidConfigError) as exc_info:
            await pipeline.configure({"caching": {"backend": "redis"}})

        assert exc_info.value.field == "caching.redis_url"
        assert pipeline.config.caching.backend == "memory"
        assert pipeline.cache is cache

    @pytest.mark.asyncio
    async def test_invalidate_cache(self, pipeline, keyword_source):
        await pipeline.initialize(sources=[keyword_source])
        await pipeline.retrieve("login")

        await pipeline.invalidate_cache("login")
        result = await pipeline.retrieve("login")

        assert not result.cache_hit

    @pytest.mark.asyncio
    async def test_feedback(self, pipeline, keyword_source):
        await pipeline.initialize(sources=[keyword_source])
        result = await pipeline.retrieve("login")
        chunk_id = result.retrieved_chunks[0].id

        await pipeline.record_feedback(RelevanceFeedback(result.query_id, chunk_id, RelevanceRating.HELPFUL))
        await pipeline.record_feedback(RelevanceFeedback(result.query_id, chunk_id, RelevanceRating.NOT_HELPFUL))
        await pipeline.track_context_usage(result.query_id, [chunk_id])

        stats = await pipeline.get_feedback_stats(result.query_id)
        assert stats.total_feedback == 2
        assert stats.avg_rating == 2.0
        assert pipeline.get_feedback_overview()["total_queries"] == 1

        with pytest.raises(FeedbackError):
            await pipeline.record_feedback(RelevanceFeedback("", chunk_id, RelevanceRating.HELPFUL))

    @pytest.mark.asyncio
    async def test_submit_feedback_never_raises(self, pipeline):
        tracker = Mock()
        tracker.record_feedback = Mock(side_effect=FeedbackError("storage offline"))
        pipeline.feedback_tracker = tracker

        task = pipeline.submit_feedback(RelevanceFeedback("q1", "c1", RelevanceRating.HELPFUL))
        await asyncio.gather(task, return_exceptions=True)
        await asyncio.sleep(0)

        tracker.record_feedback.assert_called_once()
        assert not pipeline._pending_feedback

    @pytest.mark.asyncio
    async def test_persisted_feedback_does_not_block_retrieval(self, keyword_source, tmp_path):
        tracker = FeedbackTracker(tmp_path)
        pipeline = RAGPipeline(
            {"sources": {"keyword": {"enabled": True, "weight": 1.0, "top_k": 5}}},
            feedback_tracker=tracker,
        )
        await pipeline.initialize(sources=[keyword_source])

        with patch.object(tracker, "_save", side_effect=lambda: time.sleep(0.5)):
            task = pipeline.submit_feedback(RelevanceFeedback("q1", "k1", RelevanceRating.HELPFUL))
            await asyncio.sleep(0)
            result = await pipeline.retrieve("login")

            assert result.retrieved_chunks
            assert not task.done()
            await task

        assert (await pipeline.get_feedback_stats("q1")).total_feedback == 1

    @pytest.mark.asyncio
    async def test_dispose_flushes_feedback(self, pipeline, keyword_source):
        await pipeline.initialize(sources=[keyword_source])
        await pipeline.retrieve("login")

        pipeline.submit_feedback(RelevanceFeedback("q1", "k1", RelevanceRating.HELPFUL))
        await pipeline.dispose()

        assert pipeline.feedback_tracker.get_feedback_stats("q1").total_feedback == 1
        assert not pipeline.initialized
        assert (await pipeline.get_cache_stats()).query_count == 0
        with pytest.raises(NotInitializedError):
            await pipeline.retrieve("login")

    @pytest.mark.asyncio
    async def test_check_health(self, pipeline, keyword_source):
        await pipeline.initialize(sources=[keyword_source])

        assert await pipeline.check_health() == {SourceType.KEYWORD: True}
        assert pipeline.get_retriever().get_source(SourceType.KEYWORD) is keyword_source
