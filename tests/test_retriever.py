"""
Tests for the multi-source retriever.
"""

import asyncio

import pytest

from context_rag.config import RAGConfig
from context_rag.query.models import ProcessedQuery
from context_rag.retrieval import BaseRAGSource, RetrievedChunk, Retriever, SourceType


class StaticSource(BaseRAGSource):
    """Source returning fixed chunks, optionally after a delay or with an error."""

    def __init__(self, name, chunks=None, delay=0.0, error=None):
        super().__init__()
        self.name = name
        self.chunks = chunks or []
        self.delay = delay
        self.error = error
        self.cancelled = False
        self.last_options = None

    async def _do_retrieve(self, query, options):
        self.last_options = options
        if self.delay:
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        if self.error is not None:
            raise self.error
        return list(self.chunks)


def make_chunks(source, count):
    return [
        RetrievedChunk(id=f"{source.value}-{i}", content=f"chunk {i}", source=source, score=1.0 - i * 0.1)
        for i in range(count)
    ]


def make_config(**timeouts):
    return RAGConfig.from_dict({
        "sources": {
            "keyword": {"enabled": True},
            "docs": {"enabled": True},
        },
        "timeouts": timeouts or {"per_source_ms": 500, "total_ms": 1000},
    })


@pytest.fixture
def query():
    return ProcessedQuery(original="login", expanded=["login"])


class TestRetriever:
    """Test Retriever functionality."""

    def test_registry(self):
        retriever = Retriever()
        source = StaticSource(SourceType.KEYWORD)

        retriever.register_source(source)
        assert retriever.get_source(SourceType.KEYWORD) is source
        assert retriever.get_all_sources() == [source]

        retriever.unregister_source(SourceType.KEYWORD)
        assert retriever.get_source(SourceType.KEYWORD) is None

    @pytest.mark.asyncio
    async def test_failing_source_is_isolated(self, query):
        retriever = Retriever()
        config = make_config()
        retriever.register_source(StaticSource(SourceType.KEYWORD, error=RuntimeError("index corrupt")))
        retriever.register_source(StaticSource(SourceType.DOCS, make_chunks(SourceType.DOCS, 2)))
        await retriever.initialize_sources(config)

        results, attributions = await retriever.retrieve_from_all_sources(
            query, [SourceType.KEYWORD, SourceType.DOCS], config
        )

        assert list(results.keys()) == [SourceType.DOCS]
        assert len(results[SourceType.DOCS]) == 2
        assert len(attributions) == 1
        assert attributions[0].source == SourceType.DOCS
        assert attributions[0].count == 2
        assert attributions[0].avg_score == pytest.approx(0.95)

    @pytest.mark.asyncio
    async def test_per_source_timeout(self, query):
        retriever = Retriever()
        config = make_config(per_source_ms=50, total_ms=2000)
        slow = StaticSource(SourceType.KEYWORD, make_chunks(SourceType.KEYWORD, 1), delay=1.0)
        retriever.register_source(slow)
        retriever.register_source(StaticSource(SourceType.DOCS, make_chunks(SourceType.DOCS, 1)))
        await retriever.initialize_sources(config)

        results, attributions = await retriever.retrieve_from_all_sources(
            query, [SourceType.KEYWORD, SourceType.DOCS], config
        )

        assert SourceType.KEYWORD not in results
        assert [a.source for a in attributions] == [SourceType.DOCS]

    @pytest.mark.asyncio
    async def test_total_deadline_cancels_pending_sources(self, query):
        retriever = Retriever()
        config = make_config(per_source_ms=10000, total_ms=50)
        slow = StaticSource(SourceType.KEYWORD, make_chunks(SourceType.KEYWORD, 1), delay=10.0)
        retriever.register_source(slow)
        retriever.register_source(StaticSource(SourceType.DOCS, make_chunks(SourceType.DOCS, 1)))
        await retriever.initialize_sources(config)

        results, _ = await retriever.retrieve_from_all_sources(
            query, [SourceType.KEYWORD, SourceType.DOCS], config
        )

        assert slow.cancelled
        assert list(results.keys()) == [SourceType.DOCS]

    @pytest.mark.asyncio
    async def test_skips_disabled_and_unregistered(self, query):
        retriever = Retriever()
        config = make_config().merge({"sources": {"docs": {"enabled": False}}})
        docs = StaticSource(SourceType.DOCS, make_chunks(SourceType.DOCS, 1))
        retriever.register_source(docs)
        await retriever.initialize_sources(config)

        results, attributions = await retriever.retrieve_from_all_sources(
            query, [SourceType.DOCS, SourceType.ISSUES], config
        )

        assert results == {}
        assert attributions == []
        assert docs.last_options is None

    @pytest.mark.asyncio
    async def test_empty_answer_is_attributed(self, query):
        retriever = Retriever()
        config = make_config()
        retriever.register_source(StaticSource(SourceType.KEYWORD))
        await retriever.initialize_sources(config)

        results, attributions = await retriever.retrieve_from_all_sources(query, [SourceType.KEYWORD], config)

        assert results == {SourceType.KEYWORD: []}
        assert attributions[0].avg_score == 0.0

    @pytest.mark.asyncio
    async def test_uninitialized_source_is_omitted(self, query):
        retriever = Retriever()
        retriever.register_source(StaticSource(SourceType.KEYWORD, make_chunks(SourceType.KEYWORD, 1)))

        results, attributions = await retriever.retrieve_from_all_sources(
            query, [SourceType.KEYWORD], make_config()
        )

        assert results == {}
        assert attributions == []

    @pytest.mark.asyncio
    async def test_options_passed_to_source(self, query):
        retriever = Retriever()
        config = make_config()
        source = StaticSource(SourceType.KEYWORD)
        retriever.register_source(source)
        await retriever.initialize_sources(config)

        await retriever.retrieve_from_all_sources(query, [SourceType.KEYWORD], config, top_k=3)

        assert source.last_options.top_k == 3
        assert source.last_options.timeout_ms == 500

    @pytest.mark.asyncio
    async def test_check_health(self):
        class BrokenProbe(StaticSource):
            async def _do_health_check(self):
                raise ConnectionError("down")

        retriever = Retriever()
        config = make_config()
        retriever.register_source(StaticSource(SourceType.KEYWORD))
        retriever.register_source(BrokenProbe(SourceType.DOCS))
        await retriever.initialize_sources(config)

        health = await retriever.check_health()

        assert health == {SourceType.KEYWORD: True, SourceType.DOCS: False}

    @pytest.mark.asyncio
    async def test_dispose(self):
        retriever = Retriever()
        source = StaticSource(SourceType.KEYWORD)
        retriever.register_source(source)
        await retriever.initialize_sources(make_config())

        await retriever.dispose()

        assert not source.initialized
        assert retriever.get_all_sources() == []
