"""
RAG Pipeline orchestrating query processing, retrieval, ranking and assembly.

    RAGQuery -> QueryProcessor -> Retriever -> Ranker -> ContextAssembler -> RAGResult

Results are served from and written to the cache around that flow. Feedback
is recorded independently once a result has been consumed.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import replace
from typing import Dict, Any, List, Optional, Set, Union

from .assembly import ContextAssembler, TokenCounter
from .cache import BaseRAGCache, RAGCacheStats, create_rag_cache
from .config import RAGConfig
from .errors import (
    AssemblyError,
    InvalidConfigError,
    NotInitializedError,
    RAGError,
    RankingError,
)
from .feedback import FeedbackStats, FeedbackTracker, RelevanceFeedback
from .models import QueryContext, RAGQuery, RAGResult
from .query import QueryProcessor
from .ranking import Ranker
from .retrieval import (
    DocsSource,
    KeywordSource,
    RAGSource,
    RetrievedChunk,
    Retriever,
    SourceFilter,
    SourceType,
    VectorSource,
)

logger = logging.getLogger(__name__)

MAX_RESULTS_CAP = 50


def generate_query_id() -> str:
    return f"rag-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def build_source_filter(context: Optional[QueryContext]) -> Optional[SourceFilter]:
    """Turn the query's context hints into a filter handed to every source."""
    if context is None:
        return None
    source_filter = SourceFilter(
        file_paths=[context.file_path] if context.file_path else [],
        languages=[context.language] if context.language else [],
    )
    return None if source_filter.is_empty() else source_filter


class CachedEmbedder:
    """Embedding provider wrapper that consults the embedding cache first."""

    def __init__(self, provider, cache: BaseRAGCache):
        self.provider = provider
        self.cache = cache

    async def embed(self, text: str) -> List[float]:
        cached = await self.cache.get_cached_embedding(text)
        if cached is not None:
            return cached
        embedding = await self.provider.embed(text)
        await self.cache.cache_embedding(text, embedding)
        return embedding


class RAGPipeline:
    """Multi-source retrieval pipeline producing a token-bounded context block."""

    def __init__(
        self,
        config: Optional[Union[RAGConfig, Dict[str, Any]]] = None,
        embedding_provider=None,
        token_counter: Optional[TokenCounter] = None,
        cache: Optional[BaseRAGCache] = None,
        feedback_tracker: Optional[FeedbackTracker] = None
    ):
        if isinstance(config, RAGConfig):
            config.validate()
            self.config = config
        else:
            self.config = RAGConfig.from_dict(config or {})

        self._owns_cache = cache is None
        self.cache = cache or create_rag_cache(self.config.caching)
        self.query_processor = QueryProcessor()
        self.retriever = Retriever()
        self.ranker = Ranker()
        self.assembler = ContextAssembler(token_counter)
        self.feedback_tracker = feedback_tracker or FeedbackTracker()

        self.embedding_provider = None
        self.initialized = False
        self._pending_feedback: Set[asyncio.Task] = set()

        if embedding_provider is not None:
            self.set_embedding_provider(embedding_provider)

    def set_embedding_provider(self, provider):
        self.embedding_provider = provider
        self.query_processor.set_embedding_provider(
            CachedEmbedder(provider, self.cache) if provider is not None else None
        )

    async def initialize(
        self,
        sources: Optional[List[RAGSource]] = None,
        embedding_provider=None
    ):
        """
        Register sources and prepare them for retrieval.

        Args:
            sources: Source adapters to register; the in-process keyword, docs
                and vector sources when omitted
            embedding_provider: Optional provider for query embeddings
        """
        if self.initialized:
            return

        if embedding_provider is not None:
            self.set_embedding_provider(embedding_provider)

        if sources is None:
            sources = [
                VectorSource(self.embedding_provider),
                KeywordSource(),
                DocsSource(),
            ]
        for source in sources:
            self.retriever.register_source(source)

        await self.retriever.initialize_sources(self.config)
        self.initialized = True
        logger.info(
            f"RAG pipeline initialized with sources: "
            f"{', '.join(source.name.value for source in self.retriever.get_all_sources())}"
        )

    async def configure(self, overrides: Union[Dict[str, Any], RAGConfig]):
        """Apply a partial configuration update. Invalid values leave the config unchanged."""
        config = self.config.merge(overrides)

        caching = config.caching
        previous = self.config.caching
        if self._owns_cache and (caching.enabled != previous.enabled or caching.backend != previous.backend):
            # Build the replacement before touching the live cache
            cache = create_rag_cache(caching)
            await self.cache.close()
            self.cache = cache
            self.config = config
            if self.embedding_provider is not None:
                self.set_embedding_provider(self.embedding_provider)
        else:
            self.config = config
            self.cache.update_config(caching)

        if self.initialized:
            await self.retriever.initialize_sources(self.config)
        logger.debug("RAG pipeline configuration updated")

    async def retrieve(self, query: Union[RAGQuery, str]) -> RAGResult:
        """
        Retrieve, rank and assemble context for a query.

        Args:
            query: The request, or bare query text

        Returns:
            RAGResult; sources that fail or time out are left out rather than
            failing the call
        """
        self._ensure_initialized()
        query = self._validate_query(query)

        start_time = time.perf_counter()
        query_id = generate_query_id()

        cached = await self.cache.get_cached_result(query)
        if cached is not None:
            logger.debug(f"Serving query {query_id} from cache")
            return replace(cached, query_id=query_id, latency_ms=_elapsed_ms(start_time), cache_hit=True)

        processed = await self.query_processor.process(query)

        source_results, attributions = await self.retriever.retrieve_from_all_sources(
            processed,
            self._determine_sources(query),
            self.config,
            source_filter=build_source_filter(query.context),
        )

        ranked = self._rank(source_results, query)

        assembly_config = self.config.assembly
        if query.max_tokens is not None:
            assembly_config = replace(assembly_config, max_tokens=query.max_tokens)
        try:
            assembled = self.assembler.assemble(ranked, assembly_config)
        except RAGError:
            raise
        except Exception as e:
            raise AssemblyError(f"Context assembly failed: {e}", e) from e

        result = RAGResult(
            query_id=query_id,
            retrieved_chunks=ranked,
            assembled_context=assembled.text,
            token_count=assembled.token_count,
            sources=attributions,
            latency_ms=_elapsed_ms(start_time),
            cache_hit=False,
            truncated=assembled.truncated,
        )

        await self.cache.cache_result(query, result)

        logger.debug(
            f"Query {query_id}: {len(ranked)} chunks from {len(attributions)} sources, "
            f"{result.token_count} tokens in {result.latency_ms:.1f}ms"
        )
        return result

    def _rank(self, source_results: Dict[SourceType, List[RetrievedChunk]], query: RAGQuery) -> List[RetrievedChunk]:
        ranking = self.config.ranking
        try:
            fused = self._fuse(source_results)
            boosted = self.ranker.apply_recency_boost(fused, ranking)
            boosted.sort(key=lambda chunk: chunk.effective_score, reverse=True)
            deduplicated = self.ranker.deduplicate_chunks(boosted, self.config.assembly.deduplication_threshold)
            return self.ranker.apply_mmr(deduplicated, query.top_k or self._max_results(), ranking.mmr_lambda)
        except RAGError:
            raise
        except Exception as e:
            raise RankingError(f"Ranking failed: {e}", e) from e

    def _fuse(self, source_results: Dict[SourceType, List[RetrievedChunk]]) -> List[RetrievedChunk]:
        method = self.config.ranking.fusion_method
        weights = self.config.source_weights()

        if method == "linear":
            return self.ranker.merge_with_linear(source_results, weights)
        if method == "learned":
            logger.debug("No learned fusion model available, using reciprocal rank fusion")
        return self.ranker.merge_with_rrf(source_results, self.config.ranking, weights)

    def _determine_sources(self, query: RAGQuery) -> List[SourceType]:
        if query.sources:
            return list(query.sources)
        return self.config.enabled_sources()

    def _max_results(self) -> int:
        total = sum(settings.top_k for settings in self.config.sources.values() if settings.enabled)
        return min(total, MAX_RESULTS_CAP)

    def _validate_query(self, query: Union[RAGQuery, str]) -> RAGQuery:
        if isinstance(query, str):
            query = RAGQuery(text=query)

        if not isinstance(query.text, str):
            raise InvalidConfigError("Query text must be a string", "text")
        if query.max_tokens is not None and (
            not isinstance(query.max_tokens, int) or isinstance(query.max_tokens, bool) or query.max_tokens < 1
        ):
            raise InvalidConfigError("max_tokens must be an integer >= 1", "max_tokens")
        if query.top_k is not None and (
            not isinstance(query.top_k, int) or isinstance(query.top_k, bool) or query.top_k < 1
        ):
            raise InvalidConfigError("top_k must be an integer >= 1", "top_k")

        if query.sources:
            try:
                sources = [SourceType(source) for source in query.sources]
            except ValueError as e:
                raise InvalidConfigError(f"Unknown source in query: {e}", "sources") from e
            query = replace(query, sources=sources)

        return query

    def _ensure_initialized(self):
        if not self.initialized:
            raise NotInitializedError()

    async def record_feedback(self, feedback: RelevanceFeedback):
        await self._call_tracker(self.feedback_tracker.record_feedback, feedback)

    async def _call_tracker(self, method, *args):
        if self.feedback_tracker.storage_file is not None:
            # Persisting rewrites the whole JSON history, keep it off the event loop
            return await asyncio.to_thread(method, *args)
        return method(*args)

    def submit_feedback(self, feedback: RelevanceFeedback) -> asyncio.Task:
        """Record feedback in the background. Failures are logged, not raised."""
        task = asyncio.create_task(self.record_feedback(feedback))
        self._pending_feedback.add(task)
        task.add_done_callback(self._on_feedback_done)
        return task

    def _on_feedback_done(self, task: asyncio.Task):
        self._pending_feedback.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Recording feedback failed: {error}")

    async def get_feedback_stats(self, query_id: str) -> FeedbackStats:
        return self.feedback_tracker.get_feedback_stats(query_id)

    async def track_context_usage(self, query_id: str, used_chunk_ids: List[str]):
        await self._call_tracker(self.feedback_tracker.track_context_usage, query_id, used_chunk_ids)

    def get_feedback_overview(self) -> Dict[str, Any]:
        return self.feedback_tracker.get_overall_stats()

    def get_retriever(self) -> Retriever:
        return self.retriever

    async def get_cache_stats(self) -> RAGCacheStats:
        return await self.cache.get_stats()

    async def invalidate_cache(self, pattern: Optional[str] = None):
        await self.cache.invalidate(pattern)

    async def check_health(self) -> Dict[SourceType, bool]:
        return await self.retriever.check_health()

    async def dispose(self):
        """Dispose sources, flush pending feedback and empty the cache."""
        if self._pending_feedback:
            await asyncio.gather(*self._pending_feedback, return_exceptions=True)
        await self.retriever.dispose()
        await self.cache.clear()
        await self.cache.close()
        self.initialized = False
        logger.info("RAG pipeline disposed")


def _elapsed_ms(start_time: float) -> float:
    return (time.perf_counter() - start_time) * 1000.0


def create_rag_pipeline(
    config: Optional[Union[RAGConfig, Dict[str, Any]]] = None,
    **kwargs
) -> RAGPipeline:
    return RAGPipeline(config, **kwargs)
