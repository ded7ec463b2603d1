"""
Multi-source retriever.

Fans a processed query out to the registered sources concurrently. Each
source call has its own deadline and the whole fan-out has an outer one;
calls still running when the outer deadline passes are cancelled. A source
that fails or times out is dropped from the result without failing the call.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from ..errors import RetrievalError, SourceTimeoutError, SourceUnavailableError
from ..query.models import ProcessedQuery
from .models import RetrievedChunk, RetrieveOptions, SourceAttribution, SourceFilter, SourceType
from .sources import RAGSource

if TYPE_CHECKING:
    from ..config import RAGConfig

logger = logging.getLogger(__name__)


@dataclass
class SourceRetrievalResult:
    """Outcome of one source call."""
    source: SourceType
    chunks: List[RetrievedChunk]
    latency_ms: float
    error: Optional[Exception] = None


class Retriever:
    """Registry of source adapters plus the concurrent fan-out."""

    def __init__(self):
        self.sources: Dict[SourceType, RAGSource] = {}

    def register_source(self, source: RAGSource):
        """Register a source adapter under its SourceType, replacing any previous one."""
        if source.name in self.sources:
            logger.warning(f"Source '{source.name.value}' already registered, replacing")
        self.sources[source.name] = source

    def unregister_source(self, name: SourceType):
        self.sources.pop(name, None)

    def get_source(self, name: SourceType) -> Optional[RAGSource]:
        return self.sources.get(name)

    def get_all_sources(self) -> List[RAGSource]:
        return list(self.sources.values())

    async def initialize_sources(self, config: "RAGConfig"):
        """Initialize every registered source that has settings in the config."""
        init_calls = []
        for name, source in self.sources.items():
            settings = config.sources.get(name)
            if settings is not None:
                init_calls.append(source.initialize(settings))
        await asyncio.gather(*init_calls)

    async def retrieve_from_all_sources(
        self,
        query: ProcessedQuery,
        requested_sources: List[SourceType],
        config: "RAGConfig",
        source_filter: Optional[SourceFilter] = None,
        top_k: Optional[int] = None
    ) -> Tuple[Dict[SourceType, List[RetrievedChunk]], List[SourceAttribution]]:
        """
        Retrieve from the requested sources in parallel.

        Args:
            query: The processed query
            requested_sources: Sources to query; unregistered or disabled ones are skipped
            config: Pipeline configuration (source settings and timeouts)
            source_filter: Optional filter handed to every source
            top_k: Optional per-source result cap overriding the configured top_k

        Returns:
            Tuple of (chunks per responding source, attribution per responding source)
        """
        active_sources = []
        for name in dict.fromkeys(requested_sources):
            source = self.sources.get(name)
            settings = config.sources.get(name)
            if source is None:
                logger.debug(f"Source '{name.value}' requested but not registered, skipping")
                continue
            if settings is None or not settings.enabled or not source.enabled:
                logger.debug(f"Source '{name.value}' is disabled, skipping")
                continue
            active_sources.append(name)

        if not active_sources:
            return {}, []

        tasks = {
            name: asyncio.create_task(
                self._retrieve_from_source(name, query, config, source_filter, top_k),
                name=f"retrieve:{name.value}"
            )
            for name in active_sources
        }

        total_timeout = config.timeouts.total_ms / 1000.0
        done, pending = await asyncio.wait(tasks.values(), timeout=total_timeout)

        if pending:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        results: Dict[SourceType, List[RetrievedChunk]] = {}
        attributions: List[SourceAttribution] = []

        for name, task in tasks.items():
            if task not in done:
                logger.warning(
                    f"Source '{name.value}' cancelled at the overall {config.timeouts.total_ms}ms deadline"
                )
                continue

            result = task.result()
            if result.error is not None:
                logger.warning(f"Source '{name.value}' failed: {result.error}")
                continue

            results[name] = result.chunks
            avg_score = (
                sum(chunk.score for chunk in result.chunks) / len(result.chunks)
                if result.chunks else 0.0
            )
            attributions.append(SourceAttribution(
                source=name,
                count=len(result.chunks),
                avg_score=avg_score,
                latency_ms=result.latency_ms,
            ))

        logger.debug(
            f"Retrieved from {len(results)}/{len(active_sources)} sources: "
            f"{ {name.value: len(chunks) for name, chunks in results.items()} }"
        )
        return results, attributions

    async def _retrieve_from_source(
        self,
        name: SourceType,
        query: ProcessedQuery,
        config: "RAGConfig",
        source_filter: Optional[SourceFilter],
        top_k: Optional[int]
    ) -> SourceRetrievalResult:
        """Call one source under its own deadline, capturing any failure."""
        source = self.sources.get(name)
        settings = config.sources.get(name)
        if source is None or settings is None:
            return SourceRetrievalResult(name, [], 0.0, SourceUnavailableError(name.value))

        per_source_ms = config.timeouts.per_source_ms
        options = RetrieveOptions(
            top_k=top_k or settings.top_k,
            filter=source_filter,
            timeout_ms=per_source_ms,
        )

        start_time = time.perf_counter()
        try:
            chunks = await asyncio.wait_for(source.retrieve(query, options), timeout=per_source_ms / 1000.0)
        except asyncio.TimeoutError:
            return SourceRetrievalResult(
                name, [], _elapsed_ms(start_time), SourceTimeoutError(name.value, per_source_ms)
            )
        except Exception as e:
            error = e if isinstance(e, (RetrievalError, SourceUnavailableError)) else RetrievalError(
                str(e), name.value, e
            )
            return SourceRetrievalResult(name, [], _elapsed_ms(start_time), error)

        return SourceRetrievalResult(name, list(chunks or []), _elapsed_ms(start_time))

    async def check_health(self) -> Dict[SourceType, bool]:
        """Probe every registered source. A failing probe reports False."""
        names = list(self.sources.keys())
        probes = [self._probe(name, self.sources[name]) for name in names]
        outcomes = await asyncio.gather(*probes)
        return dict(zip(names, outcomes))

    async def _probe(self, name: SourceType, source: RAGSource) -> bool:
        try:
            return bool(await source.health_check())
        except Exception as e:
            logger.warning(f"Health check for '{name.value}' failed: {e}")
            return False

    async def dispose(self):
        """Dispose every registered source and clear the registry."""
        outcomes = await asyncio.gather(
            *(source.dispose() for source in self.sources.values()),
            return_exceptions=True
        )
        for name, outcome in zip(list(self.sources.keys()), outcomes):
            if isinstance(outcome, Exception):
                logger.warning(f"Disposing source '{name.value}' failed: {outcome}")
        self.sources.clear()


def _elapsed_ms(start_time: float) -> float:
    return (time.perf_counter() - start_time) * 1000.0


def create_retriever() -> Retriever:
    return Retriever()
