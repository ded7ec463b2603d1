"""
Ranking of retrieved chunks.

Fusion merges the per-source lists into one list with a ``fused_score``;
recency boosting, deduplication and MMR diversification then operate on that
merged list. Every method returns new chunk objects and leaves its input
untouched.
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Dict, List, Optional

from ..retrieval.models import RetrievedChunk, SourceType, as_utc
from .distance import cosine_similarity

if TYPE_CHECKING:
    from ..config import RankingConfig

logger = logging.getLogger(__name__)

_MS_PER_DAY = 24 * 60 * 60 * 1000


class Ranker:
    """Fusion, boosting, deduplication and diversification of chunk lists."""

    def merge_with_rrf(
        self,
        source_results: Dict[SourceType, List[RetrievedChunk]],
        config: "RankingConfig",
        weights: Optional[Dict[SourceType, float]] = None
    ) -> List[RetrievedChunk]:
        """
        Merge ranked lists with Reciprocal Rank Fusion.

        Each chunk at zero-based rank r in a source's list contributes
        ``weight / (rrf_k + r + 1)``; contributions for the same id add up.
        When an id shows up in several lists, the payload with the higher raw
        score is kept.

        Args:
            source_results: Ranked chunks per source, best first
            config: Ranking settings (``rrf_k``)
            weights: Optional per-source weights, 1.0 for any source not listed

        Returns:
            Chunks sorted by descending fused score
        """
        k = config.rrf_k
        fused_scores: Dict[str, float] = {}
        chunk_map: Dict[str, RetrievedChunk] = {}

        for source, chunks in source_results.items():
            weight = 1.0 if weights is None else weights.get(source, 1.0)
            for rank, chunk in enumerate(chunks):
                fused_scores[chunk.id] = fused_scores.get(chunk.id, 0.0) + weight / (k + rank + 1)

                kept = chunk_map.get(chunk.id)
                if kept is None or kept.score < chunk.score:
                    chunk_map[chunk.id] = chunk

        results = [replace(chunk_map[chunk_id], fused_score=score) for chunk_id, score in fused_scores.items()]
        results.sort(key=lambda chunk: chunk.fused_score, reverse=True)
        return results

    def merge_with_linear(
        self,
        source_results: Dict[SourceType, List[RetrievedChunk]],
        weights: Dict[SourceType, float]
    ) -> List[RetrievedChunk]:
        """Merge lists by the weight-averaged raw score of each chunk id."""
        totals: Dict[str, List[float]] = {}
        chunk_map: Dict[str, RetrievedChunk] = {}

        for source, chunks in source_results.items():
            weight = weights.get(source, 1.0)
            for chunk in chunks:
                score_sum, weight_sum = totals.get(chunk.id, (0.0, 0.0))
                totals[chunk.id] = (score_sum + chunk.score * weight, weight_sum + weight)
                chunk_map.setdefault(chunk.id, chunk)

        results = []
        for chunk_id, (score_sum, weight_sum) in totals.items():
            fused = score_sum / weight_sum if weight_sum > 0 else 0.0
            results.append(replace(chunk_map[chunk_id], fused_score=fused))

        results.sort(key=lambda chunk: chunk.fused_score, reverse=True)
        return results

    def apply_recency_boost(
        self,
        chunks: List[RetrievedChunk],
        config: "RankingConfig",
        now: Optional[datetime] = None
    ) -> List[RetrievedChunk]:
        """Multiply the score of dated chunks by ``1 + recency_boost * decay``.

        ``decay`` falls linearly from 1 (dated now) to 0 (``recency_decay_days``
        old or older). Undated chunks pass through unchanged.
        """
        now = as_utc(now) if now is not None else datetime.now(timezone.utc)
        decay_ms = config.recency_decay_days * _MS_PER_DAY

        boosted = []
        for chunk in chunks:
            if chunk.metadata.date is None:
                boosted.append(chunk)
                continue

            age_ms = (now - as_utc(chunk.metadata.date)).total_seconds() * 1000
            decay_factor = max(0.0, 1 - age_ms / decay_ms)
            boost = config.recency_boost * decay_factor
            boosted.append(replace(chunk, fused_score=chunk.effective_score * (1 + boost)))

        return boosted

    def deduplicate_chunks(self, chunks: List[RetrievedChunk], threshold: float) -> List[RetrievedChunk]:
        """
        Drop repeated ids and, below a threshold of 1.0, near-duplicate embeddings.

        A chunk is a near-duplicate when its cosine similarity to an already
        kept chunk is at least ``threshold``. Chunks without embeddings are
        only compared by id.
        """
        kept: List[RetrievedChunk] = []
        seen = set()

        for chunk in chunks:
            if chunk.id in seen:
                continue

            if threshold < 1.0 and chunk.embedding:
                duplicate_of = next(
                    (existing for existing in kept
                     if existing.embedding and cosine_similarity(chunk.embedding, existing.embedding) >= threshold),
                    None
                )
                if duplicate_of is not None:
                    logger.debug(f"Dropping chunk {chunk.id} as near-duplicate of {duplicate_of.id}")
                    continue

            kept.append(chunk)
            seen.add(chunk.id)

        return kept

    def apply_mmr(self, chunks: List[RetrievedChunk], k: int, lambda_: float) -> List[RetrievedChunk]:
        """
        Select k chunks with Max Marginal Relevance.

        Each step picks the candidate maximising
        ``lambda_ * relevance - (1 - lambda_) * max_similarity_to_selected``
        where relevance is the score divided by the highest candidate score,
        or the min-max scaled score when no candidate scores above zero.
        Ties go to the earlier candidate.

        Args:
            chunks: Candidates, usually sorted by fused score
            k: Number of chunks to keep
            lambda_: 1.0 for pure relevance, 0.0 for pure diversity

        Returns:
            The selected chunks in selection order
        """
        if len(chunks) <= k:
            return list(chunks)

        if not any(chunk.embedding for chunk in chunks):
            # Without embeddings there is nothing to diversify on
            return sorted(chunks, key=lambda chunk: chunk.effective_score, reverse=True)[:k]

        scores = [chunk.effective_score for chunk in chunks]
        max_score = max(scores)
        if max_score > 0:
            relevances = [score / max_score for score in scores]
        else:
            # Dividing by a non-positive maximum would invert the order
            relevances = [chunk.effective_score for chunk in self.normalize_scores(chunks)]

        remaining = list(zip(chunks, relevances))
        selected: List[RetrievedChunk] = []

        while len(selected) < k and remaining:
            best_idx = 0
            best_score = float("-inf")

            for idx, (candidate, relevance) in enumerate(remaining):
                max_similarity = 0.0
                if candidate.embedding:
                    for chosen in selected:
                        if chosen.embedding:
                            max_similarity = max(
                                max_similarity, cosine_similarity(candidate.embedding, chosen.embedding)
                            )

                mmr_score = lambda_ * relevance - (1 - lambda_) * max_similarity
                if mmr_score > best_score:
                    best_score = mmr_score
                    best_idx = idx

            selected.append(remaining.pop(best_idx)[0])

        return selected

    def normalize_scores(self, chunks: List[RetrievedChunk]) -> List[RetrievedChunk]:
        """Min-max scale scores to [0, 1]; identical scores all map to 1."""
        if not chunks:
            return []

        scores = [chunk.effective_score for chunk in chunks]
        min_score = min(scores)
        score_range = max(scores) - min_score

        if score_range == 0:
            return [replace(chunk, fused_score=1.0) for chunk in chunks]

        return [
            replace(chunk, fused_score=(score - min_score) / score_range)
            for chunk, score in zip(chunks, scores)
        ]


def create_ranker() -> Ranker:
    return Ranker()
