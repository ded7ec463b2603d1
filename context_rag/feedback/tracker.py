"""
Feedback Tracker for recording relevance ratings and context usage.
"""

import json
import logging
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Any, List, Optional, Union

from ..errors import FeedbackError
from ..retrieval.models import as_utc
from .models import ChunkStats, ContextUsage, FeedbackStats, RelevanceFeedback, RelevanceRating

logger = logging.getLogger(__name__)


class FeedbackTracker:
    """Append-only store of relevance feedback, optionally persisted as JSON."""

    def __init__(self, storage_path: Optional[Union[str, Path]] = None):
        self.feedback: Dict[str, List[RelevanceFeedback]] = {}
        self.context_usage: Dict[str, ContextUsage] = {}
        self._lock = threading.Lock()

        self.storage_file: Optional[Path] = None
        if storage_path is not None:
            storage_dir = Path(storage_path)
            storage_dir.mkdir(parents=True, exist_ok=True)
            self.storage_file = storage_dir / "feedback.json"
            self._load()

    def _load(self):
        """Load feedback and usage records from persistent storage."""
        try:
            if self.storage_file.exists():
                with open(self.storage_file, 'r') as f:
                    data = json.load(f)

                for item in data.get("feedback", []):
                    entry = RelevanceFeedback.from_dict(item)
                    self.feedback.setdefault(entry.query_id, []).append(entry)
                for item in data.get("usage", []):
                    usage = ContextUsage.from_dict(item)
                    self.context_usage[usage.query_id] = usage

                logger.info(f"Loaded {self._feedback_count()} feedback entries from storage")
            else:
                logger.info("No existing feedback found, starting with empty store")

        except Exception as e:
            logger.error(f"Failed to load feedback: {e}")
            self.feedback = {}
            self.context_usage = {}

    def _save(self):
        """Save feedback and usage records to persistent storage."""
        if self.storage_file is None:
            return
        try:
            data = {
                "feedback": [entry.to_dict() for entries in self.feedback.values() for entry in entries],
                "usage": [usage.to_dict() for usage in self.context_usage.values()],
            }
            with open(self.storage_file, 'w') as f:
                json.dump(data, f, indent=2)

            logger.debug(f"Saved {len(data['feedback'])} feedback entries to storage")

        except Exception as e:
            logger.error(f"Failed to save feedback: {e}")

    def record_feedback(self, feedback: RelevanceFeedback):
        """Append a rating. Query and chunk ids are required."""
        if not feedback.query_id or not feedback.chunk_id:
            raise FeedbackError("query_id and chunk_id are required")
        try:
            rating = RelevanceRating(feedback.rating)
        except ValueError as e:
            raise FeedbackError(f"Invalid rating '{feedback.rating}'", e) from e

        if rating is not feedback.rating:
            feedback = RelevanceFeedback(
                query_id=feedback.query_id,
                chunk_id=feedback.chunk_id,
                rating=rating,
                comment=feedback.comment,
                timestamp=feedback.timestamp,
            )

        with self._lock:
            self.feedback.setdefault(feedback.query_id, []).append(feedback)
            self._save()
        logger.debug(f"Recorded '{rating.value}' feedback for chunk {feedback.chunk_id} of query {feedback.query_id}")

    def get_query_feedback(self, query_id: str) -> List[RelevanceFeedback]:
        with self._lock:
            return list(self.feedback.get(query_id, []))

    def get_feedback_stats(self, query_id: str) -> FeedbackStats:
        """
        Summarise the feedback recorded for a query.

        Args:
            query_id: The query to summarise

        Returns:
            FeedbackStats with helpful=3, partially_helpful=2, not_helpful=1
            averaged into ``avg_rating`` (0 when there is no feedback)
        """
        entries = self.get_query_feedback(query_id)
        if not entries:
            return FeedbackStats(query_id=query_id)

        return FeedbackStats(
            query_id=query_id,
            total_feedback=len(entries),
            helpful_count=sum(1 for entry in entries if entry.rating == RelevanceRating.HELPFUL),
            avg_rating=sum(entry.rating.score for entry in entries) / len(entries),
        )

    def track_context_usage(self, query_id: str, used_chunk_ids: List[str]):
        """Record which chunks were used for a query, replacing any earlier record."""
        with self._lock:
            self.context_usage[query_id] = ContextUsage(query_id=query_id, used_chunk_ids=list(used_chunk_ids))
            self._save()

    def get_context_usage(self, query_id: str) -> Optional[ContextUsage]:
        with self._lock:
            return self.context_usage.get(query_id)

    def get_chunk_feedback(self, chunk_id: str) -> List[RelevanceFeedback]:
        with self._lock:
            return [
                entry
                for entries in self.feedback.values()
                for entry in entries
                if entry.chunk_id == chunk_id
            ]

    def get_chunk_stats(self, chunk_id: str) -> ChunkStats:
        entries = self.get_chunk_feedback(chunk_id)
        if not entries:
            return ChunkStats(chunk_id=chunk_id)

        helpful = sum(1 for entry in entries if entry.rating == RelevanceRating.HELPFUL)
        return ChunkStats(
            chunk_id=chunk_id,
            total_feedback=len(entries),
            helpful_rate=helpful / len(entries),
            avg_rating=sum(entry.rating.score for entry in entries) / len(entries),
        )

    def get_low_rated_chunks(self, threshold: float = 1.5, min_samples: int = 3) -> List[str]:
        """Chunks with at least ``min_samples`` ratings averaging below ``threshold``."""
        with self._lock:
            chunk_ids = list(dict.fromkeys(
                entry.chunk_id for entries in self.feedback.values() for entry in entries
            ))

        low_rated = []
        for chunk_id in chunk_ids:
            stats = self.get_chunk_stats(chunk_id)
            if stats.total_feedback >= min_samples and stats.avg_rating < threshold:
                low_rated.append(chunk_id)
        return low_rated

    def get_overall_stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self._feedback_count()
            helpful = sum(
                1 for entries in self.feedback.values() for entry in entries
                if entry.rating == RelevanceRating.HELPFUL
            )
            return {
                "total_queries": len(self.feedback),
                "total_feedback": total,
                "avg_helpful_rate": helpful / total if total > 0 else 0.0,
            }

    def prune_old_feedback(self, max_age_days: float) -> int:
        """Drop feedback and usage records older than ``max_age_days``.

        Returns:
            Number of feedback entries removed
        """
        cutoff = datetime.now(timezone.utc) - timedelta(days=max_age_days)
        pruned = 0

        with self._lock:
            for query_id in list(self.feedback.keys()):
                entries = self.feedback[query_id]
                kept = [entry for entry in entries if as_utc(entry.timestamp) > cutoff]
                pruned += len(entries) - len(kept)
                if kept:
                    self.feedback[query_id] = kept
                else:
                    del self.feedback[query_id]

            stale = [
                query_id for query_id, usage in self.context_usage.items()
                if as_utc(usage.timestamp) <= cutoff
            ]
            for query_id in stale:
                del self.context_usage[query_id]

            if pruned or stale:
                self._save()

        if pruned:
            logger.info(f"Pruned {pruned} feedback entries older than {max_age_days} days")
        return pruned

    def clear(self):
        with self._lock:
            self.feedback.clear()
            self.context_usage.clear()
            self._save()

    def _feedback_count(self) -> int:
        return sum(len(entries) for entries in self.feedback.values())


def create_feedback_tracker(storage_path: Optional[Union[str, Path]] = None) -> FeedbackTracker:
    return FeedbackTracker(storage_path)
