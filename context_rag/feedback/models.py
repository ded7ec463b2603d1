"""
Data models for relevance feedback.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, List, Optional


class RelevanceRating(str, Enum):
    """How useful a chunk was for answering a query."""
    HELPFUL = "helpful"
    PARTIALLY_HELPFUL = "partially_helpful"
    NOT_HELPFUL = "not_helpful"

    @property
    def score(self) -> int:
        return RATING_SCORES[self]


RATING_SCORES = {
    RelevanceRating.HELPFUL: 3,
    RelevanceRating.PARTIALLY_HELPFUL: 2,
    RelevanceRating.NOT_HELPFUL: 1,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RelevanceFeedback:
    """One rating of one chunk returned for one query."""
    query_id: str
    chunk_id: str
    rating: RelevanceRating
    comment: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query_id": self.query_id,
            "chunk_id": self.chunk_id,
            "rating": self.rating.value,
            "comment": self.comment,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RelevanceFeedback":
        return cls(
            query_id=data["query_id"],
            chunk_id=data["chunk_id"],
            rating=RelevanceRating(data["rating"]),
            comment=data.get("comment"),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


@dataclass
class FeedbackStats:
    """Feedback summary for a single query."""
    query_id: str
    total_feedback: int = 0
    helpful_count: int = 0
    avg_rating: float = 0.0


@dataclass
class ChunkStats:
    """Feedback summary for a single chunk across all queries."""
    chunk_id: str
    total_feedback: int = 0
    helpful_rate: float = 0.0
    avg_rating: float = 0.0


@dataclass
class ContextUsage:
    """Chunks a downstream consumer actually used for a query."""
    query_id: str
    used_chunk_ids: List[str]
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query_id": self.query_id,
            "used_chunk_ids": list(self.used_chunk_ids),
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContextUsage":
        return cls(
            query_id=data["query_id"],
            used_chunk_ids=list(data.get("used_chunk_ids", [])),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )
