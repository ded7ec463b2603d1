"""
Relevance feedback tracking.
"""

from .models import ChunkStats, ContextUsage, FeedbackStats, RelevanceFeedback, RelevanceRating
from .tracker import FeedbackTracker, create_feedback_tracker

__all__ = [
    "ChunkStats",
    "ContextUsage",
    "FeedbackStats",
    "FeedbackTracker",
    "RelevanceFeedback",
    "RelevanceRating",
    "create_feedback_tracker",
]
