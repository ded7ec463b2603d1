"""
Result fusion and ranking.
"""

from .distance import cosine_similarity
from .ranker import Ranker, create_ranker

__all__ = ["Ranker", "cosine_similarity", "create_ranker"]
