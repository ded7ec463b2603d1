"""
Query processing: expansion, entity extraction, intent and decomposition.
"""

from .models import EntityType, ExtractedEntity, ProcessedQuery, QueryIntent
from .intent_classifier import IntentClassifier
from .query_processor import QueryProcessor, create_query_processor

__all__ = [
    "EntityType",
    "ExtractedEntity",
    "IntentClassifier",
    "ProcessedQuery",
    "QueryIntent",
    "QueryProcessor",
    "create_query_processor",
]
