"""
Context RAG

Multi-source retrieval pipeline that gathers code, documentation and project
history for a coding agent, ranks it and packs it into a token-bounded
context block.
"""

from .config import RAGConfig, load_config
from .errors import RAGError
from .feedback import RelevanceFeedback, RelevanceRating
from .models import RAGQuery, RAGResult, QueryContext
from .pipeline import RAGPipeline, create_rag_pipeline
from .retrieval import SourceType

__version__ = "1.0.0"
__author__ = "Context RAG Team"

__all__ = [
    "QueryContext",
    "RAGConfig",
    "RAGError",
    "RAGPipeline",
    "RAGQuery",
    "RAGResult",
    "RelevanceFeedback",
    "RelevanceRating",
    "SourceType",
    "create_rag_pipeline",
    "load_config",
]
