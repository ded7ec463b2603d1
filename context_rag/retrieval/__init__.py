"""
Source adapters and multi-source retrieval.
"""

from .models import (
    ChunkMetadata,
    RetrievedChunk,
    RetrieveOptions,
    SourceAttribution,
    SourceFilter,
    SourceType,
)
from .sources import RAGSource, BaseRAGSource
from .retriever import Retriever, create_retriever
from .keyword_source import KeywordSource, KeywordDocument
from .docs_source import DocsSource, DocEntry
from .vector_source import VectorSource, VectorDocument

__all__ = [
    "BaseRAGSource",
    "ChunkMetadata",
    "DocEntry",
    "DocsSource",
    "KeywordDocument",
    "KeywordSource",
    "RAGSource",
    "RetrieveOptions",
    "RetrievedChunk",
    "Retriever",
    "SourceAttribution",
    "SourceFilter",
    "SourceType",
    "VectorDocument",
    "VectorSource",
    "create_retriever",
]
