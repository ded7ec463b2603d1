"""
Request and result models for the RAG pipeline.
"""

from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional

from .retrieval.models import RetrievedChunk, SourceAttribution, SourceType


@dataclass(frozen=True)
class QueryContext:
    """Hints about where the query comes from."""
    issue_number: Optional[int] = None
    file_path: Optional[str] = None
    language: Optional[str] = None
    project_id: Optional[str] = None
    recent_files: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "issue_number": self.issue_number,
            "file_path": self.file_path,
            "language": self.language,
            "project_id": self.project_id,
            "recent_files": list(self.recent_files),
        }
        return {key: value for key, value in data.items() if value not in (None, [])}


@dataclass(frozen=True)
class RAGQuery:
    """A caller's retrieval request."""
    text: str
    context: Optional[QueryContext] = None
    sources: Optional[List[SourceType]] = None
    max_tokens: Optional[int] = None
    top_k: Optional[int] = None


@dataclass
class AssembledContext:
    """Chunks that made it into the context and their formatted text."""
    chunks: List[RetrievedChunk]
    text: str
    token_count: int
    truncated: bool


@dataclass(frozen=True)
class RAGResult:
    """Outcome of one retrieval."""
    query_id: str
    retrieved_chunks: List[RetrievedChunk]
    assembled_context: str
    token_count: int
    sources: List[SourceAttribution]
    latency_ms: float
    cache_hit: bool = False
    truncated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query_id": self.query_id,
            "retrieved_chunks": [chunk.to_dict() for chunk in self.retrieved_chunks],
            "assembled_context": self.assembled_context,
            "token_count": self.token_count,
            "sources": [attribution.to_dict() for attribution in self.sources],
            "latency_ms": self.latency_ms,
            "cache_hit": self.cache_hit,
            "truncated": self.truncated,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RAGResult":
        return cls(
            query_id=data["query_id"],
            retrieved_chunks=[RetrievedChunk.from_dict(chunk) for chunk in data.get("retrieved_chunks", [])],
            assembled_context=data.get("assembled_context", ""),
            token_count=data.get("token_count", 0),
            sources=[SourceAttribution.from_dict(item) for item in data.get("sources", [])],
            latency_ms=data.get("latency_ms", 0.0),
            cache_hit=data.get("cache_hit", False),
            truncated=data.get("truncated", False),
        )
