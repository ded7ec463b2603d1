"""
Data models for the retrieval module.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, List, Optional


class SourceType(str, Enum):
    """Content sources the pipeline can retrieve from."""
    VECTOR_DB = "vector_db"
    KEYWORD = "keyword"
    DOCS = "docs"
    ISSUES = "issues"
    PRS = "prs"
    COMMITS = "commits"


@dataclass
class ChunkMetadata:
    """Location and provenance of a retrieved chunk."""
    file_path: Optional[str] = None
    start_line: Optional[int] = None
    end_line: Optional[int] = None
    url: Optional[str] = None
    date: Optional[datetime] = None
    author: Optional[str] = None
    title: Optional[str] = None
    language: Optional[str] = None
    symbols: List[str] = field(default_factory=list)
    
    def to_dict(self) -> Dict[str, Any]:
        data = {
            "file_path": self.file_path,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "url": self.url,
            "date": self.date.isoformat() if self.date else None,
            "author": self.author,
            "title": self.title,
            "language": self.language,
            "symbols": list(self.symbols),
        }
        return data
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChunkMetadata":
        date = data.get("date")
        if isinstance(date, str):
            date = datetime.fromisoformat(date)
        return cls(
            file_path=data.get("file_path"),
            start_line=data.get("start_line"),
            end_line=data.get("end_line"),
            url=data.get("url"),
            date=date,
            author=data.get("author"),
            title=data.get("title"),
            language=data.get("language"),
            symbols=list(data.get("symbols") or []),
        )


@dataclass
class RetrievedChunk:
    """A unit of content returned by a source.

    ``id`` is unique within its source. ``fused_score`` stays ``None`` until
    the ranker has merged the per-source lists.
    """
    id: str
    content: str
    source: SourceType
    score: float
    metadata: ChunkMetadata = field(default_factory=ChunkMetadata)
    fused_score: Optional[float] = None
    embedding: Optional[List[float]] = None
    
    @property
    def effective_score(self) -> float:
        return self.fused_score if self.fused_score is not None else self.score
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "source": self.source.value,
            "score": self.score,
            "fused_score": self.fused_score,
            "metadata": self.metadata.to_dict(),
            "embedding": list(self.embedding) if self.embedding is not None else None,
        }
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RetrievedChunk":
        return cls(
            id=data["id"],
            content=data["content"],
            source=SourceType(data["source"]),
            score=data["score"],
            fused_score=data.get("fused_score"),
            metadata=ChunkMetadata.from_dict(data.get("metadata") or {}),
            embedding=data.get("embedding"),
        )


@dataclass
class SourceAttribution:
    """Summary of one source's contribution to a result."""
    source: SourceType
    count: int
    avg_score: float
    latency_ms: float
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source.value,
            "count": self.count,
            "avg_score": self.avg_score,
            "latency_ms": self.latency_ms,
        }
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourceAttribution":
        return cls(
            source=SourceType(data["source"]),
            count=data["count"],
            avg_score=data["avg_score"],
            latency_ms=data["latency_ms"],
        )


@dataclass
class SourceFilter:
    """Optional restrictions applied by a source."""
    file_paths: List[str] = field(default_factory=list)
    languages: List[str] = field(default_factory=list)
    date_range: Optional[tuple] = None  # (start, end) datetimes
    authors: List[str] = field(default_factory=list)
    
    def is_empty(self) -> bool:
        return not (self.file_paths or self.languages or self.date_range or self.authors)

    def matches(self, metadata: ChunkMetadata) -> bool:
        """Return True if the chunk metadata passes every set restriction."""
        if self.file_paths:
            if not metadata.file_path:
                return False
            if not any(path in metadata.file_path for path in self.file_paths):
                return False

        if self.languages:
            if not metadata.language or metadata.language not in self.languages:
                return False

        if self.authors:
            if not metadata.author or metadata.author not in self.authors:
                return False

        if self.date_range and metadata.date:
            start, end = self.date_range
            if not (as_utc(start) <= as_utc(metadata.date) <= as_utc(end)):
                return False

        return True


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class RetrieveOptions:
    """Per-call options handed to a source."""
    top_k: int
    filter: Optional[SourceFilter] = None
    timeout_ms: Optional[float] = None
