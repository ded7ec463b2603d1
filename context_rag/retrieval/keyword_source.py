"""
Keyword source using the BM25 ranking function.

An in-memory index suited to moderate code bases; larger deployments plug in
an external full-text engine behind the same RAGSource contract.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..query.models import ProcessedQuery
from .models import ChunkMetadata, RetrievedChunk, RetrieveOptions, SourceFilter, SourceType
from .sources import BaseRAGSource

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r"([a-z])([A-Z])")
_NON_WORD = re.compile(r"[^\w\s]")


@dataclass
class KeywordDocument:
    """A document stored in the keyword index."""
    id: str
    content: str
    metadata: ChunkMetadata = field(default_factory=ChunkMetadata)


@dataclass
class _DocumentStats:
    term_frequencies: Dict[str, int]
    length: int


def tokenize(text: str) -> List[str]:
    """Split camelCase, lowercase, strip punctuation and drop one-letter terms."""
    prepared = _CAMEL_BOUNDARY.sub(r"\1 \2", text)
    prepared = _NON_WORD.sub(" ", prepared.lower())
    return [term for term in prepared.split() if len(term) >= 2]


class KeywordSource(BaseRAGSource):
    """BM25 keyword search over an in-memory document set."""

    name = SourceType.KEYWORD

    def __init__(self, k1: float = 1.5, b: float = 0.75):
        super().__init__()
        self.k1 = k1
        self.b = b
        self.documents: Dict[str, KeywordDocument] = {}
        self.document_stats: Dict[str, _DocumentStats] = {}
        self.document_frequencies: Dict[str, int] = {}
        self.avg_doc_length = 0.0

    @property
    def size(self) -> int:
        return len(self.documents)

    async def _do_retrieve(self, query: ProcessedQuery, options: RetrieveOptions) -> List[RetrievedChunk]:
        if not self.documents:
            return []

        terms = list(dict.fromkeys(tokenize(query.original)))
        for variant in query.expanded:
            for term in tokenize(variant):
                if term not in terms:
                    terms.append(term)

        scores: List[Tuple[str, float]] = []
        for doc_id, stats in self.document_stats.items():
            score = self._bm25_score(terms, stats)
            if score > 0:
                scores.append((doc_id, score))

        scores.sort(key=lambda item: item[1], reverse=True)
        filtered = self._apply_filter(scores, options.filter)

        return [
            RetrievedChunk(
                id=doc_id,
                content=self.documents[doc_id].content,
                source=self.name,
                score=score,
                metadata=self.documents[doc_id].metadata,
            )
            for doc_id, score in filtered[:options.top_k]
        ]

    async def _do_dispose(self):
        self.clear()

    def add_document(self, doc: KeywordDocument):
        """Add or replace a document in the index."""
        if doc.id in self.documents:
            self.remove_document(doc.id)

        terms = tokenize(self._indexed_text(doc))
        term_frequencies: Dict[str, int] = {}
        for term in terms:
            term_frequencies[term] = term_frequencies.get(term, 0) + 1

        for term in term_frequencies:
            self.document_frequencies[term] = self.document_frequencies.get(term, 0) + 1

        self.documents[doc.id] = doc
        self.document_stats[doc.id] = _DocumentStats(term_frequencies, len(terms))
        self._update_avg_doc_length()

    def add_documents(self, docs: List[KeywordDocument]):
        for doc in docs:
            self.add_document(doc)

    def remove_document(self, doc_id: str):
        stats = self.document_stats.get(doc_id)
        if stats is None:
            return

        for term in stats.term_frequencies:
            df = self.document_frequencies.get(term, 0)
            if df <= 1:
                self.document_frequencies.pop(term, None)
            else:
                self.document_frequencies[term] = df - 1

        del self.documents[doc_id]
        del self.document_stats[doc_id]
        self._update_avg_doc_length()

    def clear(self):
        self.documents.clear()
        self.document_stats.clear()
        self.document_frequencies.clear()
        self.avg_doc_length = 0.0

    def _indexed_text(self, doc: KeywordDocument) -> str:
        return doc.content

    def _bm25_score(self, terms: List[str], stats: _DocumentStats) -> float:
        n_docs = len(self.documents)
        score = 0.0

        for term in terms:
            tf = stats.term_frequencies.get(term, 0)
            if tf == 0:
                continue
            df = self.document_frequencies.get(term, 0)
            if df == 0:
                continue

            idf = math.log((n_docs - df + 0.5) / (df + 0.5) + 1)
            length_norm = 1 - self.b + self.b * (stats.length / self.avg_doc_length)
            score += idf * (tf * (self.k1 + 1)) / (tf + self.k1 * length_norm)

        return score

    def _apply_filter(
        self,
        scores: List[Tuple[str, float]],
        source_filter: Optional[SourceFilter]
    ) -> List[Tuple[str, float]]:
        if source_filter is None or source_filter.is_empty():
            return scores
        return [
            (doc_id, score) for doc_id, score in scores
            if source_filter.matches(self.documents[doc_id].metadata)
        ]

    def _update_avg_doc_length(self):
        if not self.document_stats:
            self.avg_doc_length = 0.0
            return
        total = sum(stats.length for stats in self.document_stats.values())
        self.avg_doc_length = total / len(self.document_stats)


def create_keyword_source(k1: float = 1.5, b: float = 0.75) -> KeywordSource:
    return KeywordSource(k1=k1, b=b)
