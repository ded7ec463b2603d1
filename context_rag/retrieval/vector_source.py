"""
Vector source: cosine similarity search over in-memory embeddings.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from ..query.models import ProcessedQuery
from .models import ChunkMetadata, RetrievedChunk, RetrieveOptions, SourceType
from .sources import BaseRAGSource

logger = logging.getLogger(__name__)


@dataclass
class VectorDocument:
    """A document with its embedding."""
    id: str
    content: str
    embedding: Optional[List[float]] = None
    metadata: ChunkMetadata = field(default_factory=ChunkMetadata)


class VectorSource(BaseRAGSource):
    """Dense retrieval over embeddings held in memory.

    Documents without an embedding are embedded on ``index_documents`` when an
    embedding provider is set. Queries without an embedding return nothing.
    """

    name = SourceType.VECTOR_DB

    def __init__(self, embedding_provider=None):
        super().__init__()
        self.embedding_provider = embedding_provider
        self.documents: Dict[str, VectorDocument] = {}
        self._matrix: Optional[np.ndarray] = None
        self._ids: List[str] = []

    @property
    def size(self) -> int:
        return len(self.documents)

    def add_document(self, doc: VectorDocument):
        if doc.embedding is None or len(doc.embedding) == 0:
            raise ValueError(f"Document {doc.id} has no embedding")
        self.documents[doc.id] = doc
        self._matrix = None

    def add_documents(self, docs: List[VectorDocument]):
        for doc in docs:
            self.add_document(doc)

    async def index_documents(self, docs: List[VectorDocument]):
        """Embed documents that lack an embedding, then add them."""
        for doc in docs:
            if doc.embedding is None:
                if self.embedding_provider is None:
                    raise ValueError("An embedding provider is required to index documents without embeddings")
                doc.embedding = await self.embedding_provider.embed(doc.content)
            self.add_document(doc)
        logger.info(f"Indexed {len(docs)} documents, {self.size} total")

    def remove_document(self, doc_id: str):
        if self.documents.pop(doc_id, None) is not None:
            self._matrix = None

    def clear(self):
        self.documents.clear()
        self._matrix = None
        self._ids = []

    async def _do_retrieve(self, query: ProcessedQuery, options: RetrieveOptions) -> List[RetrievedChunk]:
        if query.embedding is None or not self.documents:
            return []

        matrix = self._normalized_matrix()
        query_vec = np.asarray(query.embedding, dtype=float)
        if query_vec.shape[0] != matrix.shape[1]:
            raise ValueError(
                f"Query embedding has dimension {query_vec.shape[0]}, index has {matrix.shape[1]}"
            )
        norm = np.linalg.norm(query_vec)
        if norm == 0:
            return []

        similarities = matrix @ (query_vec / norm)
        order = np.argsort(-similarities, kind="stable")

        results: List[RetrievedChunk] = []
        for idx in order:
            doc = self.documents[self._ids[idx]]
            if options.filter is not None and not options.filter.matches(doc.metadata):
                continue
            results.append(RetrievedChunk(
                id=doc.id,
                content=doc.content,
                source=self.name,
                score=float(similarities[idx]),
                metadata=doc.metadata,
                embedding=list(doc.embedding),
            ))
            if len(results) >= options.top_k:
                break
        return results

    def _normalized_matrix(self) -> np.ndarray:
        if self._matrix is None:
            self._ids = list(self.documents.keys())
            matrix = np.array([self.documents[doc_id].embedding for doc_id in self._ids], dtype=float)
            norms = np.linalg.norm(matrix, axis=1, keepdims=True)
            norms[norms == 0] = 1.0
            self._matrix = matrix / norms
        return self._matrix

    async def _do_dispose(self):
        self.clear()
