"""
Documentation source: keyword search over titled documentation pages.
"""

from dataclasses import dataclass
from typing import List, Optional

from .keyword_source import KeywordDocument, KeywordSource
from .models import ChunkMetadata, SourceType


@dataclass
class DocEntry:
    """A documentation page or section."""
    id: str
    title: str
    content: str
    file_path: Optional[str] = None
    url: Optional[str] = None


class DocsSource(KeywordSource):
    """Indexes title and body of documentation entries with BM25."""

    name = SourceType.DOCS

    def add_doc(self, entry: DocEntry):
        self.add_document(KeywordDocument(
            id=entry.id,
            content=entry.content,
            metadata=ChunkMetadata(
                file_path=entry.file_path,
                url=entry.url,
                title=entry.title,
                language="markdown" if entry.file_path and entry.file_path.endswith(".md") else None,
            ),
        ))

    def add_docs(self, entries: List[DocEntry]):
        for entry in entries:
            self.add_doc(entry)

    def _indexed_text(self, doc: KeywordDocument) -> str:
        title = doc.metadata.title or ""
        return f"{title}\n{doc.content}" if title else doc.content
