"""
Context Assembler for packing ranked chunks into a token-bounded text block.
"""

import json
import logging
import re
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..models import AssembledContext
from ..retrieval.models import RetrievedChunk
from .tokens import TokenCounter, estimate_tokens_simple

if TYPE_CHECKING:
    from ..config import AssemblyConfig

logger = logging.getLogger(__name__)

TRUNCATION_INDICATOR = "// ... (truncated)"

# Tokens held back from the chunk budget for each format's wrapper text
FORMAT_OVERHEAD = {
    "xml": 50,
    "markdown": 30,
    "json": 40,
    "plain": 20,
}

EXTENSION_LANGUAGES = {
    "ts": "typescript",
    "tsx": "typescript",
    "js": "javascript",
    "jsx": "javascript",
    "py": "python",
    "go": "go",
    "rs": "rust",
    "java": "java",
    "rb": "ruby",
    "php": "php",
    "cs": "csharp",
    "cpp": "cpp",
    "c": "c",
    "h": "c",
    "hpp": "cpp",
    "md": "markdown",
    "yaml": "yaml",
    "yml": "yaml",
    "json": "json",
    "xml": "xml",
    "html": "html",
    "css": "css",
    "scss": "scss",
    "sql": "sql",
    "sh": "bash",
    "bash": "bash",
}

_XML_ESCAPES = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&apos;",
}


class ContextAssembler:
    """Formats ranked chunks as xml, markdown, plain text or json."""

    def __init__(self, token_counter: Optional[TokenCounter] = None):
        self.token_counter = token_counter or estimate_tokens_simple

    def count_tokens(self, text: str) -> int:
        return self.token_counter(text)

    def assemble(self, chunks: List[RetrievedChunk], config: "AssemblyConfig") -> AssembledContext:
        """
        Pack chunks, in order, into formatted text within ``config.max_tokens``.

        The chunk that first overflows the budget is cut down to fit, with a
        truncation marker, if any room is left. If the formatted text is still
        over budget, trailing chunks are dropped until it fits.

        Args:
            chunks: Ranked chunks, best first
            config: Assembly settings

        Returns:
            AssembledContext with the included chunks and formatted text
        """
        if not chunks:
            return AssembledContext(chunks=[], text="", token_count=0, truncated=False)

        overhead = FORMAT_OVERHEAD.get(config.format, FORMAT_OVERHEAD["plain"])
        available = max(config.max_tokens - overhead, 1)

        assembled: List[RetrievedChunk] = []
        used = 0
        truncated = False

        for chunk in chunks:
            chunk_tokens = self.count_tokens(chunk.content)
            if used + chunk_tokens > available:
                remaining = available - used
                if remaining > 0:
                    assembled.append(self._truncate_chunk(chunk, remaining))
                truncated = True
                break
            assembled.append(chunk)
            used += chunk_tokens

        text = self._format(assembled, config)
        token_count = self.count_tokens(text)

        while token_count > config.max_tokens and assembled:
            assembled.pop()
            truncated = True
            text = self._format(assembled, config)
            token_count = self.count_tokens(text)

        logger.debug(
            f"Assembled {len(assembled)}/{len(chunks)} chunks, {token_count}/{config.max_tokens} tokens"
            f"{' (truncated)' if truncated else ''}"
        )
        return AssembledContext(chunks=assembled, text=text, token_count=token_count, truncated=truncated)

    def _format(self, chunks: List[RetrievedChunk], config: "AssemblyConfig") -> str:
        if not chunks:
            return ""
        if config.format == "xml":
            return self._format_xml(chunks, config.include_scores)
        if config.format == "markdown":
            return self._format_markdown(chunks, config.include_scores)
        if config.format == "json":
            return self._format_json(chunks, config.include_scores)
        return self._format_plain(chunks, config.include_scores)

    def _format_xml(self, chunks: List[RetrievedChunk], include_scores: bool) -> str:
        parts = ["<retrieved_context>"]
        for chunk in chunks:
            score_attr = f' score="{chunk.effective_score:.3f}"' if include_scores else ""
            parts.append(f'  <chunk source="{chunk.source.value}"{score_attr}>')
            parts.append(f"    <location>{escape_xml(format_location(chunk))}</location>")
            parts.append("    <content>")
            parts.append(escape_xml(chunk.content))
            parts.append("    </content>")
            parts.append("  </chunk>")
        parts.append("</retrieved_context>")
        return "\n".join(parts)

    def _format_markdown(self, chunks: List[RetrievedChunk], include_scores: bool) -> str:
        parts = []
        for i, chunk in enumerate(chunks):
            score_text = f" (relevance: {chunk.effective_score:.2f})" if include_scores else ""
            parts.append(f"### {format_location(chunk)}{score_text}")
            parts.append("")
            parts.append(f"```{chunk.metadata.language or infer_language(chunk)}")
            parts.append(chunk.content)
            parts.append("```")
            if i < len(chunks) - 1:
                parts.extend(["", "---", ""])
        return "\n".join(parts)

    def _format_json(self, chunks: List[RetrievedChunk], include_scores: bool) -> str:
        formatted = []
        for chunk in chunks:
            entry: Dict[str, Any] = {
                "source": chunk.source.value,
                "location": format_location(chunk),
            }
            if include_scores:
                entry["score"] = chunk.effective_score
            entry["content"] = chunk.content

            metadata: Dict[str, Any] = {}
            if chunk.metadata.language:
                metadata["language"] = chunk.metadata.language
            if chunk.metadata.symbols:
                metadata["symbols"] = list(chunk.metadata.symbols)
            entry["metadata"] = metadata

            formatted.append(entry)
        return json.dumps({"context": formatted}, indent=2)

    def _format_plain(self, chunks: List[RetrievedChunk], include_scores: bool) -> str:
        parts = []
        for chunk in chunks:
            score_text = f" [score: {chunk.effective_score:.2f}]" if include_scores else ""
            parts.append(f"// {format_location(chunk)}{score_text}")
            parts.append(chunk.content)
            parts.extend(["", "---", ""])
        return "\n".join(parts).strip()

    def _truncate_chunk(self, chunk: RetrievedChunk, max_tokens: int) -> RetrievedChunk:
        """Cut content line by line, then word by word, to fit ``max_tokens``."""
        content_budget = max(0, max_tokens - self.count_tokens(TRUNCATION_INDICATOR))

        kept_lines = []
        used = 0
        for line in chunk.content.split("\n"):
            line_tokens = self.count_tokens(line)
            if used + line_tokens > content_budget:
                remaining = content_budget - used
                if remaining > 0:
                    words = []
                    word_tokens = 0
                    for word in line.split():
                        tokens = self.count_tokens(word)
                        if word_tokens + tokens > remaining:
                            break
                        words.append(word)
                        word_tokens += tokens
                    if words:
                        kept_lines.append(" ".join(words))
                break
            kept_lines.append(line)
            used += line_tokens

        kept_lines.append(TRUNCATION_INDICATOR)
        return replace(chunk, content="\n".join(kept_lines))


def format_location(chunk: RetrievedChunk) -> str:
    """Human-readable location of a chunk from its metadata."""
    metadata = chunk.metadata
    if metadata.file_path:
        if metadata.start_line is not None and metadata.end_line is not None:
            return f"{metadata.file_path}:{metadata.start_line}-{metadata.end_line}"
        if metadata.start_line is not None:
            return f"{metadata.file_path}:{metadata.start_line}"
        return metadata.file_path

    if metadata.url:
        return f"{metadata.title} ({metadata.url})" if metadata.title else metadata.url

    if metadata.title:
        return metadata.title

    return f"{chunk.source.value}:{chunk.id}"


def infer_language(chunk: RetrievedChunk) -> str:
    """Code fence language from the file extension, or an empty string."""
    file_path = chunk.metadata.file_path
    if not file_path or "." not in file_path:
        return ""
    extension = file_path.rsplit(".", 1)[-1].lower()
    return EXTENSION_LANGUAGES.get(extension, "")


_XML_SPECIAL = re.compile(r"[&<>\"']")


def escape_xml(text: str) -> str:
    return _XML_SPECIAL.sub(lambda match: _XML_ESCAPES[match.group(0)], text)


def create_context_assembler(token_counter: Optional[TokenCounter] = None) -> ContextAssembler:
    return ContextAssembler(token_counter)
