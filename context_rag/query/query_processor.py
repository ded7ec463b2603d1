"""
Query Processor for expanding, analysing and embedding raw queries.
"""

import logging
import re
from typing import Dict, List, Optional, Set, Union

from ..errors import QueryProcessingError
from ..models import RAGQuery
from .intent_classifier import IntentClassifier
from .models import EntityType, ExtractedEntity, ProcessedQuery
from .text_scan import collapse_whitespace, count_words, split_on_separators

logger = logging.getLogger(__name__)


# Programming synonyms used for query expansion
SYNONYM_MAP: Dict[str, List[str]] = {
    "function": ["method", "func", "fn", "procedure", "subroutine"],
    "method": ["function", "func", "fn"],
    "class": ["type", "struct", "object", "entity"],
    "interface": ["type", "protocol", "contract"],
    "variable": ["var", "const", "let", "field", "property", "prop"],
    "import": ["require", "include", "use"],
    "export": ["expose", "public"],
    "error": ["exception", "bug", "issue", "problem", "failure"],
    "fix": ["resolve", "repair", "patch", "correct"],
    "test": ["spec", "unittest", "it", "describe"],
    "async": ["await", "promise", "asynchronous"],
    "array": ["list", "collection", "slice"],
    "object": ["dict", "map", "hash", "record"],
    "string": ["str", "text"],
    "number": ["int", "integer", "float", "num"],
    "boolean": ["bool", "flag"],
    "null": ["nil", "none", "undefined"],
    "create": ["add", "new", "make", "generate"],
    "delete": ["remove", "drop", "destroy"],
    "update": ["modify", "change", "edit", "set"],
    "read": ["get", "fetch", "retrieve", "query", "find"],
    "api": ["endpoint", "route", "handler"],
    "database": ["db", "store", "repository"],
    "config": ["configuration", "settings", "options"],
}

# Every quantifier is bounded so a match attempt costs at most a fixed
# number of steps per start position.
_IDENT = r"[a-zA-Z_][a-zA-Z0-9_]{0,127}"
ENTITY_PATTERNS = [
    # File paths
    (re.compile(r"(?:^|(?<=[\s\"'`]))([a-zA-Z0-9_\-./]{1,255}\.[a-zA-Z]{2,4})(?=[\s\"'`]|$)"), EntityType.FILE),
    # Function/method declarations and calls
    (re.compile(r"(?:function|def|func|fn)\s{1,16}(" + _IDENT + r")", re.IGNORECASE), EntityType.FUNCTION),
    (re.compile(r"(" + _IDENT + r")[ \t]{0,16}\("), EntityType.FUNCTION),
    # Class names (PascalCase)
    (re.compile(r"(?:class|interface|type|struct)\s{1,16}([A-Z][a-zA-Z0-9]{0,127})"), EntityType.CLASS),
    (re.compile(r"\b([A-Z][a-zA-Z0-9]{2,127})\b"), EntityType.CLASS),
    # Package/module names
    (re.compile(r"(?:from|import)\s{1,16}['\"]?([a-zA-Z@][a-zA-Z0-9_\-./]{0,255})"), EntityType.PACKAGE),
    (re.compile(r"@([a-zA-Z][a-zA-Z0-9_\-/]{0,255})"), EntityType.PACKAGE),
    # Variable declarations
    (re.compile(r"(?:const|let|var)\s{1,16}(" + _IDENT + r")"), EntityType.VARIABLE),
]

COMMON_WORDS: Set[str] = {
    "the", "a", "an", "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "must", "can", "this", "that", "these",
    "those", "it", "its", "if", "then", "else", "for", "while", "with",
    "to", "from", "in", "on", "at", "by", "of", "and", "or", "not",
    "true", "false", "null", "undefined", "void", "new", "return",
}

DECOMPOSITION_SEPARATORS = [" and ", " also ", "; ", "?", ";", " then ", " after that "]

_FILE_EXTENSION = re.compile(r"\.[a-z]{2,4}$")
_PASCAL_CASE = re.compile(r"^[A-Z][a-z]")
_CAMEL_CASE = re.compile(r"^[a-z]{1,128}[A-Z]")


class QueryProcessor:
    """Turns a RAGQuery into a ProcessedQuery."""

    def __init__(self, embedding_provider=None, intent_classifier: Optional[IntentClassifier] = None):
        self.embedding_provider = embedding_provider
        self.intent_classifier = intent_classifier or IntentClassifier()

    def set_embedding_provider(self, provider):
        self.embedding_provider = provider

    async def process(self, query: Union[RAGQuery, str]) -> ProcessedQuery:
        """
        Process a raw query into an expanded, analysed form.

        Args:
            query: The caller's query

        Returns:
            ProcessedQuery with expansions, entities, intent and optional embedding
        """
        raw_text = query.text if isinstance(query, RAGQuery) else query

        try:
            text = raw_text.strip()
            expanded = self.expand_query(text)
            entities = self.extract_entities(text)
            intent = self.intent_classifier.classify(text)
            language = self.intent_classifier.detect_language(text)
            decomposed = self.decompose_query(text)
        except Exception as e:
            raise QueryProcessingError(f"Failed to process query: {e}", raw_text, e) from e

        embedding = await self._embed(text)

        return ProcessedQuery(
            original=text,
            expanded=expanded,
            entities=entities,
            decomposed=decomposed if len(decomposed) > 1 else None,
            language=language,
            intent=intent,
            embedding=embedding,
        )

    async def _embed(self, text: str) -> Optional[List[float]]:
        """Embed the query text; any failure leaves the query without an embedding."""
        if self.embedding_provider is None or not text:
            return None
        try:
            embedding = await self.embedding_provider.embed(text)
        except Exception as e:
            logger.warning(f"Query embedding failed, continuing without it: {e}")
            return None
        if embedding is None or len(embedding) == 0:
            return None
        return [float(value) for value in embedding]

    def expand_query(self, text: str) -> List[str]:
        """Return the original text followed by one variant per applicable synonym."""
        expanded = [text]
        seen = {text}

        for word in text.lower().split():
            synonyms = SYNONYM_MAP.get(word)
            if not synonyms:
                continue
            word_pattern = re.compile(r"\b" + re.escape(word) + r"\b", re.IGNORECASE)
            for synonym in synonyms:
                variant = word_pattern.sub(lambda _match, s=synonym: s, text)
                if variant not in seen:
                    seen.add(variant)
                    expanded.append(variant)

        return expanded

    def extract_entities(self, text: str) -> List[ExtractedEntity]:
        """Extract file, function, class, package and variable references."""
        entities: List[ExtractedEntity] = []
        seen: Set[str] = set()

        for pattern, entity_type in ENTITY_PATTERNS:
            for match in pattern.finditer(text):
                value = match.group(1)
                if not value or len(value) < 2:
                    continue
                key = value.lower()
                if key in seen or key in COMMON_WORDS:
                    continue
                seen.add(key)
                entities.append(ExtractedEntity(
                    type=entity_type,
                    value=value,
                    confidence=self._entity_confidence(value, entity_type),
                ))

        entities.sort(key=lambda entity: entity.confidence, reverse=True)
        return entities

    def decompose_query(self, text: str) -> List[str]:
        """Split a compound query into sub-queries of at least two words and over ten characters."""
        normalized = collapse_whitespace(text)
        parts = split_on_separators(normalized, DECOMPOSITION_SEPARATORS)
        sub_queries = [part for part in parts if len(part) > 10 and count_words(part) >= 2]
        return sub_queries if sub_queries else [text]

    def _entity_confidence(self, value: str, entity_type: EntityType) -> float:
        confidence = 0.5

        if entity_type == EntityType.FILE:
            if _FILE_EXTENSION.search(value):
                confidence += 0.3
            if "/" in value:
                confidence += 0.2
        elif entity_type == EntityType.CLASS:
            if _PASCAL_CASE.match(value):
                confidence += 0.2
        elif entity_type in (EntityType.FUNCTION, EntityType.VARIABLE):
            if _CAMEL_CASE.match(value):
                confidence += 0.2
        elif entity_type == EntityType.PACKAGE:
            if "/" in value:
                confidence += 0.2

        return min(confidence, 1.0)


def create_query_processor(embedding_provider=None) -> QueryProcessor:
    return QueryProcessor(embedding_provider)
