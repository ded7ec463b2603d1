"""
Data models for query processing.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class EntityType(str, Enum):
    """Kinds of code entities recognised in a query."""
    FILE = "file"
    FUNCTION = "function"
    CLASS = "class"
    VARIABLE = "variable"
    PACKAGE = "package"
    SYMBOL = "symbol"


class QueryIntent(str, Enum):
    """Query intents, in tie-breaking order."""
    CODE_SEARCH = "code_search"
    EXPLANATION = "explanation"
    IMPLEMENTATION = "implementation"
    DEBUGGING = "debugging"
    DOCUMENTATION = "documentation"
    REFACTORING = "refactoring"
    GENERAL = "general"


@dataclass(frozen=True)
class ExtractedEntity:
    """An entity found in the query text."""
    type: EntityType
    value: str
    confidence: float


@dataclass(frozen=True)
class ProcessedQuery:
    """Query after expansion, entity extraction and classification."""
    original: str
    expanded: List[str]
    entities: List[ExtractedEntity] = field(default_factory=list)
    decomposed: Optional[List[str]] = None
    language: Optional[str] = None
    intent: Optional[QueryIntent] = None
    embedding: Optional[List[float]] = None
