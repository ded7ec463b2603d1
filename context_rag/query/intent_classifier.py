"""
Intent classifier for coding-agent queries.
"""

import logging
import re
from typing import Dict, List, Optional

from .models import QueryIntent

logger = logging.getLogger(__name__)


class IntentClassifier:
    """Keyword-driven intent and language classifier."""
    
    def __init__(self):
        # Declaration order doubles as the tie-breaking order
        self.intent_keywords: Dict[QueryIntent, List[str]] = {
            QueryIntent.CODE_SEARCH: ["find", "search", "where", "locate", "show", "list", "get"],
            QueryIntent.EXPLANATION: ["what", "why", "how", "explain", "describe", "understand"],
            QueryIntent.IMPLEMENTATION: ["implement", "create", "add", "build", "make", "write", "code"],
            QueryIntent.DEBUGGING: ["fix", "bug", "error", "issue", "problem", "debug", "wrong", "broken"],
            QueryIntent.DOCUMENTATION: ["document", "docs", "comment", "readme", "guide", "tutorial"],
            QueryIntent.REFACTORING: ["refactor", "improve", "optimize", "clean", "restructure", "simplify"],
            QueryIntent.GENERAL: [],
        }
        
        # Fixed alternations, no repetition inside the groups
        self.language_patterns = {
            "typescript": re.compile(r"\b(?:typescript|ts)\b", re.IGNORECASE),
            "javascript": re.compile(r"\b(?:javascript|js)\b", re.IGNORECASE),
            "python": re.compile(r"\b(?:python|py)\b", re.IGNORECASE),
            "go": re.compile(r"\b(?:golang|go)\b", re.IGNORECASE),
            "rust": re.compile(r"\b(?:rust|rs)\b", re.IGNORECASE),
            "java": re.compile(r"\bjava\b", re.IGNORECASE),
        }
    
    def calculate_intent_scores(self, query: str) -> Dict[QueryIntent, int]:
        """Count keyword substring hits per intent."""
        query_lower = query.lower()
        scores = {}
        for intent, keywords in self.intent_keywords.items():
            scores[intent] = sum(1 for keyword in keywords if keyword in query_lower)
        return scores
    
    def classify(self, query: str) -> QueryIntent:
        """
        Classify the intent of a query.
        
        Args:
            query: Raw query text
            
        Returns:
            The highest scoring intent, earliest declared on ties, GENERAL if nothing matched
        """
        scores = self.calculate_intent_scores(query)
        
        best_intent = QueryIntent.GENERAL
        best_score = 0
        for intent, score in scores.items():
            if score > best_score:
                best_score = score
                best_intent = intent
        
        logger.debug(f"Intent scores for '{query[:80]}': {scores} -> {best_intent.value}")
        return best_intent
    
    def detect_language(self, query: str) -> Optional[str]:
        """Return the first programming language explicitly named in the query."""
        for language, pattern in self.language_patterns.items():
            if pattern.search(query):
                return language
        return None
