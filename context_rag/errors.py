"""
Error types for the RAG pipeline.
"""

from enum import Enum
from typing import Optional


class RAGErrorCode(Enum):
    """Error codes for pipeline failures."""
    NOT_INITIALIZED = "NOT_INITIALIZED"
    INVALID_CONFIG = "INVALID_CONFIG"
    QUERY_PROCESSING_FAILED = "QUERY_PROCESSING_FAILED"
    RETRIEVAL_FAILED = "RETRIEVAL_FAILED"
    SOURCE_TIMEOUT = "SOURCE_TIMEOUT"
    SOURCE_UNAVAILABLE = "SOURCE_UNAVAILABLE"
    RANKING_FAILED = "RANKING_FAILED"
    ASSEMBLY_FAILED = "ASSEMBLY_FAILED"
    EMBEDDING_FAILED = "EMBEDDING_FAILED"
    CACHE_ERROR = "CACHE_ERROR"
    FEEDBACK_ERROR = "FEEDBACK_ERROR"


class RAGError(Exception):
    """Base class for all pipeline errors."""
    
    def __init__(self, code: RAGErrorCode, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause
    
    def __str__(self) -> str:
        return self.message


class NotInitializedError(RAGError):
    """Raised when the pipeline is used before initialize()."""
    
    def __init__(self, message: str = "RAG pipeline is not initialized"):
        super().__init__(RAGErrorCode.NOT_INITIALIZED, message)


class InvalidConfigError(RAGError):
    """Raised for a malformed configuration value."""
    
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(RAGErrorCode.INVALID_CONFIG, message)
        self.field = field


class QueryProcessingError(RAGError):
    
    def __init__(self, message: str, query: str, cause: Optional[BaseException] = None):
        super().__init__(RAGErrorCode.QUERY_PROCESSING_FAILED, message, cause)
        self.query = query


class RetrievalError(RAGError):
    
    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        cause: Optional[BaseException] = None
    ):
        super().__init__(RAGErrorCode.RETRIEVAL_FAILED, message, cause)
        self.source = source


class SourceTimeoutError(RAGError):
    
    def __init__(self, source: str, timeout_ms: float):
        super().__init__(
            RAGErrorCode.SOURCE_TIMEOUT,
            f"Source '{source}' timed out after {timeout_ms}ms"
        )
        self.source = source
        self.timeout_ms = timeout_ms


class SourceUnavailableError(RAGError):
    
    def __init__(self, source: str, cause: Optional[BaseException] = None):
        super().__init__(
            RAGErrorCode.SOURCE_UNAVAILABLE,
            f"Source '{source}' is unavailable",
            cause
        )
        self.source = source


class RankingError(RAGError):
    
    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(RAGErrorCode.RANKING_FAILED, message, cause)


class AssemblyError(RAGError):
    
    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(RAGErrorCode.ASSEMBLY_FAILED, message, cause)


class EmbeddingError(RAGError):
    
    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(RAGErrorCode.EMBEDDING_FAILED, message, cause)


class CacheError(RAGError):
    
    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(RAGErrorCode.CACHE_ERROR, message, cause)


class FeedbackError(RAGError):
    
    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(RAGErrorCode.FEEDBACK_ERROR, message, cause)
