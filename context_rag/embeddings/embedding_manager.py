"""
Embedding Manager for turning query and document text into vectors.
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Any, List, Optional

from sentence_transformers import SentenceTransformer

from ..config import resolve_env_vars
from ..errors import EmbeddingError

logger = logging.getLogger(__name__)

DEFAULT_LOCAL_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
DEFAULT_OPENAI_MODEL = "text-embedding-3-small"


@dataclass
class EmbeddingConfig:
    """Configuration for embedding providers."""
    provider: str
    model: str
    api_key: Optional[str] = None
    dimensions: Optional[int] = None

    def __post_init__(self):
        """Resolve environment variables after initialization."""
        if self.api_key:
            self.api_key = resolve_env_vars(self.api_key)


class EmbeddingProvider(ABC):
    """Abstract base class for embedding providers."""

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Embed a single text."""
        pass

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed several texts, one call per text unless overridden."""
        return [await self.embed(text) for text in texts]

    @property
    @abstractmethod
    def dimension(self) -> Optional[int]:
        """Vector size, if known."""
        pass


class SentenceTransformerProvider(EmbeddingProvider):
    """Local sentence-transformers model. Encoding runs in a worker thread."""

    def __init__(self, config: EmbeddingConfig):
        self.config = config
        self.model = SentenceTransformer(config.model or DEFAULT_LOCAL_MODEL)

    async def embed(self, text: str) -> List[float]:
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        try:
            vectors = await asyncio.to_thread(self.model.encode, texts)
        except Exception as e:
            logger.error(f"Sentence-transformers embedding error: {e}")
            raise
        return [[float(value) for value in vector] for vector in vectors]

    @property
    def dimension(self) -> Optional[int]:
        return self.model.get_sentence_embedding_dimension()


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI embeddings API."""

    def __init__(self, config: EmbeddingConfig):
        self.config = config
        self.api_key = config.api_key or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise ValueError("OpenAI API key not found")

        try:
            from openai import AsyncOpenAI
            self.client = AsyncOpenAI(api_key=self.api_key)
        except ImportError:
            raise ImportError("OpenAI package not installed")

    async def embed(self, text: str) -> List[float]:
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        kwargs: Dict[str, Any] = {"model": self.config.model or DEFAULT_OPENAI_MODEL, "input": texts}
        if self.config.dimensions:
            kwargs["dimensions"] = self.config.dimensions
        try:
            response = await self.client.embeddings.create(**kwargs)
        except Exception as e:
            logger.error(f"OpenAI embedding error: {e}")
            raise
        return [list(item.embedding) for item in response.data]

    @property
    def dimension(self) -> Optional[int]:
        return self.config.dimensions


class EmbeddingManager(EmbeddingProvider):
    """Builds the provider named in the ``embedding:`` config section."""

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.provider: Optional[EmbeddingProvider] = None
        self._initialize_provider()

    def _initialize_provider(self):
        """Initialize the configured embedding provider."""
        embedding_config = self.config.get("embedding", {})
        provider_name = embedding_config.get("provider", "sentence_transformers")

        if provider_name == "openai":
            config = EmbeddingConfig(
                provider="openai",
                model=embedding_config.get("model", DEFAULT_OPENAI_MODEL),
                api_key=embedding_config.get("api_key"),
                dimensions=embedding_config.get("dimensions"),
            )
            self.provider = OpenAIEmbeddingProvider(config)
        elif provider_name == "sentence_transformers":
            config = EmbeddingConfig(
                provider="sentence_transformers",
                model=embedding_config.get("model", DEFAULT_LOCAL_MODEL),
            )
            self.provider = SentenceTransformerProvider(config)
        else:
            raise ValueError(f"Unknown embedding provider: {provider_name}")

        logger.info(f"{provider_name} embedding provider initialized")

    async def embed(self, text: str) -> List[float]:
        try:
            return await self.provider.embed(text)
        except Exception as e:
            raise EmbeddingError(f"Embedding failed: {e}", e) from e

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        try:
            return await self.provider.embed_batch(texts)
        except Exception as e:
            raise EmbeddingError(f"Batch embedding failed: {e}", e) from e

    @property
    def dimension(self) -> Optional[int]:
        return self.provider.dimension
