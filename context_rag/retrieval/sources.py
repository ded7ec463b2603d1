"""
Source adapter contract.

Every content source (vector index, keyword index, docs, issues, pull
requests, commits) implements RAGSource. The retriever only ever talks to
sources through this interface.
"""

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List, Optional

from ..errors import RAGError, RetrievalError, SourceUnavailableError
from ..query.models import ProcessedQuery
from .models import RetrievedChunk, RetrieveOptions, SourceType

if TYPE_CHECKING:
    from ..config import SourceSettings

logger = logging.getLogger(__name__)


class RAGSource(ABC):
    """Abstract interface for a retrieval source."""

    name: SourceType

    @property
    @abstractmethod
    def enabled(self) -> bool:
        """Whether the source currently accepts queries."""

    @abstractmethod
    async def initialize(self, settings: "SourceSettings"):
        """Prepare the source with its settings."""

    @abstractmethod
    async def retrieve(self, query: ProcessedQuery, options: RetrieveOptions) -> List[RetrievedChunk]:
        """Return chunks for the query, best first."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Return True if the source can serve queries."""

    @abstractmethod
    async def dispose(self):
        """Release resources."""


class BaseRAGSource(RAGSource):
    """Lifecycle bookkeeping shared by the bundled sources.

    Subclasses implement the ``_do_*`` hooks; the public methods handle the
    initialised/enabled state and wrap unexpected failures in RetrievalError.
    """

    def __init__(self):
        self.settings: Optional["SourceSettings"] = None
        self._initialized = False

    @property
    def enabled(self) -> bool:
        if self.settings is None:
            return True
        return self.settings.enabled

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self, settings: "SourceSettings"):
        self.settings = settings
        await self._do_initialize(settings)
        self._initialized = True
        logger.debug(f"Source '{self.name.value}' initialized (enabled={settings.enabled})")

    async def retrieve(self, query: ProcessedQuery, options: RetrieveOptions) -> List[RetrievedChunk]:
        if not self._initialized:
            raise SourceUnavailableError(self.name.value)
        try:
            return await self._do_retrieve(query, options)
        except RAGError:
            raise
        except Exception as e:
            raise RetrievalError(f"Retrieval from '{self.name.value}' failed: {e}", self.name.value, e) from e

    async def health_check(self) -> bool:
        if not self._initialized:
            return False
        return await self._do_health_check()

    async def dispose(self):
        await self._do_dispose()
        self._initialized = False

    async def _do_initialize(self, settings: "SourceSettings"):
        pass

    @abstractmethod
    async def _do_retrieve(self, query: ProcessedQuery, options: RetrieveOptions) -> List[RetrievedChunk]:
        ...

    async def _do_health_check(self) -> bool:
        return True

    async def _do_dispose(self):
        pass
