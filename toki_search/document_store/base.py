"""Base document store interface.

Defines the contract the indexer and the search service depend on,
independent of the backing implementation (PostgreSQL, in-memory).

All methods are asynchronous. Writes are upserts keyed on
``(source_type, source_id)`` and refresh the store-owned ``indexed_at``.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence

from toki_search.common.errors import SearchError
from toki_search.search.models import (
    ParsedQuery,
    SearchDocument,
    SearchResult,
    SearchSource,
)


class DocumentStore(ABC):
    """Abstract base class for document stores.

    ``search`` must honour the hybrid ranking contract: identical filtering
    for every mode, lexical-only ranking without an embedding, and
    reciprocal rank fusion of capped lexical and vector pools with one.
    """

    backend_name = "abstract"

    @abstractmethod
    async def search(
        self,
        query: ParsedQuery,
        embedding: Optional[Sequence[float]],
        limit: int,
    ) -> List[SearchResult]:
        """Return at most ``limit`` results ordered by descending score."""
        pass

    @abstractmethod
    async def upsert_document(self, document: SearchDocument) -> int:
        """Insert or update one document.

        Returns
        - The store id of the document
        """
        pass

    @abstractmethod
    async def upsert_documents(self, documents: Sequence[SearchDocument]) -> int:
        """Insert or update several documents.

        Returns
        - The number of documents written
        """
        pass

    @abstractmethod
    async def delete_document(self, source_type: SearchSource, source_id: str) -> bool:
        """Delete one document.

        Returns ``True`` if a document was deleted, else ``False``.
        """
        pass

    @abstractmethod
    async def delete_stale_documents(self, older_than: datetime) -> int:
        """Delete documents whose ``indexed_at`` is before ``older_than``.

        Returns
        - The number of documents deleted
        """
        pass

    @abstractmethod
    async def get_document(
        self,
        source_type: SearchSource,
        source_id: str,
    ) -> Optional[SearchDocument]:
        """Fetch one document, or ``None`` when it is not indexed."""
        pass

    @abstractmethod
    async def count(self, source_type: Optional[SearchSource] = None) -> int:
        """Count documents, optionally for one source type."""
        pass

    async def health_check(self) -> bool:
        """Return ``True`` when the store is reachable."""
        return True

    async def close(self) -> None:
        """Release any held resources."""
        pass


class DocumentStoreError(SearchError):
    """Base exception for document store errors."""
    pass


class DocumentStoreConnectionError(DocumentStoreError):
    """Connection error for document stores."""
    pass


class DocumentStoreQueryError(DocumentStoreError):
    """Query error for document stores."""
    pass
