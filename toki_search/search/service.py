"""Search service: the entry point for natural-language queries.

Parses the query into residual text plus filters, embeds the residual text
only when it is long enough to carry signal, and hands both to the document
store, which owns ranking. The service never mutates the store.

Errors
- ``EmbeddingError`` and ``DocumentStoreError`` propagate to the caller; a
  failed search returns no partial results.
"""

import time
from typing import Any, List, Optional

import structlog

from toki_search.common.logging import log_performance
from toki_search.common.metrics import MetricsCollector, get_metrics_collector
from toki_search.common.tracing import SearchTracer, get_search_tracer
from toki_search.document_store.base import DocumentStore
from toki_search.embedding.base import Embedder

from .models import IndexStats, SearchResult, SearchSource
from .query_parser import QueryParser

logger = structlog.get_logger("search_service")


class SearchService:
    """Answers free-text searches against a document store.

    Parameters
    - embedder: Produces the query vector for hybrid search
    - store: Document store that filters and ranks
    - default_limit: Result count when the caller passes none
    - max_limit: Upper bound applied to every requested limit
    - min_query_length: Shortest residual text that gets embedded
    - parser: Optional ``QueryParser`` (e.g. with a fixed clock in tests)
    """

    def __init__(
        self,
        embedder: Embedder,
        store: DocumentStore,
        default_limit: int = 20,
        max_limit: int = 100,
        min_query_length: int = 2,
        parser: Optional[QueryParser] = None,
        metrics_collector: Optional[MetricsCollector] = None,
        tracer: Optional[SearchTracer] = None,
    ):
        self.embedder = embedder
        self.store = store
        self.default_limit = default_limit
        self.max_limit = max_limit
        self.min_query_length = min_query_length
        self.parser = parser or QueryParser()
        self.metrics_collector = metrics_collector or get_metrics_collector("toki-search")
        self.tracer = tracer or get_search_tracer("toki-search")

    @classmethod
    def from_config(
        cls,
        config: Any,
        embedder: Embedder,
        store: DocumentStore,
        **kwargs: Any
    ) -> "SearchService":
        """Build from a ``SearchConfig``."""
        return cls(
            embedder,
            store,
            default_limit=config.toki_search_default_limit,
            max_limit=config.toki_search_max_limit,
            min_query_length=config.toki_search_min_query_length,
            **kwargs
        )

    def effective_limit(self, limit: Optional[int]) -> int:
        """Clamp the requested limit into ``[1, max_limit]``."""
        requested = self.default_limit if limit is None else limit
        return max(1, min(requested, self.max_limit))

    async def search(self, query: str, limit: Optional[int] = None) -> List[SearchResult]:
        """Search for documents matching ``query``.

        Returns an empty list for blank queries without parsing or embedding.
        """
        start_time = time.time()
        query = query.strip()
        if not query:
            self.metrics_collector.record_search("empty", time.time() - start_time, 0)
            return []

        parsed = self.parser.parse(query)
        limit = self.effective_limit(limit)
        use_embedding = len(parsed.search_text) >= self.min_query_length
        mode = "hybrid" if use_embedding else "lexical"

        with self.tracer.trace_search_query(mode, limit):
            try:
                embedding = await self.embedder.embed(parsed.search_text) if use_embedding else None
                results = await self.store.search(parsed, embedding, limit)
            except Exception as e:
                logger.error("Search failed", query=query, mode=mode, error=str(e))
                raise

        duration = time.time() - start_time
        self.metrics_collector.record_search(mode, duration, len(results))
        log_performance(
            "search",
            duration * 1000,
            mode=mode,
            search_text=parsed.search_text,
            results_count=len(results),
        )
        return results

    async def stats(self) -> IndexStats:
        """Return document counts for the whole index and per source type."""
        return IndexStats(
            total=await self.store.count(None),
            prs=await self.store.count(SearchSource.PR),
            work_items=await self.store.count(SearchSource.WORK_ITEM),
        )
