"""Search indexer keeping the document store in sync with a source.

``sync_project`` pulls pull requests and work items for one project, embeds
them in batches (one ``embed_batch`` call per batch), upserts each batch, and
finally evicts documents that were not refreshed recently.

Execution model
- The sync start time is captured before any write and anchors the
  staleness cutoff, so documents written by this run never look stale
- Stages (PRs, work items, cleanup) are isolated: a failing stage is logged,
  counted in ``SyncStats.errors``, and the next stage still runs
- Batches within a stage run through a semaphore of
  ``max_concurrent_batches``; after the first failed batch the remaining
  batches of that stage are skipped
"""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional, Sequence, Tuple, TypeVar

import structlog

from toki_search.common.errors import SearchError
from toki_search.common.logging import log_performance
from toki_search.common.metrics import MetricsCollector, get_metrics_collector
from toki_search.common.tracing import SearchTracer, get_search_tracer
from toki_search.document_store.base import DocumentStore
from toki_search.embedding.base import Embedder, EmbeddingError
from toki_search.search.models import (
    PullRequestDocument,
    SearchDocument,
    SearchSource,
    SyncStats,
    WorkItemDocument,
)

from .source import DocumentSource

logger = structlog.get_logger("indexer")

T = TypeVar("T", PullRequestDocument, WorkItemDocument)


def build_embedding_text(
    title: str,
    description: Optional[str] = None,
    content: Optional[str] = None,
) -> str:
    """Join the non-empty text parts with blank lines."""
    return "\n\n".join(part for part in (title, description, content) if part)


def chunked(items: Sequence[T], size: int) -> List[Sequence[T]]:
    """Split ``items`` into consecutive slices of at most ``size``."""
    return [items[i:i + size] for i in range(0, len(items), size)]


class SearchIndexer:
    """Synchronizes one organization/project into a document store.

    Parameters
    - embedder: Produces document vectors in batches
    - store: Target document store
    - source: External source of PRs and work items
    - embedding_batch_size: Documents per ``embed_batch`` call
    - stale_threshold_hours: Age (relative to sync start) past which an
      unrefreshed document is deleted
    - cleanup_stale: Whether to run the staleness sweep
    - max_concurrent_batches: Batches processed at once within a stage
    - clock: Source of the sync start time, replaceable in tests
    """

    def __init__(
        self,
        embedder: Embedder,
        store: DocumentStore,
        source: DocumentSource,
        embedding_batch_size: int = 10,
        stale_threshold_hours: int = 48,
        cleanup_stale: bool = True,
        max_concurrent_batches: int = 1,
        clock: Optional[Callable[[], datetime]] = None,
        metrics_collector: Optional[MetricsCollector] = None,
        tracer: Optional[SearchTracer] = None,
    ):
        if embedding_batch_size < 1:
            raise ValueError("embedding_batch_size must be at least 1")
        if max_concurrent_batches < 1:
            raise ValueError("max_concurrent_batches must be at least 1")

        self.embedder = embedder
        self.store = store
        self.source = source
        self.embedding_batch_size = embedding_batch_size
        self.stale_threshold_hours = stale_threshold_hours
        self.cleanup_stale = cleanup_stale
        self.max_concurrent_batches = max_concurrent_batches
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.metrics_collector = metrics_collector or get_metrics_collector("toki-indexer")
        self.tracer = tracer or get_search_tracer("toki-indexer")

    @classmethod
    def from_config(
        cls,
        config: Any,
        embedder: Embedder,
        store: DocumentStore,
        source: DocumentSource,
        **kwargs: Any
    ) -> "SearchIndexer":
        """Build from an ``IndexerConfig``."""
        return cls(
            embedder,
            store,
            source,
            embedding_batch_size=config.toki_indexer_embedding_batch_size,
            stale_threshold_hours=config.toki_indexer_stale_threshold_hours,
            cleanup_stale=config.toki_indexer_cleanup_stale,
            max_concurrent_batches=config.toki_indexer_max_concurrent_batches,
            **kwargs
        )

    async def sync_project(self, org: str, project: str) -> SyncStats:
        """Sync all PRs and work items of ``org``/``project``.

        Returns
        - ``SyncStats`` with per-stage counts; failed stages show up in
          ``errors`` instead of raising
        """
        stats = SyncStats()
        sync_start = self.clock()
        start_time = time.time()

        logger.info("Starting search index sync", org=org, project=project)

        with self.tracer.trace_index_sync(org, project):
            stats.prs_indexed, error = await self._sync_pull_requests(org, project)
            if error is not None:
                logger.warning("Failed to sync pull requests", org=org, project=project, error=str(error))
                self._record_stage_error(stats, "pull_requests")
            else:
                logger.info("Synced pull requests", org=org, project=project, count=stats.prs_indexed)

            stats.work_items_indexed, error = await self._sync_work_items(org, project)
            if error is not None:
                logger.warning("Failed to sync work items", org=org, project=project, error=str(error))
                self._record_stage_error(stats, "work_items")
            else:
                logger.info("Synced work items", org=org, project=project, count=stats.work_items_indexed)

            if self.cleanup_stale:
                cutoff = sync_start - timedelta(hours=self.stale_threshold_hours)
                try:
                    stats.documents_deleted = await self.store.delete_stale_documents(cutoff)
                    self.metrics_collector.record_stale_deleted(stats.documents_deleted)
                    if stats.documents_deleted > 0:
                        logger.info("Cleaned up stale documents", count=stats.documents_deleted)
                except SearchError as e:
                    logger.warning("Failed to cleanup stale documents", error=str(e))
                    self._record_stage_error(stats, "cleanup")

        duration = time.time() - start_time
        self.metrics_collector.record_sync_duration(duration)
        logger.info(
            "Sync completed",
            org=org,
            project=project,
            prs=stats.prs_indexed,
            work_items=stats.work_items_indexed,
            deleted=stats.documents_deleted,
            errors=stats.errors,
        )
        log_performance("sync_project", duration * 1000, org=org, project=project)

        return stats

    def _record_stage_error(self, stats: SyncStats, stage: str) -> None:
        stats.errors += 1
        self.metrics_collector.record_sync_error(stage)

    async def _sync_pull_requests(self, org: str, project: str) -> Tuple[int, Optional[SearchError]]:
        try:
            pull_requests = await self.source.fetch_pull_requests(org, project)
        except SearchError as e:
            return 0, e

        def build(pr: PullRequestDocument, embedding: List[float]) -> SearchDocument:
            return self.pull_request_document(org, pr, embedding)

        return await self._index_batches(
            pull_requests,
            lambda pr: build_embedding_text(pr.title, pr.description, pr.additional_content),
            build,
            SearchSource.PR,
        )

    async def _sync_work_items(
        self,
        org: str,
        project: str,
        since: Optional[datetime] = None,
    ) -> Tuple[int, Optional[SearchError]]:
        try:
            work_items = await self.source.fetch_work_items(org, project, since)
        except SearchError as e:
            return 0, e

        def build(wi: WorkItemDocument, embedding: List[float]) -> SearchDocument:
            return self.work_item_document(org, wi, embedding)

        return await self._index_batches(
            work_items,
            lambda wi: build_embedding_text(wi.title, wi.description, wi.additional_content),
            build,
            SearchSource.WORK_ITEM,
        )

    async def _index_batches(
        self,
        items: Sequence[T],
        text_of: Callable[[T], str],
        build: Callable[[T, List[float]], SearchDocument],
        source_type: SearchSource,
    ) -> Tuple[int, Optional[SearchError]]:
        """Embed and upsert ``items`` batch by batch.

        Returns
        - The number of documents written and the first error, if any
        """
        semaphore = asyncio.Semaphore(self.max_concurrent_batches)
        failures: List[SearchError] = []

        async def process(batch: Sequence[T]) -> int:
            async with semaphore:
                if failures:
                    return 0
                try:
                    texts = [text_of(item) for item in batch]
                    embeddings = await self.embedder.embed_batch(texts)
                    if len(embeddings) != len(batch):
                        raise EmbeddingError(
                            f"Embedder returned {len(embeddings)} vectors for {len(batch)} texts"
                        )
                    documents = [build(item, embedding) for item, embedding in zip(batch, embeddings)]
                    written = await self.store.upsert_documents(documents)
                except SearchError as e:
                    failures.append(e)
                    return 0

                self.metrics_collector.record_documents_indexed(source_type.value, written)
                logger.debug("Indexed batch", source_type=source_type.value, count=written)
                return written

        counts = await asyncio.gather(
            *(process(batch) for batch in chunked(items, self.embedding_batch_size))
        )
        return sum(counts), (failures[0] if failures else None)

    @staticmethod
    def pull_request_document(
        org: str,
        pr: PullRequestDocument,
        embedding: Optional[List[float]],
    ) -> SearchDocument:
        """Build the stored document for a pull request."""
        return SearchDocument(
            source_type=SearchSource.PR,
            source_id=f"{org}/{pr.project}/{pr.repo_name}/{pr.id}",
            external_id=pr.id,
            title=pr.title,
            description=pr.description,
            content=pr.additional_content,
            organization=org,
            project=pr.project,
            repo_name=pr.repo_name,
            status=pr.status,
            author_id=pr.author_id,
            author_name=pr.author_name,
            is_draft=pr.is_draft,
            created_at=pr.created_at,
            updated_at=pr.updated_at,
            closed_at=pr.closed_at,
            url=pr.url,
            linked_work_items=list(pr.linked_work_items),
            embedding=embedding,
        )

    @staticmethod
    def work_item_document(
        org: str,
        wi: WorkItemDocument,
        embedding: Optional[List[float]],
    ) -> SearchDocument:
        """Build the stored document for a work item."""
        return SearchDocument(
            source_type=SearchSource.WORK_ITEM,
            source_id=f"{org}/{wi.project}/{wi.id}",
            external_id=wi.id,
            title=wi.title,
            description=wi.description,
            content=wi.additional_content,
            organization=org,
            project=wi.project,
            status=wi.status,
            author_id=wi.author_id,
            author_name=wi.author_name,
            assigned_to_id=wi.assigned_to_id,
            assigned_to_name=wi.assigned_to_name,
            priority=wi.priority,
            item_type=wi.item_type,
            is_draft=False,
            created_at=wi.created_at,
            updated_at=wi.updated_at,
            closed_at=wi.closed_at,
            url=wi.url,
            parent_id=wi.parent_id,
            embedding=embedding,
        )
