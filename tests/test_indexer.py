"""Tests for the search indexer."""

import asyncio
import math
from datetime import timedelta
from types import SimpleNamespace

import pytest

from toki_search.document_store.base import DocumentStoreQueryError
from toki_search.document_store.memory import InMemoryDocumentStore
from toki_search.indexer.indexer import SearchIndexer, build_embedding_text, chunked
from toki_search.indexer.source import DocumentSourceError, StaticDocumentSource
from toki_search.search.models import SearchSource

from tests.conftest import BASE_TIME, FakeEmbedder, make_document, make_pull_request, make_work_item


class FailingPullRequestSource(StaticDocumentSource):
    async def fetch_pull_requests(self, org, project):
        raise DocumentSourceError("tracker unavailable")


class CleanupFailingStore(InMemoryDocumentStore):
    async def delete_stale_documents(self, older_than):
        raise DocumentStoreQueryError("delete failed")


class ShortEmbedder(FakeEmbedder):
    """Returns one vector fewer than requested."""

    async def embed_batch(self, texts):
        vectors = await super().embed_batch(texts)
        return vectors[:-1]


class ConcurrencyTrackingEmbedder(FakeEmbedder):
    def __init__(self):
        super().__init__()
        self.active = 0
        self.peak = 0

    async def embed_batch(self, texts):
        self.active += 1
        self.peak = max(self.peak, self.active)
        await asyncio.sleep(0.01)
        self.active -= 1
        return await super().embed_batch(texts)


def make_source(pr_count=3, wi_count=5):
    return StaticDocumentSource(
        pull_requests=[make_pull_request(i, f"PR {i} login") for i in range(1, pr_count + 1)],
        work_items=[make_work_item(i, f"WI {i} auth") for i in range(1, wi_count + 1)],
    )


def make_indexer(embedder, store, source, clock, metrics, **kwargs):
    return SearchIndexer(embedder, store, source, clock=clock, metrics_collector=metrics, **kwargs)


def test_build_embedding_text_skips_empty_parts():
    assert build_embedding_text("Title", "Desc", "More") == "Title\n\nDesc\n\nMore"
    assert build_embedding_text("Title", None, "") == "Title"
    assert build_embedding_text("Title", "", "More") == "Title\n\nMore"


def test_chunked():
    assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
    assert chunked([], 3) == []


@pytest.mark.parametrize("kwargs", [{"embedding_batch_size": 0}, {"max_concurrent_batches": 0}])
def test_invalid_settings_rejected(embedder, store, kwargs):
    with pytest.raises(ValueError):
        SearchIndexer(embedder, store, make_source(), **kwargs)


@pytest.mark.asyncio
async def test_sync_indexes_everything(embedder, store, clock, metrics):
    """A clean sync writes every PR and work item."""
    indexer = make_indexer(embedder, store, make_source(), clock, metrics)

    stats = await indexer.sync_project("org", "proj")

    assert stats.prs_indexed == 3
    assert stats.work_items_indexed == 5
    assert stats.total_indexed == 8
    assert stats.errors == 0
    assert await store.count(SearchSource.PR) == 3
    assert await store.count(SearchSource.WORK_ITEM) == 5


@pytest.mark.asyncio
async def test_source_ids(embedder, store, clock, metrics):
    """PR and work item keys follow their source id formats."""
    indexer = make_indexer(embedder, store, make_source(1, 1), clock, metrics)
    await indexer.sync_project("org", "proj")

    pr = await store.get_document(SearchSource.PR, "org/proj/repo/1")
    wi = await store.get_document(SearchSource.WORK_ITEM, "org/proj/1")

    assert pr is not None and pr.external_id == 1
    assert pr.repo_name == "repo"
    assert pr.priority is None
    assert wi is not None and wi.item_type == "Bug"
    assert wi.is_draft is False
    assert wi.organization == "org"


@pytest.mark.asyncio
async def test_embeds_in_batches(embedder, store, clock, metrics):
    """One embed_batch call per batch and no single-text calls."""
    source = make_source(pr_count=7, wi_count=10)
    indexer = make_indexer(embedder, store, source, clock, metrics, embedding_batch_size=3)

    await indexer.sync_project("org", "proj")

    assert len(embedder.batch_calls) == math.ceil(7 / 3) + math.ceil(10 / 3)
    assert all(len(batch) <= 3 for batch in embedder.batch_calls)
    assert embedder.embed_calls == []


@pytest.mark.asyncio
async def test_embedding_text_and_vector_stored(embedder, store, clock, metrics):
    source = StaticDocumentSource(
        pull_requests=[
            make_pull_request(
                9, "Fix login", description="Session expired", additional_content="reviewer: lgtm"
            )
        ]
    )
    indexer = make_indexer(embedder, store, source, clock, metrics)

    await indexer.sync_project("org", "proj")

    expected_text = "Fix login\n\nSession expired\n\nreviewer: lgtm"
    assert embedder.batch_calls == [[expected_text]]
    stored = await store.get_document(SearchSource.PR, "org/proj/repo/9")
    assert stored.embedding == embedder.vector_for(expected_text)
    assert stored.content == "reviewer: lgtm"


@pytest.mark.asyncio
async def test_sync_is_idempotent(embedder, store, clock, metrics):
    """Re-syncing unchanged input keeps one document per key."""
    indexer = make_indexer(embedder, store, make_source(), clock, metrics)

    await indexer.sync_project("org", "proj")
    clock.advance(hours=1)
    stats = await indexer.sync_project("org", "proj")

    assert stats.total_indexed == 8
    assert await store.count() == 8


@pytest.mark.asyncio
async def test_stale_documents_removed(embedder, store, clock, metrics):
    """Documents not refreshed within the threshold are deleted."""
    stale = make_document("org/proj/999", "Gone upstream")
    await store.upsert_document(stale)
    clock.advance(hours=49)

    indexer = make_indexer(embedder, store, make_source(), clock, metrics)
    stats = await indexer.sync_project("org", "proj")

    assert stats.documents_deleted == 1
    assert await store.get_document(SearchSource.WORK_ITEM, "org/proj/999") is None
    assert await store.count() == 8


@pytest.mark.asyncio
async def test_recent_documents_survive_cleanup(embedder, store, clock, metrics):
    await store.upsert_document(make_document("org/proj/999", "Not in source"))
    clock.advance(hours=47)

    indexer = make_indexer(embedder, store, make_source(), clock, metrics)
    stats = await indexer.sync_project("org", "proj")

    assert stats.documents_deleted == 0
    assert await store.get_document(SearchSource.WORK_ITEM, "org/proj/999") is not None


@pytest.mark.asyncio
async def test_cleanup_disabled(embedder, store, clock, metrics):
    await store.upsert_document(make_document("org/proj/999", "Gone upstream"))
    clock.advance(hours=100)

    indexer = make_indexer(embedder, store, make_source(), clock, metrics, cleanup_stale=False)
    stats = await indexer.sync_project("org", "proj")

    assert stats.documents_deleted == 0
    assert await store.count() == 9


@pytest.mark.asyncio
async def test_cutoff_anchored_at_sync_start(embedder, clock, metrics):
    """Documents written during a long sync are never treated as stale."""

    class SlowClockSource(StaticDocumentSource):
        async def fetch_work_items(self, org, project, since=None):
            clock.advance(hours=100)
            return await super().fetch_work_items(org, project, since)

    store = InMemoryDocumentStore(clock=clock)
    source = SlowClockSource(
        pull_requests=[make_pull_request(1, "PR")],
        work_items=[make_work_item(1, "WI")],
    )
    indexer = make_indexer(embedder, store, source, clock, metrics, stale_threshold_hours=1)

    stats = await indexer.sync_project("org", "proj")

    assert stats.documents_deleted == 0
    assert await store.count() == 2


@pytest.mark.asyncio
async def test_pull_request_failure_does_not_stop_work_items(embedder, store, clock, metrics):
    """A failing stage is counted and the next stage still runs."""
    source = FailingPullRequestSource(work_items=[make_work_item(1, "WI")])
    indexer = make_indexer(embedder, store, source, clock, metrics)

    stats = await indexer.sync_project("org", "proj")

    assert stats.prs_indexed == 0
    assert stats.work_items_indexed == 1
    assert stats.errors == 1
    assert 'toki_index_sync_errors_total{stage="pull_requests"} 1.0' in metrics.get_metrics()


@pytest.mark.asyncio
async def test_failed_batch_skips_remaining_batches(store, clock, metrics):
    """After a batch fails the rest of that stage is skipped."""
    embedder = FakeEmbedder(fail_on_batch=2)
    source = make_source(pr_count=5, wi_count=2)
    indexer = make_indexer(embedder, store, source, clock, metrics, embedding_batch_size=2)

    stats = await indexer.sync_project("org", "proj")

    # PR batches: [1,2] ok, [3,4] fails, [5] skipped; WI batch runs
    assert stats.prs_indexed == 2
    assert stats.work_items_indexed == 2
    assert stats.errors == 1
    assert len(embedder.batch_calls) == 3
    assert await store.count(SearchSource.PR) == 2


@pytest.mark.asyncio
async def test_embedder_down_counts_both_stages(store, clock, metrics):
    indexer = make_indexer(FakeEmbedder(fail=True), store, make_source(), clock, metrics)

    stats = await indexer.sync_project("org", "proj")

    assert stats.total_indexed == 0
    assert stats.errors == 2
    assert await store.count() == 0


@pytest.mark.asyncio
async def test_embedding_count_mismatch_is_an_error(store, clock, metrics):
    indexer = make_indexer(ShortEmbedder(), store, make_source(2, 0), clock, metrics)

    stats = await indexer.sync_project("org", "proj")

    assert stats.prs_indexed == 0
    assert stats.errors == 1
    assert await store.count() == 0


@pytest.mark.asyncio
async def test_cleanup_failure_is_counted(embedder, clock, metrics):
    store = CleanupFailingStore(clock=clock)
    indexer = make_indexer(embedder, store, make_source(), clock, metrics)

    stats = await indexer.sync_project("org", "proj")

    assert stats.total_indexed == 8
    assert stats.errors == 1


@pytest.mark.asyncio
async def test_concurrent_batches(store, clock, metrics):
    """Several batches may be in flight at once without losing documents."""
    embedder = ConcurrencyTrackingEmbedder()
    source = make_source(pr_count=12, wi_count=0)
    indexer = make_indexer(
        embedder, store, source, clock, metrics, embedding_batch_size=2, max_concurrent_batches=3
    )

    stats = await indexer.sync_project("org", "proj")

    assert stats.prs_indexed == 12
    assert await store.count() == 12
    assert 1 < embedder.peak <= 3


@pytest.mark.asyncio
async def test_sequential_batches_by_default(store, clock, metrics):
    embedder = ConcurrencyTrackingEmbedder()
    indexer = make_indexer(embedder, store, make_source(6, 0), clock, metrics, embedding_batch_size=2)

    await indexer.sync_project("org", "proj")

    assert embedder.peak == 1


@pytest.mark.asyncio
async def test_only_requested_project_is_synced(embedder, store, clock, metrics):
    source = StaticDocumentSource(
        pull_requests=[make_pull_request(1, "Ours"), make_pull_request(2, "Theirs", project="other")],
    )
    indexer = make_indexer(embedder, store, source, clock, metrics)

    stats = await indexer.sync_project("org", "proj")

    assert stats.prs_indexed == 1
    assert await store.get_document(SearchSource.PR, "org/other/repo/2") is None


@pytest.mark.asyncio
async def test_static_source_since_filter():
    source = StaticDocumentSource(
        work_items=[
            make_work_item(1, "Old", updated_at=BASE_TIME - timedelta(days=30)),
            make_work_item(2, "New", updated_at=BASE_TIME),
        ]
    )
    items = await source.fetch_work_items("org", "proj", since=BASE_TIME - timedelta(days=1))
    assert [wi.id for wi in items] == [2]


def test_from_config(embedder, store, metrics):
    config = SimpleNamespace(
        toki_indexer_embedding_batch_size=25,
        toki_indexer_stale_threshold_hours=12,
        toki_indexer_cleanup_stale=False,
        toki_indexer_max_concurrent_batches=4,
    )
    indexer = SearchIndexer.from_config(
        config, embedder, store, make_source(), metrics_collector=metrics
    )

    assert indexer.embedding_batch_size == 25
    assert indexer.stale_threshold_hours == 12
    assert indexer.cleanup_stale is False
    assert indexer.max_concurrent_batches == 4
