"""Integration tests for the PostgreSQL document store."""

import os
from datetime import timedelta

import pytest
import pytest_asyncio

from toki_search.document_store.pgvector import PgVectorDocumentStore
from toki_search.indexer.indexer import SearchIndexer
from toki_search.indexer.source import StaticDocumentSource
from toki_search.search.models import ParsedQuery, SearchFilters, SearchSource
from toki_search.search.service import SearchService

from tests.conftest import BASE_TIME, FakeEmbedder, make_document, make_pull_request, make_work_item

TEST_DSN = os.getenv("TOKI_SEARCH_TEST_DSN")

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not TEST_DSN, reason="TOKI_SEARCH_TEST_DSN not set"),
]


@pytest_asyncio.fixture
async def pg_store(metrics):
    """Store on a freshly created table; the database must be disposable."""
    store = PgVectorDocumentStore(TEST_DSN, pool_size=2, vector_dimension=4, metrics_collector=metrics)
    await store._execute_query("DROP TABLE IF EXISTS search_documents")
    await store.ensure_schema()
    yield store
    await store.close()


@pytest.mark.asyncio
async def test_health_check(pg_store):
    assert await pg_store.health_check() is True


@pytest.mark.asyncio
async def test_upsert_is_idempotent(pg_store):
    first = await pg_store.upsert_document(make_document("org/p/1", "Old title"))
    second = await pg_store.upsert_document(make_document("org/p/1", "New title"))

    assert first == second
    assert await pg_store.count() == 1
    stored = await pg_store.get_document(SearchSource.WORK_ITEM, "org/p/1")
    assert stored.title == "New title"
    assert stored.indexed_at is not None


@pytest.mark.asyncio
async def test_lexical_search_and_filters(pg_store):
    await pg_store.upsert_documents([
        make_document("org/p/1", "Authentication fails", status="Closed", item_type="Bug"),
        make_document("org/p/2", "Authentication audit", status="Active", item_type="Task"),
        make_document("org/p/3", "Payment timeout", status="Closed", item_type="Bug"),
    ])

    results = await pg_store.search(
        ParsedQuery("authentication", SearchFilters(status=["closed"])), None, 10
    )
    assert [r.source_id for r in results] == ["org/p/1"]

    everything = await pg_store.search(ParsedQuery(""), None, 10)
    assert [r.source_id for r in everything] == ["org/p/1", "org/p/2", "org/p/3"]
    assert all(r.score == 0.0 for r in everything)


@pytest.mark.asyncio
async def test_hybrid_search_fuses_pools(pg_store):
    await pg_store.upsert_documents([
        make_document("org/p/a", "Deadlock in scheduler"),
        make_document("org/p/b", "Unrelated", embedding=[1.0, 0.0, 0.0, 0.1]),
    ])

    results = await pg_store.search(ParsedQuery("deadlock"), [1.0, 0.0, 0.0, 0.1], 10)

    assert [r.source_id for r in results] == ["org/p/a", "org/p/b"]
    assert results[0].score == pytest.approx(1 / 61)
    assert results[1].score == pytest.approx(1 / 61)


@pytest.mark.asyncio
async def test_delete_operations(pg_store):
    await pg_store.upsert_document(make_document("org/p/1", "Title"))

    assert await pg_store.delete_document(SearchSource.WORK_ITEM, "org/p/1") is True
    assert await pg_store.delete_document(SearchSource.WORK_ITEM, "org/p/1") is False

    await pg_store.upsert_document(make_document("org/p/2", "Title"))
    stored = await pg_store.get_document(SearchSource.WORK_ITEM, "org/p/2")
    assert await pg_store.delete_stale_documents(stored.indexed_at - timedelta(seconds=1)) == 0
    assert await pg_store.delete_stale_documents(stored.indexed_at + timedelta(seconds=1)) == 1


@pytest.mark.asyncio
async def test_index_and_search_end_to_end(pg_store, metrics):
    embedder = FakeEmbedder()
    source = StaticDocumentSource(
        pull_requests=[make_pull_request(1, "Fix login redirect")],
        work_items=[
            make_work_item(7, "Login fails after password reset", priority=1),
            make_work_item(8, "Payment page slow", item_type="Task"),
        ],
    )
    indexer = SearchIndexer(
        embedder, pg_store, source, clock=lambda: BASE_TIME, metrics_collector=metrics
    )
    stats = await indexer.sync_project("org", "proj")
    assert stats.total_indexed == 3
    assert stats.errors == 0

    service = SearchService(embedder, pg_store, metrics_collector=metrics)
    results = await service.search("priority 1 bugs login")

    assert [r.source_id for r in results] == ["org/proj/7"]
