"""Shared fixtures and fakes for the search test suite."""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

import pytest
from prometheus_client import CollectorRegistry

from toki_search.common.metrics import MetricsCollector
from toki_search.document_store.memory import InMemoryDocumentStore
from toki_search.embedding.base import Embedder, EmbeddingError
from toki_search.search.models import (
    PullRequestDocument,
    SearchDocument,
    SearchSource,
    WorkItemDocument,
)

BASE_TIME = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

KEYWORD_AXES = ("auth", "login", "payment")


class FakeEmbedder(Embedder):
    """Deterministic embedder that counts its calls.

    Vectors have one axis per keyword in ``KEYWORD_AXES`` plus a small bias
    so every text gets a non-zero vector.
    """

    model_name = "fake"

    def __init__(self, fail: bool = False, fail_on_batch: Optional[int] = None):
        self.fail = fail
        self.fail_on_batch = fail_on_batch
        self.embed_calls: List[str] = []
        self.batch_calls: List[List[str]] = []

    @property
    def dimensions(self) -> int:
        return len(KEYWORD_AXES) + 1

    def vector_for(self, text: str) -> List[float]:
        lowered = text.lower()
        return [float(lowered.count(keyword)) for keyword in KEYWORD_AXES] + [0.1]

    async def embed(self, text: str) -> List[float]:
        self.embed_calls.append(text)
        if self.fail:
            raise EmbeddingError("embedder unavailable")
        return self.vector_for(text)

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        self.batch_calls.append(list(texts))
        if self.fail or self.fail_on_batch == len(self.batch_calls):
            raise EmbeddingError("embedder unavailable")
        return [self.vector_for(text) for text in texts]


class MutableClock:
    """Clock whose current time can be moved by tests."""

    def __init__(self, now: datetime = BASE_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def make_document(
    source_id: str,
    title: str,
    source_type: SearchSource = SearchSource.WORK_ITEM,
    **overrides,
) -> SearchDocument:
    """Build a ``SearchDocument`` with sensible defaults."""
    values: Dict = dict(
        source_type=source_type,
        source_id=source_id,
        external_id=abs(hash(source_id)) % 100000,
        title=title,
        organization="org",
        project="Lerums Djursjukhus",
        status="active",
        created_at=BASE_TIME - timedelta(days=10),
        updated_at=BASE_TIME - timedelta(days=1),
        url=f"https://example.com/{source_id}",
    )
    values.update(overrides)
    return SearchDocument(**values)


def make_pull_request(pr_id: int, title: str, **overrides) -> PullRequestDocument:
    values: Dict = dict(
        id=pr_id,
        title=title,
        project="proj",
        repo_name="repo",
        status="active",
        created_at=BASE_TIME - timedelta(days=5),
        updated_at=BASE_TIME - timedelta(days=1),
        url=f"https://example.com/pr/{pr_id}",
    )
    values.update(overrides)
    return PullRequestDocument(**values)


def make_work_item(wi_id: int, title: str, **overrides) -> WorkItemDocument:
    values: Dict = dict(
        id=wi_id,
        title=title,
        project="proj",
        status="Active",
        item_type="Bug",
        created_at=BASE_TIME - timedelta(days=5),
        updated_at=BASE_TIME - timedelta(days=1),
        url=f"https://example.com/wi/{wi_id}",
    )
    values.update(overrides)
    return WorkItemDocument(**values)


@pytest.fixture
def metrics():
    """Metrics collector on an isolated registry."""
    return MetricsCollector("test-service", registry=CollectorRegistry())


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def clock():
    return MutableClock()


@pytest.fixture
def store(clock):
    return InMemoryDocumentStore(clock=clock)
