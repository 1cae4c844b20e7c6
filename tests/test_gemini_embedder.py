"""Tests for the Gemini embedder against a mocked HTTP transport."""

import json
from types import SimpleNamespace

import httpx
import pytest

from toki_search.common.errors import ConfigurationError
from toki_search.embedding.base import EmbeddingError
from toki_search.embedding.factory import create_embedder_from_config
from toki_search.embedding.gemini import GeminiEmbedder

DIMS = 3


class GeminiStub:
    """Records requests and answers like the Generative Language API."""

    def __init__(self, status_code=200, vector=None, drop_last=False):
        self.status_code = status_code
        self.vector = vector or [0.1, 0.2, 0.3]
        self.drop_last = drop_last
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append((request, body))

        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": {"message": "boom"}})

        if request.url.path.endswith(":batchEmbedContents"):
            embeddings = [{"values": self.vector} for _ in body["requests"]]
            if self.drop_last:
                embeddings = embeddings[:-1]
            return httpx.Response(200, json={"embeddings": embeddings})

        return httpx.Response(200, json={"embedding": {"values": self.vector}})


def make_embedder(stub, metrics, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(stub))
    return GeminiEmbedder(
        api_key="test-key",
        dimensions=DIMS,
        client=client,
        metrics_collector=metrics,
        **kwargs
    )


@pytest.mark.asyncio
async def test_embed_request_shape(metrics):
    stub = GeminiStub()
    embedder = make_embedder(stub, metrics, task_type="RETRIEVAL_DOCUMENT")

    vector = await embedder.embed("login fails")

    assert vector == [0.1, 0.2, 0.3]
    request, body = stub.requests[0]
    assert request.method == "POST"
    assert str(request.url) == (
        "https://generativelanguage.googleapis.com/v1beta/models/gemini-embedding-001:embedContent"
    )
    assert request.headers["x-goog-api-key"] == "test-key"
    assert body == {
        "model": "models/gemini-embedding-001",
        "content": {"parts": [{"text": "login fails"}]},
        "taskType": "RETRIEVAL_DOCUMENT",
        "outputDimensionality": DIMS,
    }


@pytest.mark.asyncio
async def test_empty_text_is_not_sent(metrics):
    stub = GeminiStub()
    embedder = make_embedder(stub, metrics)

    assert await embedder.embed("") == [0.0] * DIMS
    assert stub.requests == []


@pytest.mark.asyncio
async def test_batch_skips_empty_texts(metrics):
    """Only non-empty texts are sent and results keep input order."""
    stub = GeminiStub()
    embedder = make_embedder(stub, metrics)

    vectors = await embedder.embed_batch(["first", "", "third"])

    assert vectors == [[0.1, 0.2, 0.3], [0.0] * DIMS, [0.1, 0.2, 0.3]]
    request, body = stub.requests[0]
    assert request.url.path.endswith("/models/gemini-embedding-001:batchEmbedContents")
    assert [r["content"]["parts"][0]["text"] for r in body["requests"]] == ["first", "third"]


@pytest.mark.asyncio
async def test_batch_of_empty_texts_makes_no_request(metrics):
    stub = GeminiStub()
    embedder = make_embedder(stub, metrics)

    assert await embedder.embed_batch([]) == []
    assert await embedder.embed_batch(["", ""]) == [[0.0] * DIMS, [0.0] * DIMS]
    assert stub.requests == []


@pytest.mark.asyncio
async def test_http_error_raises(metrics):
    embedder = make_embedder(GeminiStub(status_code=500), metrics)
    with pytest.raises(EmbeddingError, match="500"):
        await embedder.embed("login")


@pytest.mark.asyncio
async def test_transport_error_raises(metrics):
    def broken(request):
        raise httpx.ConnectError("connection refused", request=request)

    embedder = make_embedder(broken, metrics)
    with pytest.raises(EmbeddingError):
        await embedder.embed_batch(["login"])


@pytest.mark.asyncio
async def test_batch_count_mismatch_raises(metrics):
    embedder = make_embedder(GeminiStub(drop_last=True), metrics)
    with pytest.raises(EmbeddingError):
        await embedder.embed_batch(["a", "b"])


@pytest.mark.asyncio
async def test_dimension_mismatch_raises(metrics):
    embedder = make_embedder(GeminiStub(vector=[0.1, 0.2]), metrics)
    with pytest.raises(EmbeddingError, match="dimensions"):
        await embedder.embed("login")


@pytest.mark.asyncio
async def test_missing_values_raises(metrics):
    def empty(request):
        return httpx.Response(200, json={})

    embedder = make_embedder(empty, metrics)
    with pytest.raises(EmbeddingError):
        await embedder.embed("login")


@pytest.mark.asyncio
async def test_records_embedding_metrics(metrics):
    embedder = make_embedder(GeminiStub(), metrics)
    await embedder.embed("login")
    await embedder.embed_batch(["a", "b"])

    output = metrics.get_metrics()
    assert 'toki_embedding_requests_total{model_name="gemini-embedding-001",kind="single"} 1.0' in output
    assert 'toki_embedding_requests_total{model_name="gemini-embedding-001",kind="batch"} 1.0' in output


def embedding_config(**overrides):
    values = dict(
        toki_embedding_backend="gemini",
        gemini_api_key="key",
        toki_embedding_model="gemini-embedding-001",
        toki_vector_dimension=768,
        toki_embedding_task_type="RETRIEVAL_QUERY",
        toki_embedding_timeout_seconds=5.0,
        toki_embedding_base_url="https://proxy.internal/v1beta/",
    )
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.mark.asyncio
async def test_factory_builds_gemini(metrics):
    embedder = create_embedder_from_config(embedding_config(), metrics_collector=metrics)

    assert isinstance(embedder, GeminiEmbedder)
    assert embedder.dimensions == 768
    assert embedder.base_url == "https://proxy.internal/v1beta"
    await embedder.close()


def test_factory_requires_api_key():
    with pytest.raises(ConfigurationError):
        create_embedder_from_config(embedding_config(gemini_api_key=None))


def test_factory_rejects_unknown_backend():
    with pytest.raises(ConfigurationError):
        create_embedder_from_config(embedding_config(toki_embedding_backend="openai"))
