"""Gemini embedder over the Generative Language REST API.

Single texts go to ``models/{model}:embedContent`` and batches to
``models/{model}:batchEmbedContents``. The requested ``outputDimensionality``
matches the store's vector column so no truncation happens client-side.

Empty strings are never sent: they map to an all-zero vector, and a batch
only carries its non-empty texts.

Calls are bounded by the client timeout. Failures raise ``EmbeddingError``
and are not retried.
"""

import time
from typing import Any, Dict, List, Optional, Sequence

import httpx
import structlog

from toki_search.common.metrics import MetricsCollector, get_metrics_collector
from toki_search.common.tracing import SearchTracer, get_search_tracer

from .base import Embedder, EmbeddingError

logger = structlog.get_logger("embedding.gemini")

GEMINI_MODEL = "gemini-embedding-001"
GEMINI_DIMENSIONS = 1536
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class GeminiEmbedder(Embedder):
    """Embedder backed by Google's Gemini embedding models."""

    def __init__(
        self,
        api_key: str,
        model: str = GEMINI_MODEL,
        dimensions: int = GEMINI_DIMENSIONS,
        task_type: str = "RETRIEVAL_QUERY",
        timeout: float = 30.0,
        base_url: str = GEMINI_BASE_URL,
        client: Optional[httpx.AsyncClient] = None,
        metrics_collector: Optional[MetricsCollector] = None,
        tracer: Optional[SearchTracer] = None,
    ):
        """Configure the Gemini client.

        Parameters
        - api_key: Generative Language API key
        - model: Embedding model name without the ``models/`` prefix
        - dimensions: Requested output dimensionality
        - task_type: Gemini task type sent with every request
        - timeout: Seconds allowed per HTTP request
        - base_url: API root, overridable for proxies and tests
        - client: Optional preconfigured ``httpx.AsyncClient``
        """
        self.api_key = api_key
        self.model_name = model
        self._dimensions = dimensions
        self.task_type = task_type
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.metrics_collector = metrics_collector or get_metrics_collector("toki-search")
        self.tracer = tracer or get_search_tracer("toki-search")

    @classmethod
    def from_config(cls, config: Any, **kwargs: Any) -> "GeminiEmbedder":
        """Build from an ``EmbeddingConfig``."""
        return cls(
            api_key=config.gemini_api_key,
            model=config.toki_embedding_model,
            dimensions=config.toki_vector_dimension,
            task_type=config.toki_embedding_task_type,
            timeout=config.toki_embedding_timeout_seconds,
            base_url=config.toki_embedding_base_url,
            **kwargs
        )

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def _zero_vector(self) -> List[float]:
        return [0.0] * self._dimensions

    def _request_body(self, text: str) -> Dict[str, Any]:
        return {
            "model": f"models/{self.model_name}",
            "content": {"parts": [{"text": text}]},
            "taskType": self.task_type,
            "outputDimensionality": self._dimensions,
        }

    def _parse_values(self, embedding: Any) -> List[float]:
        values = embedding.get("values") if isinstance(embedding, dict) else None
        if not values:
            raise EmbeddingError("No embedding in response")
        if len(values) != self._dimensions:
            raise EmbeddingError(
                f"Expected {self._dimensions} dimensions, got {len(values)}"
            )
        return [float(v) for v in values]

    async def _post(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/models/{self.model_name}:{method}"
        try:
            response = await self.client.post(
                url,
                json=payload,
                headers={"x-goog-api-key": self.api_key},
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "Gemini embedding request failed",
                method=method,
                status=e.response.status_code,
                error=str(e),
            )
            raise EmbeddingError(
                f"Gemini returned status {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Gemini embedding request failed", method=method, error=str(e))
            raise EmbeddingError(f"Gemini request failed: {e}") from e

    async def embed(self, text: str) -> List[float]:
        """Embed one text; empty text yields a zero vector."""
        if not text:
            return self._zero_vector()

        start_time = time.time()
        with self.tracer.trace_embedding_generation(self.model_name, 1):
            data = await self._post("embedContent", self._request_body(text))
        self.metrics_collector.record_embedding(
            self.model_name, "single", time.time() - start_time
        )

        return self._parse_values(data.get("embedding"))

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed texts in one request, sending only the non-empty ones."""
        if not texts:
            return []

        results = [self._zero_vector() for _ in texts]
        non_empty = [(index, text) for index, text in enumerate(texts) if text]
        if not non_empty:
            return results

        payload = {"requests": [self._request_body(text) for _, text in non_empty]}

        start_time = time.time()
        with self.tracer.trace_embedding_generation(self.model_name, len(non_empty)):
            data = await self._post("batchEmbedContents", payload)
        self.metrics_collector.record_embedding(
            self.model_name, "batch", time.time() - start_time
        )

        embeddings = data.get("embeddings") or []
        if len(embeddings) != len(non_empty):
            raise EmbeddingError(
                f"Expected {len(non_empty)} embeddings, got {len(embeddings)}"
            )

        for (index, _), embedding in zip(non_empty, embeddings):
            results[index] = self._parse_values(embedding)

        logger.debug("Generated embeddings", model=self.model_name, count=len(non_empty))
        return results

    async def close(self) -> None:
        """Close the HTTP client if this embedder created it."""
        if self._owns_client:
            await self.client.aclose()
