"""Metrics collection for the search components.

Provides a thin convenience wrapper around ``prometheus_client`` so the search
service and the indexer record searches, embeddings, and index changes
consistently.

Design notes
- Metrics and labels are predeclared to avoid cardinality explosions
- A single registry is kept per collector (can be injected for tests)
"""

from typing import Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest
import structlog

logger = structlog.get_logger("metrics")


class MetricsCollector:
    """Centralized metrics collection for search components.

    Parameters
    - service_name: Logical name used for scoping
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)

    Exposes typed helpers for common events to keep label sets consistent.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.search_requests = Counter(
            'toki_search_requests_total',
            'Total search requests',
            ['mode'],
            registry=self.registry
        )

        self.search_duration = Histogram(
            'toki_search_duration_seconds',
            'Search duration',
            ['mode'],
            registry=self.registry
        )

        self.search_results = Histogram(
            'toki_search_results_count',
            'Number of results returned per search',
            buckets=(0, 1, 5, 10, 20, 50, 100),
            registry=self.registry
        )

        self.embedding_requests = Counter(
            'toki_embedding_requests_total',
            'Total embedding requests',
            ['model_name', 'kind'],
            registry=self.registry
        )

        self.embedding_duration = Histogram(
            'toki_embedding_duration_seconds',
            'Embedding request duration',
            ['model_name', 'kind'],
            registry=self.registry
        )

        self.documents_indexed = Counter(
            'toki_documents_indexed_total',
            'Documents upserted by the indexer',
            ['source_type'],
            registry=self.registry
        )

        self.sync_errors = Counter(
            'toki_index_sync_errors_total',
            'Indexer stages that failed',
            ['stage'],
            registry=self.registry
        )

        self.stale_documents_deleted = Counter(
            'toki_stale_documents_deleted_total',
            'Documents removed by the staleness sweep',
            registry=self.registry
        )

        self.sync_duration = Histogram(
            'toki_index_sync_duration_seconds',
            'Duration of a project sync',
            registry=self.registry
        )

        self.store_operations = Counter(
            'toki_document_store_operations_total',
            'Total document store operations',
            ['operation', 'backend'],
            registry=self.registry
        )

    def record_search(self, mode: str, duration: float, result_count: int) -> None:
        """Record search metrics.

        ``mode`` is one of ``empty``, ``lexical`` or ``hybrid``.
        """
        self.search_requests.labels(mode=mode).inc()
        self.search_duration.labels(mode=mode).observe(duration)
        self.search_results.observe(result_count)

    def record_embedding(self, model_name: str, kind: str, duration: float) -> None:
        """Record embedding request metrics (``kind`` is ``single`` or ``batch``)."""
        self.embedding_requests.labels(model_name=model_name, kind=kind).inc()
        self.embedding_duration.labels(model_name=model_name, kind=kind).observe(duration)

    def record_documents_indexed(self, source_type: str, count: int) -> None:
        """Record upserted documents for a source type."""
        if count > 0:
            self.documents_indexed.labels(source_type=source_type).inc(count)

    def record_sync_error(self, stage: str) -> None:
        """Record a failed indexer stage."""
        self.sync_errors.labels(stage=stage).inc()

    def record_stale_deleted(self, count: int) -> None:
        """Record documents removed by the staleness sweep."""
        if count > 0:
            self.stale_documents_deleted.inc(count)

    def record_sync_duration(self, duration: float) -> None:
        """Record the wall time of one ``sync_project`` call."""
        self.sync_duration.observe(duration)

    def record_store_operation(self, operation: str, backend: str) -> None:
        """Record document store operation metrics."""
        self.store_operations.labels(operation=operation, backend=backend).inc()

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')


# Global metrics collector instances, one per service name
_metrics_collectors: Dict[str, MetricsCollector] = {}


def get_metrics_collector(service_name: str) -> MetricsCollector:
    """Get or create metrics collector for a service.

    Returns one process-wide collector per service name; each owns its
    registry so repeated calls never register duplicate metrics.
    """
    if service_name not in _metrics_collectors:
        _metrics_collectors[service_name] = MetricsCollector(service_name)
    return _metrics_collectors[service_name]
