"""Distributed tracing configuration for the search components.

Wraps OpenTelemetry setup with an OTLP/HTTP exporter and provides small
conveniences for spans and scoped context managers used by the search
service, the indexer, and the document stores. When ``configure_tracing`` is
never called the global no-op provider is used and spans cost nothing.
"""

import os
from typing import Any, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
import structlog

logger = structlog.get_logger("tracing")


def configure_tracing(
    service_name: str,
    otlp_endpoint: str = "http://localhost:4318/v1/traces",
) -> Optional[trace.Tracer]:
    """Configure distributed tracing for a service.

    Parameters
    - service_name: Logical service identifier used in trace resources
    - otlp_endpoint: OTLP/HTTP collector endpoint for exporting spans

    Returns
    - A tracer instance for ad-hoc span creation, or ``None`` on failure
    """

    try:
        tracer_provider = TracerProvider(
            resource=Resource.create({
                "service.name": service_name,
                "service.version": "0.1.0",
                "deployment.environment": os.getenv("TOKI_ENV", "local")
            })
        )

        span_processor = BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint))
        tracer_provider.add_span_processor(span_processor)

        trace.set_tracer_provider(tracer_provider)
        tracer = trace.get_tracer(service_name)

        logger.info(
            "Distributed tracing configured",
            service_name=service_name,
            otlp_endpoint=otlp_endpoint,
        )

        return tracer

    except Exception as e:
        logger.error("Failed to configure tracing", error=str(e))
        return None


def configure_tracing_from_config(config: Any) -> Optional[trace.Tracer]:
    """Configure tracing from a ``BaseConfig`` when ``toki_tracing_enabled`` is set."""
    if not config.toki_tracing_enabled:
        return None
    return configure_tracing(config.toki_otel_service_name, config.toki_otel_endpoint)


def create_span(
    tracer: trace.Tracer,
    operation_name: str,
    **attributes
) -> trace.Span:
    """Create a new span with attributes."""
    span = tracer.start_span(operation_name)

    for key, value in attributes.items():
        span.set_attribute(key, str(value))

    return span


class TracingContext:
    """Context manager for tracing operations.

    Starts a span on entry and ensures it ends, recording success or error.
    """

    def __init__(self, tracer: trace.Tracer, operation_name: str, **attributes):
        self.tracer = tracer
        self.operation_name = operation_name
        self.attributes = attributes
        self.span: Optional[trace.Span] = None

    def __enter__(self):
        self.span = create_span(self.tracer, self.operation_name, **self.attributes)
        return self.span

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.span:
            if exc_type is not None:
                self.span.record_exception(exc_val)
                self.span.set_status(
                    trace.Status(trace.StatusCode.ERROR, f"{exc_type.__name__}: {exc_val}")
                )
            else:
                self.span.set_status(trace.Status(trace.StatusCode.OK))

            self.span.end()
        return False


class SearchTracer:
    """Search-specific tracing utilities.

    Small helpers so span names and attributes remain consistent across the
    search service, the indexer, and the stores.
    """

    def __init__(self, service_name: str):
        self.service_name = service_name
        self.tracer = trace.get_tracer(service_name)

    def trace_search_query(self, mode: str, limit: int, **attributes):
        """Trace a search request."""
        return TracingContext(
            self.tracer,
            "search.query",
            mode=mode,
            limit=limit,
            **attributes
        )

    def trace_embedding_generation(self, model_name: str, batch_size: int, **attributes):
        """Trace an embedding request."""
        return TracingContext(
            self.tracer,
            "embedding.generation",
            model_name=model_name,
            batch_size=batch_size,
            **attributes
        )

    def trace_index_sync(self, organization: str, project: str, **attributes):
        """Trace one project sync."""
        return TracingContext(
            self.tracer,
            "indexer.sync_project",
            organization=organization,
            project=project,
            **attributes
        )

    def trace_store_operation(self, operation: str, backend: str, count: int = 1, **attributes):
        """Trace a document store operation."""
        return TracingContext(
            self.tracer,
            "document_store.operation",
            operation=operation,
            backend=backend,
            count=count,
            **attributes
        )


def get_search_tracer(service_name: str) -> SearchTracer:
    """Get a search tracer for a service."""
    return SearchTracer(service_name)
