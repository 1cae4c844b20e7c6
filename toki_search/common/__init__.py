"""Common utilities shared by the search and indexer components.

Includes:
- ``config``: Pydantic-based settings read from environment variables.
- ``logging``: structured logging setup with structlog.
- ``metrics``: Prometheus metrics helpers.
- ``tracing``: OpenTelemetry setup and span helpers.
- ``errors``: the ``SearchError`` hierarchy root.

Import pattern:
- from toki_search.common.config import SearchConfig
- from toki_search.common.logging import configure_logging
"""
