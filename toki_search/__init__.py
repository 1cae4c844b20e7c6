"""Hybrid search and indexing for pull requests and work items.

Subpackages:
- ``toki_search.common``: configuration, logging, metrics, tracing, and errors.
- ``toki_search.search``: data model, query parser, rank fusion, and the search service.
- ``toki_search.document_store``: document store interface plus in-memory and pgvector backends.
- ``toki_search.embedding``: embedder interface and the Gemini client.
- ``toki_search.indexer``: document sources, the batch indexer, and the periodic worker.

Usage:
- ``SearchService`` answers queries; ``SearchIndexer`` keeps the store in sync.
"""

__version__ = "0.1.0"
