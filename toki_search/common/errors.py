"""Base exceptions shared across the search subsystem.

Component-specific errors (``EmbeddingError``, ``DocumentStoreError``,
``DocumentSourceError``) live next to the interfaces that raise them and all
derive from ``SearchError`` so callers can isolate failures with one clause.
"""


class SearchError(Exception):
    """Base exception for search and indexing operations."""
    pass


class ConfigurationError(SearchError):
    """Raised when a component cannot be built from its configuration."""
    pass
