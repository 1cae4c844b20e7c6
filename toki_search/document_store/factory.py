"""Document store factory for creating different implementations.

Centralizes creation of concrete ``DocumentStore`` backends so callers don't
depend on implementation details.
"""

from enum import Enum
from typing import Any, Dict

import structlog

from toki_search.common.errors import ConfigurationError

from .base import DocumentStore
from .memory import InMemoryDocumentStore
from .pgvector import PgVectorDocumentStore

logger = structlog.get_logger("document_store.factory")


class DocumentStoreType(Enum):
    """Supported document store types."""
    PGVECTOR = "pgvector"
    MEMORY = "memory"


def create_document_store(store_type: str, config: Dict[str, Any], **kwargs: Any) -> DocumentStore:
    """Create a document store instance.

    Parameters
    - store_type: ``pgvector`` or ``memory``
    - config: Backend-specific parameters (e.g., ``dsn`` for pgvector)
    - kwargs: Additional optional overrides forwarded to the implementation
    """
    try:
        store_type_enum = DocumentStoreType(store_type)
    except ValueError:
        raise ConfigurationError(f"Unsupported document store type: {store_type}")

    if store_type_enum == DocumentStoreType.MEMORY:
        return InMemoryDocumentStore(**kwargs)

    dsn = config.get("dsn")
    if not dsn:
        raise ConfigurationError("pgvector document store requires 'dsn' in config")

    return PgVectorDocumentStore(
        dsn=dsn,
        pool_size=config.get("pool_size", 10),
        command_timeout=config.get("command_timeout", 60),
        vector_dimension=config.get("vector_dimension", 1536),
        **kwargs
    )


def create_document_store_from_config(config: Any, **kwargs: Any) -> DocumentStore:
    """Create a document store from a ``StoreConfig``."""
    logger.info("Creating document store", backend=config.toki_search_backend)
    return create_document_store(
        config.toki_search_backend,
        {
            "dsn": config.toki_search_db_dsn,
            "pool_size": config.toki_search_pool_size,
            "command_timeout": config.toki_search_command_timeout,
            "vector_dimension": config.toki_vector_dimension,
        },
        **kwargs
    )
