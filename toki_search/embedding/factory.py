"""Embedder factory.

Centralizes creation of concrete ``Embedder`` backends so entrypoints only
deal with configuration.
"""

from enum import Enum
from typing import Any

import structlog

from toki_search.common.errors import ConfigurationError

from .base import Embedder
from .gemini import GeminiEmbedder

logger = structlog.get_logger("embedding.factory")


class EmbedderType(Enum):
    """Supported embedder backends."""
    GEMINI = "gemini"


def create_embedder_from_config(config: Any, **kwargs: Any) -> Embedder:
    """Create an embedder from an ``EmbeddingConfig``.

    Raises ``ConfigurationError`` for unknown backends or a missing API key.
    """
    try:
        embedder_type = EmbedderType(config.toki_embedding_backend)
    except ValueError:
        raise ConfigurationError(
            f"Unsupported embedder backend: {config.toki_embedding_backend}"
        )

    if embedder_type == EmbedderType.GEMINI:
        if not config.gemini_api_key:
            raise ConfigurationError("GEMINI_API_KEY is required for the gemini embedder")
        logger.info(
            "Creating Gemini embedder",
            model=config.toki_embedding_model,
            dimensions=config.toki_vector_dimension,
        )
        return GeminiEmbedder.from_config(config, **kwargs)

    raise ConfigurationError(f"Unsupported embedder backend: {embedder_type}")
