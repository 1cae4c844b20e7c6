"""Base embedder interface.

Defines the contract the indexer and the search service depend on,
independent of the embedding provider. Vectors are plain ``List[float]`` so
they can be handed to any store without conversion.
"""

from abc import ABC, abstractmethod
from typing import List, Sequence

from toki_search.common.errors import SearchError


class EmbeddingError(SearchError):
    """Raised when an embedding request fails or returns unusable data."""
    pass


class Embedder(ABC):
    """Abstract base class for embedders.

    Implementations must return exactly one vector of ``dimensions`` floats
    per input text, in input order.
    """

    model_name: str = "unknown"

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Length of every vector this embedder produces."""
        pass

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Embed a single text."""
        pass

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed several texts, preserving order.

        The default issues one ``embed`` call per text; providers with a
        batch endpoint should override it.
        """
        return [await self.embed(text) for text in texts]

    async def close(self) -> None:
        """Release any held resources."""
        pass
