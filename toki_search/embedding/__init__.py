"""Embedders that turn text into fixed-size vectors.

Primary components:
- ``base``: abstract ``Embedder`` interface and ``EmbeddingError``.
- ``gemini``: Google Gemini REST client built on httpx.
- ``factory``: construct an embedder from ``EmbeddingConfig``.
"""
