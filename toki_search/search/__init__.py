"""Query-side components.

Primary components:
- ``models``: dataclasses for documents, filters, results, and sync stats.
- ``query_parser``: heuristic extraction of filters from free text.
- ``fusion``: reciprocal rank fusion and deterministic ranking helpers.
- ``service``: ``SearchService``, the entry point for queries and stats.
"""
