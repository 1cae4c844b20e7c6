"""Document stores for indexed PRs and work items.

Primary components:
- ``base``: abstract ``DocumentStore`` interface and its exceptions.
- ``lexical``: tokenizer and BM25 scoring used by the in-memory backend.
- ``memory``: in-process store implementing the full hybrid ranking contract.
- ``pgvector``: PostgreSQL store using full-text search and pgvector.
- ``factory``: helpers to construct a store from typed config.

Guidance:
- Both backends share ``search.fusion`` so hybrid rankings agree across them.
"""
