"""Integration tests against a real PostgreSQL/pgvector database.

Set ``TOKI_SEARCH_TEST_DSN`` to run them; they are skipped otherwise.
"""
