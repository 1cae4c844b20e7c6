"""Operational scripts for the search index.

Scripts include:
- ``init_search_db.py``: create the ``search_documents`` schema in PostgreSQL.
- ``search_index.py``: run a search or print index counts from the command line.
"""
