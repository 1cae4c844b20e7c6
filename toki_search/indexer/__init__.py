"""Index maintenance.

Primary components:
- ``source``: ``DocumentSource`` interface for external trackers.
- ``indexer``: ``SearchIndexer`` syncing one project into a document store.
- ``worker``: periodic loop running the indexer over configured projects.
"""
