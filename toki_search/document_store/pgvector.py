"""PostgreSQL implementation of the document store.

Documents live in the ``search_documents`` table. Lexical relevance comes from
a weighted, generated ``tsvector`` column ranked with ``ts_rank_cd`` over
``websearch_to_tsquery('english', ...)``; vector similarity comes from the
pgvector ``<=>`` cosine distance operator converted to ``1 - distance``.

Hybrid search fetches both candidate pools (each capped and ordered with an
``id`` tie-break) and fuses them in Python with ``ReciprocalRankFusion`` so
the ranking matches the in-memory backend exactly.

Connection management
- A shared asyncpg pool is created on demand and reused across calls
- Queries are funneled through ``_execute_query`` for uniform error handling
"""

import asyncio
import time
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import asyncpg
import numpy as np
import structlog
from asyncpg import Connection, Pool
from pgvector.asyncpg import register_vector

from toki_search.common.metrics import MetricsCollector, get_metrics_collector
from toki_search.common.tracing import SearchTracer, get_search_tracer
from toki_search.search.fusion import CANDIDATE_POOL_SIZE, ReciprocalRankFusion
from toki_search.search.models import (
    ParsedQuery,
    SearchDocument,
    SearchFilters,
    SearchResult,
    SearchSource,
)

from .base import DocumentStore, DocumentStoreConnectionError, DocumentStoreQueryError

logger = structlog.get_logger("document_store.pgvector")

_DB_ERRORS = (OSError, asyncio.TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError)


def schema_statements(vector_dimension: int) -> List[str]:
    """DDL for the ``search_documents`` table, safe to run repeatedly."""
    return [
        "CREATE EXTENSION IF NOT EXISTS vector",
        """
        DO $$ BEGIN
            CREATE TYPE search_source AS ENUM ('pr', 'work_item');
        EXCEPTION
            WHEN duplicate_object THEN NULL;
        END $$
        """,
        f"""
        CREATE TABLE IF NOT EXISTS search_documents (
            id SERIAL PRIMARY KEY,
            source_type search_source NOT NULL,
            source_id TEXT NOT NULL,
            external_id INT NOT NULL,
            title TEXT NOT NULL,
            description TEXT,
            content TEXT,
            organization TEXT NOT NULL,
            project TEXT NOT NULL,
            repo_name TEXT,
            status TEXT NOT NULL,
            author_id TEXT,
            author_name TEXT,
            assigned_to_id TEXT,
            assigned_to_name TEXT,
            priority INT,
            item_type TEXT,
            is_draft BOOLEAN DEFAULT FALSE,
            created_at TIMESTAMPTZ NOT NULL,
            updated_at TIMESTAMPTZ NOT NULL,
            closed_at TIMESTAMPTZ,
            indexed_at TIMESTAMPTZ DEFAULT NOW(),
            search_vector TSVECTOR GENERATED ALWAYS AS (
                setweight(to_tsvector('english', coalesce(title, '')), 'A') ||
                setweight(to_tsvector('english', coalesce(description, '')), 'B') ||
                setweight(to_tsvector('english', coalesce(content, '')), 'C')
            ) STORED,
            embedding vector({int(vector_dimension)}),
            url TEXT NOT NULL,
            parent_id INT,
            linked_work_items INT[],
            UNIQUE (source_type, source_id)
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_search_docs_search_vector ON search_documents USING GIN(search_vector)",
        "CREATE INDEX IF NOT EXISTS idx_search_docs_embedding ON search_documents USING hnsw(embedding vector_cosine_ops)",
        "CREATE INDEX IF NOT EXISTS idx_search_docs_org_project ON search_documents(organization, project)",
        "CREATE INDEX IF NOT EXISTS idx_search_docs_source_type ON search_documents(source_type)",
        "CREATE INDEX IF NOT EXISTS idx_search_docs_status ON search_documents(status)",
        "CREATE INDEX IF NOT EXISTS idx_search_docs_priority ON search_documents(priority) WHERE priority IS NOT NULL",
        "CREATE INDEX IF NOT EXISTS idx_search_docs_item_type ON search_documents(item_type) WHERE item_type IS NOT NULL",
        "CREATE INDEX IF NOT EXISTS idx_search_docs_updated ON search_documents(updated_at DESC)",
        "CREATE INDEX IF NOT EXISTS idx_search_docs_indexed ON search_documents(indexed_at DESC)",
    ]


DOCUMENT_COLUMNS = (
    "source_type", "source_id", "external_id", "title", "description", "content",
    "organization", "project", "repo_name", "status", "author_id", "author_name",
    "assigned_to_id", "assigned_to_name", "priority", "item_type", "is_draft",
    "created_at", "updated_at", "closed_at", "url", "parent_id", "linked_work_items",
    "embedding",
)

RESULT_COLUMNS = (
    "id, source_type, source_id, external_id, title, description, status, "
    "priority, item_type, author_name, url, created_at, updated_at"
)

UPSERT_QUERY = """
    INSERT INTO search_documents ({columns}, indexed_at)
    VALUES ($1::search_source, {placeholders}, NOW())
    ON CONFLICT (source_type, source_id)
    DO UPDATE SET
        {updates},
        indexed_at = NOW()
    RETURNING id
""".format(
    columns=", ".join(DOCUMENT_COLUMNS),
    placeholders=", ".join(f"${i}" for i in range(2, len(DOCUMENT_COLUMNS) + 1)),
    updates=",\n        ".join(
        f"{column} = EXCLUDED.{column}" for column in DOCUMENT_COLUMNS[2:]
    ),
)


def build_filter_clause(filters: SearchFilters, params: List[Any]) -> str:
    """Translate ``filters`` into a SQL predicate, appending bind values.

    Placeholders continue numbering from the values already in ``params``.
    Returns ``TRUE`` when no filter is set.
    """
    clauses: List[str] = []

    def bind(value: Any) -> str:
        params.append(value)
        return f"${len(params)}"

    if filters.source_type is not None:
        clauses.append(f"source_type = {bind(filters.source_type.value)}::search_source")
    if filters.organization is not None:
        clauses.append(f"organization = {bind(filters.organization)}")
    if filters.project is not None:
        clauses.append(f"project = {bind(filters.project)}")
    if filters.repo_name is not None:
        clauses.append(f"repo_name = {bind(filters.repo_name)}")
    if filters.status is not None:
        clauses.append(f"lower(status) = ANY({bind([s.lower() for s in filters.status])}::text[])")
    if filters.priority is not None:
        clauses.append(f"priority = ANY({bind(list(filters.priority))}::int[])")
    if filters.item_type is not None:
        clauses.append(f"item_type = ANY({bind(list(filters.item_type))}::text[])")
    if filters.is_draft is not None:
        clauses.append(f"is_draft = {bind(filters.is_draft)}")
    if filters.author is not None:
        placeholder = bind(filters.author.lower())
        clauses.append(f"(lower(author_id) = {placeholder} OR lower(author_name) = {placeholder})")
    if filters.assigned_to is not None:
        placeholder = bind(filters.assigned_to.lower())
        clauses.append(
            f"(lower(assigned_to_id) = {placeholder} OR lower(assigned_to_name) = {placeholder})"
        )
    if filters.updated_after is not None:
        clauses.append(f"updated_at >= {bind(filters.updated_after)}")
    if filters.created_after is not None:
        clauses.append(f"created_at >= {bind(filters.created_after)}")
    if filters.created_before is not None:
        clauses.append(f"created_at <= {bind(filters.created_before)}")

    return " AND ".join(clauses) if clauses else "TRUE"


def _affected_rows(status: str) -> int:
    """Parse the row count from an asyncpg status string like ``DELETE 3``."""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


class PgVectorDocumentStore(DocumentStore):
    """Document store backed by PostgreSQL with full-text search and pgvector."""

    backend_name = "pgvector"

    def __init__(
        self,
        dsn: str,
        pool_size: int = 10,
        command_timeout: int = 60,
        vector_dimension: int = 1536,
        metrics_collector: Optional[MetricsCollector] = None,
        tracer: Optional[SearchTracer] = None,
    ):
        """Configure a PostgreSQL-backed document store.

        Parameters
        - dsn: PostgreSQL DSN including database and credentials
        - pool_size: Max size of the asyncpg connection pool
        - command_timeout: Seconds to allow per DB command
        - vector_dimension: Width of the ``embedding`` column
        """
        self.dsn = dsn
        self.pool_size = pool_size
        self.command_timeout = command_timeout
        self.vector_dimension = vector_dimension
        self.fusion = ReciprocalRankFusion()
        self.metrics_collector = metrics_collector or get_metrics_collector("toki-search")
        self.tracer = tracer or get_search_tracer("toki-search")
        self._pool: Optional[Pool] = None

    @classmethod
    def from_config(cls, config: Any, **kwargs: Any) -> "PgVectorDocumentStore":
        """Build from a ``StoreConfig``."""
        return cls(
            dsn=config.toki_search_db_dsn,
            pool_size=config.toki_search_pool_size,
            command_timeout=config.toki_search_command_timeout,
            vector_dimension=config.toki_vector_dimension,
            **kwargs
        )

    async def _init_connection(self, conn: Connection) -> None:
        """Register the pgvector codec for asyncpg connections."""
        await register_vector(conn)

    async def _get_pool(self) -> Pool:
        """Get or create the connection pool.

        Lazily initializes an asyncpg pool so callers don't pay startup cost
        unless/until they make a call that requires the database.
        """
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=1,
                    max_size=self.pool_size,
                    command_timeout=self.command_timeout,
                    init=self._init_connection,
                )
                logger.info("Created search document pool", pool_size=self.pool_size)
            except _DB_ERRORS as e:
                logger.error("Failed to create search document pool", error=str(e))
                raise DocumentStoreConnectionError(f"Failed to create connection pool: {e}") from e

        return self._pool

    async def _execute_query(
        self,
        query: str,
        *args: Any,
        fetch: bool = False,
        fetch_one: bool = False,
        fetch_val: bool = False,
    ) -> Any:
        """Execute a query with error handling.

        The ``fetch``/``fetch_one``/``fetch_val`` flags control how results are
        retrieved. Database failures are wrapped in ``DocumentStoreQueryError``.
        """
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                if fetch_val:
                    return await conn.fetchval(query, *args)
                if fetch_one:
                    return await conn.fetchrow(query, *args)
                if fetch:
                    return await conn.fetch(query, *args)
                return await conn.execute(query, *args)
        except _DB_ERRORS as e:
            logger.error("Query execution failed", error=str(e))
            raise DocumentStoreQueryError(f"Query failed: {e}") from e

    def _ensure_vector_dimension(self, vector: Iterable[float]) -> np.ndarray:
        """Ensure a vector matches the column dimensionality."""
        array = np.asarray(vector, dtype=np.float32)
        if array.ndim != 1 or array.shape[0] != self.vector_dimension:
            raise DocumentStoreQueryError(
                f"Expected vector dimension {self.vector_dimension}, got {array.shape}"
            )
        return array

    def _document_args(self, document: SearchDocument) -> Tuple[Any, ...]:
        embedding = (
            self._ensure_vector_dimension(document.embedding)
            if document.embedding is not None
            else None
        )
        return (
            document.source_type.value,
            document.source_id,
            document.external_id,
            document.title,
            document.description,
            document.content,
            document.organization,
            document.project,
            document.repo_name,
            document.status,
            document.author_id,
            document.author_name,
            document.assigned_to_id,
            document.assigned_to_name,
            document.priority,
            document.item_type,
            document.is_draft,
            document.created_at,
            document.updated_at,
            document.closed_at,
            document.url,
            document.parent_id,
            list(document.linked_work_items),
            embedding,
        )

    async def ensure_schema(self) -> None:
        """Create the extension, enum, table and indexes if missing."""
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                for statement in schema_statements(self.vector_dimension):
                    await conn.execute(statement)
        except _DB_ERRORS as e:
            logger.error("Failed to create search schema", error=str(e))
            raise DocumentStoreQueryError(f"Schema creation failed: {e}") from e
        logger.info("Search schema ready", vector_dimension=self.vector_dimension)

    async def upsert_document(self, document: SearchDocument) -> int:
        doc_id = await self._execute_query(
            UPSERT_QUERY, *self._document_args(document), fetch_val=True
        )
        self.metrics_collector.record_store_operation("upsert", self.backend_name)
        return doc_id

    async def upsert_documents(self, documents: Sequence[SearchDocument]) -> int:
        if not documents:
            return 0

        batch_data = [self._document_args(document) for document in documents]
        pool = await self._get_pool()
        with self.tracer.trace_store_operation("upsert_batch", self.backend_name, len(batch_data)):
            try:
                async with pool.acquire() as conn:
                    async with conn.transaction():
                        await conn.executemany(UPSERT_QUERY, batch_data)
            except _DB_ERRORS as e:
                logger.error("Batch upsert failed", count=len(batch_data), error=str(e))
                raise DocumentStoreQueryError(f"Batch upsert failed: {e}") from e

        self.metrics_collector.record_store_operation("upsert_batch", self.backend_name)
        logger.debug("Batch upserted documents", count=len(batch_data))
        return len(batch_data)

    async def delete_document(self, source_type: SearchSource, source_id: str) -> bool:
        result = await self._execute_query(
            "DELETE FROM search_documents WHERE source_type = $1::search_source AND source_id = $2",
            source_type.value,
            source_id,
        )
        self.metrics_collector.record_store_operation("delete", self.backend_name)
        return _affected_rows(result) > 0

    async def delete_stale_documents(self, older_than: datetime) -> int:
        result = await self._execute_query(
            "DELETE FROM search_documents WHERE indexed_at < $1",
            older_than,
        )
        deleted = _affected_rows(result)
        self.metrics_collector.record_store_operation("delete_stale", self.backend_name)
        if deleted:
            logger.info("Deleted stale documents", count=deleted, older_than=older_than.isoformat())
        return deleted

    async def get_document(
        self,
        source_type: SearchSource,
        source_id: str,
    ) -> Optional[SearchDocument]:
        columns = ", ".join(column for column in DOCUMENT_COLUMNS if column != "embedding")
        row = await self._execute_query(
            f"""
            SELECT id, indexed_at, {columns}
            FROM search_documents
            WHERE source_type = $1::search_source AND source_id = $2
            """,
            source_type.value,
            source_id,
            fetch_one=True,
        )
        if row is None:
            return None
        return self._row_to_document(row)

    async def count(self, source_type: Optional[SearchSource] = None) -> int:
        value = await self._execute_query(
            """
            SELECT COUNT(*) FROM search_documents
            WHERE ($1::search_source IS NULL OR source_type = $1::search_source)
            """,
            source_type.value if source_type is not None else None,
            fetch_val=True,
        )
        return int(value or 0)

    async def _lexical_pool(self, query: ParsedQuery, limit: int) -> List[Tuple[int, float]]:
        params: List[Any] = []
        if query.search_text:
            params.append(query.search_text)
            where = build_filter_clause(query.filters, params)
            params.append(limit)
            sql = f"""
                SELECT id,
                       ts_rank_cd(search_vector, websearch_to_tsquery('english', $1))::float8 AS score
                FROM search_documents
                WHERE search_vector @@ websearch_to_tsquery('english', $1)
                  AND {where}
                ORDER BY score DESC, id ASC
                LIMIT ${len(params)}
            """
        else:
            where = build_filter_clause(query.filters, params)
            params.append(limit)
            sql = f"""
                SELECT id, 0::float8 AS score
                FROM search_documents
                WHERE {where}
                ORDER BY id ASC
                LIMIT ${len(params)}
            """
        rows = await self._execute_query(sql, *params, fetch=True)
        return [(row["id"], float(row["score"])) for row in rows]

    async def _vector_pool(
        self,
        query: ParsedQuery,
        embedding: Sequence[float],
        limit: int,
    ) -> List[Tuple[int, float]]:
        params: List[Any] = [self._ensure_vector_dimension(embedding)]
        where = build_filter_clause(query.filters, params)
        params.append(limit)
        sql = f"""
            SELECT id, (1 - (embedding <=> $1))::float8 AS score
            FROM search_documents
            WHERE embedding IS NOT NULL
              AND {where}
            ORDER BY embedding <=> $1 ASC, id ASC
            LIMIT ${len(params)}
        """
        rows = await self._execute_query(sql, *params, fetch=True)
        return [(row["id"], float(row["score"])) for row in rows]

    async def _load_results(self, scored: Sequence[Tuple[int, float]]) -> List[SearchResult]:
        if not scored:
            return []
        rows = await self._execute_query(
            f"SELECT {RESULT_COLUMNS} FROM search_documents WHERE id = ANY($1::int[])",
            [doc_id for doc_id, _ in scored],
            fetch=True,
        )
        by_id: Dict[int, Any] = {row["id"]: row for row in rows}
        # A row deleted between the pool query and this lookup is skipped.
        return [
            self._row_to_result(by_id[doc_id], score)
            for doc_id, score in scored
            if doc_id in by_id
        ]

    async def search(
        self,
        query: ParsedQuery,
        embedding: Optional[Sequence[float]],
        limit: int,
    ) -> List[SearchResult]:
        mode = "hybrid" if embedding is not None else "lexical"
        start_time = time.time()

        with self.tracer.trace_store_operation("search", self.backend_name, mode=mode):
            if embedding is None:
                scored = await self._lexical_pool(query, limit)
            else:
                lexical = await self._lexical_pool(query, CANDIDATE_POOL_SIZE)
                vector = await self._vector_pool(query, embedding, CANDIDATE_POOL_SIZE)
                fused = self.fusion.fuse_results(lexical, vector, limit)
                scored = [(item.doc_id, item.score) for item in fused]

            results = await self._load_results(scored)

        self.metrics_collector.record_store_operation("search", self.backend_name)
        logger.debug(
            "Document store search completed",
            mode=mode,
            results_count=len(results),
            duration_ms=(time.time() - start_time) * 1000,
        )
        return results

    async def health_check(self) -> bool:
        """Check if the database is reachable."""
        try:
            await self._execute_query("SELECT 1", fetch_val=True)
            return True
        except (DocumentStoreConnectionError, DocumentStoreQueryError) as e:
            logger.error("Health check failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Closed search document pool")

    @staticmethod
    def _row_to_result(row: Any, score: float) -> SearchResult:
        return SearchResult(
            id=row["id"],
            source_type=SearchSource(row["source_type"]),
            source_id=row["source_id"],
            external_id=row["external_id"],
            title=row["title"],
            status=row["status"],
            url=row["url"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            score=score,
            description=row["description"],
            priority=row["priority"],
            item_type=row["item_type"],
            author_name=row["author_name"],
        )

    @staticmethod
    def _row_to_document(row: Any) -> SearchDocument:
        return SearchDocument(
            id=row["id"],
            indexed_at=row["indexed_at"],
            source_type=SearchSource(row["source_type"]),
            source_id=row["source_id"],
            external_id=row["external_id"],
            title=row["title"],
            description=row["description"],
            content=row["content"],
            organization=row["organization"],
            project=row["project"],
            repo_name=row["repo_name"],
            status=row["status"],
            author_id=row["author_id"],
            author_name=row["author_name"],
            assigned_to_id=row["assigned_to_id"],
            assigned_to_name=row["assigned_to_name"],
            priority=row["priority"],
            item_type=row["item_type"],
            is_draft=bool(row["is_draft"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            closed_at=row["closed_at"],
            url=row["url"],
            parent_id=row["parent_id"],
            linked_work_items=list(row["linked_work_items"] or []),
        )
