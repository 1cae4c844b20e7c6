"""In-memory implementation of the document store.

Keeps documents in a dict keyed by ``(source_type, source_id)`` and answers
searches with the two-phase hybrid algorithm: build a BM25 pool and a cosine
pool over the filtered documents, cap each at ``CANDIDATE_POOL_SIZE``, then
fuse them with reciprocal rank fusion. Used by tests and local tooling, and
as the reference for the ranking the Postgres backend reproduces.
"""

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import structlog

from toki_search.search.fusion import CANDIDATE_POOL_SIZE, ReciprocalRankFusion, rank_by_score
from toki_search.search.models import (
    ParsedQuery,
    SearchDocument,
    SearchFilters,
    SearchResult,
    SearchSource,
)

from .base import DocumentStore, DocumentStoreQueryError
from .lexical import TermStats, analyze_fields, bm25_scores, query_terms

logger = structlog.get_logger("document_store.memory")

DocumentKey = Tuple[SearchSource, str]


def _matches_person(value: str, *candidates: Optional[str]) -> bool:
    needle = value.lower()
    return any(candidate is not None and candidate.lower() == needle for candidate in candidates)


def matches_filters(document: SearchDocument, filters: SearchFilters) -> bool:
    """Return ``True`` when ``document`` satisfies every set filter."""
    if filters.source_type is not None and document.source_type != filters.source_type:
        return False
    if filters.organization is not None and document.organization != filters.organization:
        return False
    if filters.project is not None and document.project != filters.project:
        return False
    if filters.repo_name is not None and document.repo_name != filters.repo_name:
        return False
    if filters.status is not None and document.status.lower() not in {s.lower() for s in filters.status}:
        return False
    if filters.priority is not None and document.priority not in filters.priority:
        return False
    if filters.item_type is not None and document.item_type not in filters.item_type:
        return False
    if filters.is_draft is not None and document.is_draft != filters.is_draft:
        return False
    if filters.author is not None and not _matches_person(
        filters.author, document.author_id, document.author_name
    ):
        return False
    if filters.assigned_to is not None and not _matches_person(
        filters.assigned_to, document.assigned_to_id, document.assigned_to_name
    ):
        return False
    if filters.updated_after is not None and document.updated_at < filters.updated_after:
        return False
    if filters.created_after is not None and document.created_at < filters.created_after:
        return False
    if filters.created_before is not None and document.created_at > filters.created_before:
        return False
    return True


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity; zero when either vector has no magnitude."""
    denominator = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denominator == 0.0:
        return 0.0
    return float(np.dot(a, b) / denominator)


class InMemoryDocumentStore(DocumentStore):
    """Document store held in process memory.

    Parameters
    - clock: Source of ``indexed_at`` timestamps, replaceable in tests
    """

    backend_name = "memory"

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.fusion = ReciprocalRankFusion()
        self._documents: Dict[DocumentKey, SearchDocument] = {}
        self._term_stats: Dict[int, TermStats] = {}
        self._next_id = 1
        self._lock = asyncio.Lock()

    def _write(self, document: SearchDocument) -> int:
        existing = self._documents.get(document.key)
        if existing is not None:
            doc_id = existing.id
        else:
            doc_id = self._next_id
            self._next_id += 1

        stored = replace(
            document,
            id=doc_id,
            indexed_at=self.clock(),
            linked_work_items=list(document.linked_work_items),
            embedding=list(document.embedding) if document.embedding is not None else None,
        )
        self._documents[document.key] = stored
        self._term_stats[doc_id] = analyze_fields({
            "title": stored.title,
            "description": stored.description,
            "content": stored.content,
        })
        return doc_id

    def _remove(self, key: DocumentKey) -> None:
        document = self._documents.pop(key)
        self._term_stats.pop(document.id, None)

    async def upsert_document(self, document: SearchDocument) -> int:
        async with self._lock:
            return self._write(document)

    async def upsert_documents(self, documents: Sequence[SearchDocument]) -> int:
        async with self._lock:
            for document in documents:
                self._write(document)
        return len(documents)

    async def delete_document(self, source_type: SearchSource, source_id: str) -> bool:
        async with self._lock:
            key = (source_type, source_id)
            if key not in self._documents:
                return False
            self._remove(key)
            return True

    async def delete_stale_documents(self, older_than: datetime) -> int:
        async with self._lock:
            stale = [
                key for key, document in self._documents.items()
                if document.indexed_at < older_than
            ]
            for key in stale:
                self._remove(key)

        if stale:
            logger.info("Deleted stale documents", count=len(stale), older_than=older_than.isoformat())
        return len(stale)

    async def get_document(
        self,
        source_type: SearchSource,
        source_id: str,
    ) -> Optional[SearchDocument]:
        document = self._documents.get((source_type, source_id))
        return replace(document) if document is not None else None

    async def count(self, source_type: Optional[SearchSource] = None) -> int:
        if source_type is None:
            return len(self._documents)
        return sum(1 for document in self._documents.values() if document.source_type == source_type)

    def _lexical_pool(
        self,
        search_text: str,
        candidates: Dict[int, SearchDocument],
    ) -> List[Tuple[int, float]]:
        if not search_text:
            return [(doc_id, 0.0) for doc_id in candidates]
        return bm25_scores(
            query_terms(search_text),
            {doc_id: self._term_stats[doc_id] for doc_id in candidates},
            self._term_stats.values(),
        )

    def _vector_pool(
        self,
        embedding: Sequence[float],
        candidates: Dict[int, SearchDocument],
    ) -> List[Tuple[int, float]]:
        query_vector = np.asarray(embedding, dtype=np.float32)
        scored = []
        for doc_id, document in candidates.items():
            if document.embedding is None:
                continue
            vector = np.asarray(document.embedding, dtype=np.float32)
            if vector.shape != query_vector.shape:
                raise DocumentStoreQueryError(
                    f"Embedding dimension mismatch: query {query_vector.shape[0]}, "
                    f"document {vector.shape[0]}"
                )
            scored.append((doc_id, cosine_similarity(query_vector, vector)))
        return scored

    async def search(
        self,
        query: ParsedQuery,
        embedding: Optional[Sequence[float]],
        limit: int,
    ) -> List[SearchResult]:
        candidates = {
            document.id: document
            for document in self._documents.values()
            if matches_filters(document, query.filters)
        }

        lexical = self._lexical_pool(query.search_text, candidates)

        if embedding is None:
            ranked = rank_by_score(lexical, limit)
            return [SearchResult.from_document(candidates[doc_id], score) for doc_id, score in ranked]

        lexical_ranked = rank_by_score(lexical, CANDIDATE_POOL_SIZE)
        vector_ranked = rank_by_score(self._vector_pool(embedding, candidates), CANDIDATE_POOL_SIZE)
        fused = self.fusion.fuse_results(lexical_ranked, vector_ranked, limit)

        logger.debug(
            "Hybrid search completed",
            candidates=len(candidates),
            lexical_pool=len(lexical_ranked),
            vector_pool=len(vector_ranked),
            returned=len(fused),
        )

        return [SearchResult.from_document(candidates[item.doc_id], item.score) for item in fused]
