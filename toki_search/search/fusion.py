"""Reciprocal Rank Fusion for hybrid search.

Both retrieval pools (lexical and vector) are ranked independently and then
combined by rank alone, so the very different score scales of BM25 and cosine
similarity never need to be normalized against each other.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import structlog

logger = structlog.get_logger("search_fusion")

# RRF smoothing constant; fixed so scores stay comparable across queries.
RRF_K = 60

# Maximum number of candidates each retrieval pool contributes to fusion.
CANDIDATE_POOL_SIZE = 100


@dataclass
class FusedScore:
    """Fused score for one document with the ranks that produced it."""
    doc_id: int
    score: float
    lexical_rank: Optional[int] = None
    vector_rank: Optional[int] = None


def rank_by_score(
    scored: Iterable[Tuple[int, float]],
    limit: Optional[int] = None,
) -> List[Tuple[int, float]]:
    """Sort ``(doc_id, score)`` pairs by score descending, then by id.

    The id tie-break keeps the order reproducible regardless of the order in
    which the store produced the candidates.
    """
    ranked = sorted(scored, key=lambda item: (-item[1], item[0]))
    if limit is not None:
        ranked = ranked[:limit]
    return ranked


class ReciprocalRankFusion:
    """Reciprocal Rank Fusion (RRF) over a lexical and a vector ranking."""

    def __init__(self, k: int = RRF_K):
        self.k = k

    def fuse_results(
        self,
        lexical_results: Sequence[Tuple[int, float]],
        vector_results: Sequence[Tuple[int, float]],
        limit: Optional[int] = None,
    ) -> List[FusedScore]:
        """Fuse two ranked lists of ``(doc_id, score)`` pairs.

        Parameters
        - lexical_results: Lexical pool, best first
        - vector_results: Vector pool, best first
        - limit: Optional cap on the fused list

        Returns
        - ``FusedScore`` entries sorted by fused score descending, ties
          broken by ascending document id. A document missing from a pool
          gets no contribution from that pool.
        """
        lexical_ranks: Dict[int, int] = {
            doc_id: rank for rank, (doc_id, _) in enumerate(lexical_results, start=1)
        }
        vector_ranks: Dict[int, int] = {
            doc_id: rank for rank, (doc_id, _) in enumerate(vector_results, start=1)
        }

        fused: List[FusedScore] = []
        for doc_id in set(lexical_ranks) | set(vector_ranks):
            lexical_rank = lexical_ranks.get(doc_id)
            vector_rank = vector_ranks.get(doc_id)

            score = 0.0
            if lexical_rank is not None:
                score += 1.0 / (self.k + lexical_rank)
            if vector_rank is not None:
                score += 1.0 / (self.k + vector_rank)

            fused.append(FusedScore(doc_id, score, lexical_rank, vector_rank))

        fused.sort(key=lambda item: (-item.score, item.doc_id))
        if limit is not None:
            fused = fused[:limit]

        logger.debug(
            "RRF fusion completed",
            lexical_count=len(lexical_results),
            vector_count=len(vector_results),
            fused_count=len(fused),
            k_parameter=self.k,
        )

        return fused
