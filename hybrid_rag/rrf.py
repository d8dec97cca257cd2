"""
RRF (Reciprocal Rank Fusion) Implementation
Combines dense and sparse retrieval results, by rank (RRF) or by boosted score
"""
from hybrid_rag.types import SearchHit


def rrf_fuse(
    dense_hits: list[SearchHit],
    sparse_hits: list[SearchHit],
    rank_constant: int = 60,
    rank_window_size: int = 50,
    size: int = 50,
) -> list[SearchHit]:
    """
    Fuse dense and sparse results using Reciprocal Rank Fusion (RRF)

    RRF Score = Σ 1 / (rank_constant + rank_i)

    Args:
        dense_hits: Results from dense retrieval, best first
        sparse_hits: Results from sparse retrieval, best first
        rank_constant: RRF constant (60 in the original paper); higher values give
            lower-ranked documents more influence
        rank_window_size: How many hits of each list take part in the fusion
        size: Number of results to return

    Returns:
        List of fused SearchHit (source="fused"), best first
    """
    # Key: hit id, Value: (accumulated_score, fused_hit)
    score_map: dict = {}

    for branch, hits in (("dense", dense_hits), ("sparse", sparse_hits)):
        for rank, hit in enumerate(hits[:rank_window_size], start=1):
            rrf_score = rrf_score_single(rank, rank_constant)

            if hit.id in score_map:
                current_score, current_hit = score_map[hit.id]
                current_hit.payload[f"{branch}_rank"] = rank
                current_hit.payload[f"{branch}_score"] = hit.score
                score_map[hit.id] = (current_score + rrf_score, current_hit)
            else:
                fused_hit = SearchHit(
                    id=hit.id,
                    text=hit.text,
                    score=0.0,  # Will be set later
                    source="fused",
                    payload={
                        **hit.payload,
                        f"{branch}_rank": rank,
                        f"{branch}_score": hit.score,
                    }
                )
                score_map[hit.id] = (rrf_score, fused_hit)

    fused_results = []
    for rrf_score, hit in score_map.values():
        hit.score = rrf_score
        fused_results.append(hit)

    # Stable sort keeps dense-first order for ties
    fused_results.sort(key=lambda x: x.score, reverse=True)

    return fused_results[:size]


def combine_scores(
    dense_hits: list[SearchHit],
    sparse_hits: list[SearchHit],
    knn_boost: float = 1.0,
    bm25_boost: float = 1.0,
    size: int = 50,
) -> list[SearchHit]:
    """
    Combine dense and sparse results by boosted score

    A document's score is knn_boost * dense_score + bm25_boost * sparse_score,
    where a missing branch contributes 0.

    Returns:
        List of SearchHit (source="combined"), best first
    """
    score_map: dict = {}

    for branch, hits, boost in (("dense", dense_hits, knn_boost), ("sparse", sparse_hits, bm25_boost)):
        for hit in hits:
            if hit.id in score_map:
                combined = score_map[hit.id]
                combined.score += boost * hit.score
                combined.payload[f"{branch}_score"] = hit.score
            else:
                score_map[hit.id] = SearchHit(
                    id=hit.id,
                    text=hit.text,
                    score=boost * hit.score,
                    source="combined",
                    payload={**hit.payload, f"{branch}_score": hit.score},
                )

    combined_results = sorted(score_map.values(), key=lambda x: x.score, reverse=True)
    return combined_results[:size]


def rrf_score_single(rank: int, k: int = 60) -> float:
    """Calculate RRF score for a single rank"""
    return 1.0 / (k + rank)
