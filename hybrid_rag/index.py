"""
Search backend boundary
HybridSearchRequest is the single request a HybridRetriever issues; SearchIndex executes it
"""
import logging
import math
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from hybrid_rag.bm25_index import BM25Index
from hybrid_rag.filters import FilterExpression, format_expression
from hybrid_rag.qdrant_store import QdrantStore
from hybrid_rag.rrf import combine_scores, rrf_fuse
from hybrid_rag.types import SearchHit, SimilarityMetric

logger = logging.getLogger("hybrid_rag.index")


@dataclass(frozen=True)
class RrfParams:
    rank_constant: int
    rank_window_size: int


@dataclass(frozen=True)
class HybridSearchRequest:
    """
    One combined lexical + vector search

    A None lexical_text with lexical_enabled means a match-all lexical clause.
    A None filter_expression means no filter.
    """
    index_name: str
    size: int
    knn_enabled: bool = False
    lexical_enabled: bool = False
    vector_field: str = ""
    query_vector: Optional[list[float]] = field(default=None, repr=False)
    k: int = 0
    num_candidates: int = 0
    similarity_threshold: float = 0.0
    filter_expression: Optional[FilterExpression] = None
    lexical_field: str = ""
    lexical_text: Optional[str] = None
    knn_boost: float = 1.0
    bm25_boost: float = 1.0
    rrf: Optional[RrfParams] = None

    def describe(self) -> dict:
        """Loggable view of the request (vector omitted)"""
        return {
            "index": self.index_name,
            "size": self.size,
            "knn": {
                "field": self.vector_field,
                "k": self.k,
                "num_candidates": self.num_candidates,
                "similarity": self.similarity_threshold,
                "boost": self.knn_boost,
            } if self.knn_enabled else None,
            "lexical": {
                "field": self.lexical_field,
                "text": self.lexical_text,
                "boost": self.bm25_boost,
            } if self.lexical_enabled else None,
            "filter": format_expression(self.filter_expression),
            "rrf": {
                "rank_constant": self.rrf.rank_constant,
                "rank_window_size": self.rrf.rank_window_size,
            } if self.rrf else None,
        }


class SearchIndex(ABC):
    """Search backend consumed by HybridRetriever"""

    @abstractmethod
    def search(self, request: HybridSearchRequest) -> list[SearchHit]:
        """
        Execute a request

        Returns:
            Hits best first; scores are fused RRF scores when request.rrf is set,
            otherwise boosted relevance scores on the [0, 1] similarity scale
        """
        pass


class LocalHybridIndex(SearchIndex):
    """
    SearchIndex over a Qdrant collection (KNN) and an in-memory BM25 index (lexical)

    Dense scores are reported on the Elasticsearch scale so that the retriever's
    normalization applies unchanged: cosine/dot (1 + s) / 2, L2 1 / (1 + d²).
    """

    def __init__(
        self,
        qdrant_store: QdrantStore,
        bm25_index: Optional[BM25Index] = None,
        similarity: SimilarityMetric = SimilarityMetric.COSINE,
    ):
        self._qdrant = qdrant_store
        self._bm25 = bm25_index or BM25Index(
            content_field=qdrant_store.content_field,
            metadata_field=qdrant_store.metadata_field,
        )
        self.similarity = SimilarityMetric(similarity)
        self._lexical_lock = threading.Lock()

    def refresh_lexical_index(self):
        """Rebuild the BM25 index from the Qdrant collection payloads"""
        with self._lexical_lock:
            self._build_lexical_index()

    def _build_lexical_index(self):
        payloads = self._qdrant.get_all_payloads()
        self._bm25.build_from_payloads(payloads)

    def _ensure_lexical_index(self):
        if self._bm25.is_ready():
            return
        with self._lexical_lock:
            if not self._bm25.is_ready():
                self._build_lexical_index()

    def search(self, request: HybridSearchRequest) -> list[SearchHit]:
        dense_hits: list[SearchHit] = []
        sparse_hits: list[SearchHit] = []

        if request.knn_enabled:
            dense_hits = self._search_knn(request)

        if request.lexical_enabled:
            sparse_hits = self._search_lexical(request)

        if request.rrf is not None:
            results = rrf_fuse(
                dense_hits=dense_hits,
                sparse_hits=sparse_hits,
                rank_constant=request.rrf.rank_constant,
                rank_window_size=request.rrf.rank_window_size,
                size=request.size,
            )
        else:
            results = combine_scores(
                dense_hits=dense_hits,
                sparse_hits=sparse_hits,
                knn_boost=request.knn_boost,
                bm25_boost=request.bm25_boost,
                size=request.size,
            )

        logger.debug(f"[INDEX] dense={len(dense_hits)} sparse={len(sparse_hits)} -> {len(results)} hits")
        return results

    def _search_knn(self, request: HybridSearchRequest) -> list[SearchHit]:
        if request.query_vector is None:
            raise ValueError("knn search requires a query vector")

        threshold = request.similarity_threshold
        if self.similarity != SimilarityMetric.L2_NORM and threshold <= 0:
            # 0.0 accepts every similarity
            threshold = None

        hits = self._qdrant.search_dense(
            query_vector=request.query_vector,
            top_k=request.k,
            filter_expression=request.filter_expression,
            score_threshold=threshold,
            num_candidates=request.num_candidates,
            vector_name=request.vector_field or None,
            collection_name=request.index_name or None,
        )
        for hit in hits:
            hit.score = self._to_relevance_scale(hit.score)
        return hits

    def _search_lexical(self, request: HybridSearchRequest) -> list[SearchHit]:
        self._ensure_lexical_index()

        limit = request.rrf.rank_window_size if request.rrf else max(request.size, request.k)
        if request.lexical_text is None:
            return self._bm25.match_all(top_k=limit, filter_expression=request.filter_expression)

        return self._bm25.search_sparse(
            query=request.lexical_text,
            top_k=limit,
            filter_expression=request.filter_expression,
            field=request.lexical_field,
        )

    def _to_relevance_scale(self, raw: float) -> float:
        if self.similarity == SimilarityMetric.L2_NORM:
            # Qdrant reports the Euclidean distance for Euclid collections
            return 1.0 / (1.0 + math.pow(raw, 2))
        return (1.0 + raw) / 2.0
