"""
Qdrant Vector Store for Dense Retrieval
Handles connection and filtered KNN search
"""
import logging
from typing import Optional

from qdrant_client import QdrantClient
from qdrant_client.models import SearchParams

from hybrid_rag.config import get_settings
from hybrid_rag.filters import FilterExpression, to_qdrant_filter
from hybrid_rag.types import SearchHit

logger = logging.getLogger("hybrid_rag.qdrant")


class QdrantStore:
    """Qdrant vector store for dense retrieval"""

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        collection_name: Optional[str] = None,
        content_field: Optional[str] = None,
        metadata_field: str = "metadata",
        client: Optional[QdrantClient] = None,
    ):
        settings = get_settings()

        self.url = url or settings.qdrant_url
        self.api_key = api_key or settings.qdrant_api_key
        self.collection_name = collection_name or settings.collection_name
        self.content_field = content_field or settings.content_field
        self.metadata_field = metadata_field

        self.client = client or QdrantClient(
            url=self.url,
            api_key=self.api_key,
        )

    @property
    def filter_key_prefix(self) -> str:
        return f"{self.metadata_field}." if self.metadata_field else ""

    def search_dense(
        self,
        query_vector: list[float],
        top_k: int = 60,
        filter_expression: Optional[FilterExpression] = None,
        score_threshold: Optional[float] = None,
        num_candidates: Optional[int] = None,
        vector_name: Optional[str] = None,
        collection_name: Optional[str] = None,
    ) -> list[SearchHit]:
        """
        Dense vector search in Qdrant

        Args:
            query_vector: Query embedding
            top_k: Number of neighbors to return
            filter_expression: Pre-filter over document metadata
            score_threshold: Raw similarity cut-off (max distance for Euclid collections)
            num_candidates: HNSW candidate list size (hnsw_ef)
            vector_name: Named vector to search ("" / None = default vector)
            collection_name: Overrides the store's collection

        Returns:
            List of SearchHit with source="dense" and Qdrant's raw score
        """
        results = self.client.query_points(
            collection_name=collection_name or self.collection_name,
            query=query_vector,
            using=vector_name or None,
            query_filter=to_qdrant_filter(filter_expression, self.filter_key_prefix),
            limit=top_k,
            score_threshold=score_threshold,
            search_params=SearchParams(hnsw_ef=num_candidates) if num_candidates else None,
            with_payload=True,
        ).points

        return [self._to_hit(point, float(point.score) if point.score is not None else 0.0, "dense")
                for point in results]

    def get_all_payloads(self, limit: int = 10000, collection_name: Optional[str] = None) -> list[dict]:
        """
        Get all payloads from collection (for BM25 index building)
        """
        payloads = []
        offset = None

        while True:
            results, offset = self.client.scroll(
                collection_name=collection_name or self.collection_name,
                limit=min(100, limit - len(payloads)),
                offset=offset,
                with_payload=True,
                with_vectors=False
            )

            for point in results:
                if point.payload:
                    payload = dict(point.payload)
                    payload["_point_id"] = point.id
                    payloads.append(payload)

            if offset is None or len(payloads) >= limit:
                break

        logger.debug(f"[QDRANT] Scrolled {len(payloads)} payloads from {collection_name or self.collection_name}")
        return payloads

    def _to_hit(self, point, score: float, source: str) -> SearchHit:
        payload = dict(point.payload or {})
        return SearchHit(
            id=point.id,
            text=payload.get(self.content_field, ""),
            score=score,
            source=source,
            payload=payload,
        )
