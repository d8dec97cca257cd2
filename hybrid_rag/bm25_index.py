"""
BM25 Index for Sparse Retrieval
In-memory BM25Okapi per searchable field, with metadata filtering
"""
import logging
from typing import Any, Optional

from rank_bm25 import BM25Okapi

from hybrid_rag.filters import FilterExpression, matches
from hybrid_rag.text_utils import tokenize
from hybrid_rag.types import SearchHit

logger = logging.getLogger("hybrid_rag.bm25")


class BM25Index:
    """BM25 sparse retrieval index built from document payloads"""

    def __init__(self, content_field: str = "text", metadata_field: str = "metadata"):
        self.content_field = content_field
        self.metadata_field = metadata_field

        self._payloads: list[dict] = []
        self._built = False
        # field -> BM25Okapi (None when the field has no text); built on first search of a field
        self._field_indexes: dict[str, Optional[BM25Okapi]] = {}

    def build_from_payloads(self, payloads: list[dict]):
        """
        Build the index from a list of payloads

        Each payload should have:
        - _point_id (or id): identifier shared with the vector store
        - the content field (default "text")
        - metadata: dict used by filters
        """
        self._payloads = list(payloads)
        self._field_indexes = {}
        self._ensure_field(self.content_field)
        self._built = True
        logger.info(f"📊 [BM25] Built index: {len(self._payloads)} documents")

    def _field_text(self, payload: dict, field: str) -> str:
        value = _lookup(payload, field)
        if value is None and self.metadata_field:
            value = _lookup(payload.get(self.metadata_field) or {}, field)
        if value is None:
            return ""
        if isinstance(value, (list, tuple)):
            return " ".join(str(v) for v in value)
        return str(value)

    def _ensure_field(self, field: str) -> Optional[BM25Okapi]:
        if field in self._field_indexes:
            return self._field_indexes[field]

        corpus = [tokenize(self._field_text(p, field)) for p in self._payloads]
        bm25 = BM25Okapi(corpus) if any(corpus) else None
        self._field_indexes[field] = bm25
        return bm25

    def _metadata(self, payload: dict) -> dict:
        if self.metadata_field:
            return payload.get(self.metadata_field) or {}
        return payload

    def search_sparse(
        self,
        query: str,
        top_k: int = 60,
        filter_expression: Optional[FilterExpression] = None,
        field: str = "",
    ) -> list[SearchHit]:
        """
        Sparse BM25 search

        Args:
            query: Search query
            top_k: Number of results
            filter_expression: Optional metadata filter
            field: Field to match ("" = content field)

        Returns:
            List of SearchHit with source="sparse"
        """
        field = field or self.content_field
        bm25 = self._ensure_field(field)
        if bm25 is None:
            logger.warning(f"⚠️ [BM25] Index has no text for field '{field}'")
            return []

        query_tokens = tokenize(query)
        if not query_tokens:
            return []

        scores = bm25.get_scores(query_tokens)

        candidates = []
        for idx, score in enumerate(scores):
            if score <= 0:
                continue
            payload = self._payloads[idx]
            if not matches(filter_expression, self._metadata(payload)):
                continue
            candidates.append((idx, float(score), payload))

        candidates.sort(key=lambda x: x[1], reverse=True)

        return [self._to_hit(idx, score, payload) for idx, score, payload in candidates[:top_k]]

    def match_all(self, top_k: int = 60, filter_expression: Optional[FilterExpression] = None) -> list[SearchHit]:
        """Every document passing the filter, each with a constant score of 1.0"""
        hits = []
        for idx, payload in enumerate(self._payloads):
            if matches(filter_expression, self._metadata(payload)):
                hits.append(self._to_hit(idx, 1.0, payload))
                if len(hits) >= top_k:
                    break
        return hits

    def _to_hit(self, idx: int, score: float, payload: dict) -> SearchHit:
        return SearchHit(
            id=payload.get("_point_id", payload.get("id", idx)),
            text=payload.get(self.content_field, ""),
            score=score,
            source="sparse",
            payload=payload,
        )

    def is_ready(self) -> bool:
        """Check if index has been built, even from an empty collection"""
        return self._built


def _lookup(data: dict, field: str) -> Any:
    if field in data:
        return data[field]
    current: Any = data
    for part in field.split("."):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current
