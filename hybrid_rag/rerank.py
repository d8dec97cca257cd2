"""
Reranking post-processor with CrossEncoder
"""
import logging
from typing import Optional

from hybrid_rag.config import get_settings
from hybrid_rag.postprocessors import DocumentPostProcessor
from hybrid_rag.types import Document, Query

logger = logging.getLogger("hybrid_rag.rerank")


class RerankPostProcessor(DocumentPostProcessor):
    """
    Rescores (query, document) pairs with a CrossEncoder

    Documents scoring below min_score are dropped, the rest are kept in model order
    and truncated to top_n. Each kept document gets rerank_score and
    pre_rerank_score metadata. Model failures propagate.
    """

    def __init__(
        self,
        min_score: float = 0.0,
        top_n: Optional[int] = None,
        model=None,
        model_name: Optional[str] = None,
        normalize_scores: bool = True,
    ):
        if top_n is not None and top_n < 1:
            raise ValueError(f"top_n must be greater than 0, got {top_n}")
        self.min_score = min_score
        self.top_n = top_n
        self.model_name = model_name or get_settings().cross_encoder_model
        self.normalize_scores = normalize_scores
        self._model = model

    def _ensure_model(self):
        """Lazy load CrossEncoder model"""
        if self._model is not None:
            return

        from sentence_transformers import CrossEncoder
        self._model = CrossEncoder(self.model_name)
        logger.info(f"✅ [RERANK] Loaded CrossEncoder: {self.model_name}")

    def process(self, query: Query, documents: list[Document]) -> list[Document]:
        if not documents:
            return []

        self._ensure_model()

        pairs = [(query.text, doc.text) for doc in documents]
        scores = [float(s) for s in self._model.predict(pairs)]

        # Normalize scores to 0-1 range
        # a single score or a tied batch has no spread and maps to 1.0
        if self.normalize_scores:
            low, high = min(scores), max(scores)
            if high > low:
                scores = [(s - low) / (high - low) for s in scores]
            else:
                scores = [1.0] * len(scores)

        scored = [(doc, score) for doc, score in zip(documents, scores) if score >= self.min_score]
        scored.sort(key=lambda x: x[1], reverse=True)
        if self.top_n is not None:
            scored = scored[:self.top_n]

        reranked = []
        for doc, score in scored:
            metadata = {**doc.metadata, "rerank_score": score, "pre_rerank_score": doc.score}
            reranked.append(doc.mutate(score=score, metadata=metadata))

        logger.debug(f"[RERANK] {len(documents)} -> {len(reranked)} documents")
        return reranked
