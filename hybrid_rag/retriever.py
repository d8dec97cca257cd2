"""
Document retrievers
HybridRetriever issues one combined BM25 + KNN request per query; HyDeRetriever is dense-only over a HyDE passage
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional

from hybrid_rag.config import SIMILARITY_THRESHOLD_ACCEPT_ALL, RetrieverConfig
from hybrid_rag.embeddings import Embedder
from hybrid_rag.errors import EmbeddingError, HybridRagError, RetrievalIOError
from hybrid_rag.filters import FilterExpression
from hybrid_rag.index import HybridSearchRequest, RrfParams, SearchIndex
from hybrid_rag.qdrant_store import QdrantStore
from hybrid_rag.resolver import FilterResolver, FilterSupplier
from hybrid_rag.scoring import ScoreNormalizer
from hybrid_rag.text_utils import escape_query_text
from hybrid_rag.transformers import HyDeTransformer
from hybrid_rag.types import (
    DISTANCE_KEY,
    VECTOR_STORE_FILTER_EXPRESSION_KEY,
    Document,
    LexicalQuery,
    Query,
    RetrievalOptions,
    RetrieverMode,
    SearchHit,
    SimilarityMetric,
)

logger = logging.getLogger("hybrid_rag.retriever")

# Payload keys that never become document metadata
_INTERNAL_PAYLOAD_KEYS = {"_point_id"}


class DocumentRetriever(ABC):
    """Retrieves documents relevant to a query"""

    @abstractmethod
    def retrieve(self, query: Query, options: Optional[RetrievalOptions] = None) -> list[Document]:
        pass


class HybridDocumentRetriever(DocumentRetriever):
    """Retriever that also accepts a pre-built filter and lexical clause"""

    @abstractmethod
    def retrieve_with_queries(
        self,
        query: Query,
        filter_query: Optional[FilterExpression],
        lexical_query: Optional[LexicalQuery],
    ) -> list[Document]:
        """
        Args:
            query: Query whose text is embedded for the KNN branch
            filter_query: Filter applied to both branches (None = match everything)
            lexical_query: Lexical clause (None = match-all lexical clause)
        """
        pass


def _embed(embedder: Embedder, text: str) -> list[float]:
    try:
        return embedder.embed(text)
    except Exception as e:
        raise EmbeddingError(f"Failed to embed query: {e}") from e


def hit_metadata(hit: SearchHit) -> dict:
    """Flatten a hit payload into document metadata (nested metadata wins, content excluded)"""
    metadata = {}
    nested = {}
    for key, value in hit.payload.items():
        if key in _INTERNAL_PAYLOAD_KEYS:
            continue
        if key == "metadata" and isinstance(value, dict):
            nested = value
            continue
        if isinstance(value, str) and value == hit.text:
            continue
        metadata[key] = value
    metadata.update(nested)
    return metadata


class HybridRetriever(HybridDocumentRetriever):
    """
    Hybrid lexical + vector retriever

    Per query:
    1. Resolve the filter (options, then context, then the configured supplier)
    2. Embed the query text (KNN / HYBRID modes)
    3. Issue one HybridSearchRequest; RRF applies only in HYBRID mode with use_rrf
    4. Normalize scores into relevance and distance
    """

    def __init__(
        self,
        index: SearchIndex,
        embedder: Optional[Embedder] = None,
        config: Optional[RetrieverConfig] = None,
    ):
        self.config = config or RetrieverConfig()
        if self.config.mode != RetrieverMode.BM25 and embedder is None:
            raise ValueError(f"{self.config.mode.value} mode requires an embedder")

        self.index = index
        self.embedder = embedder
        self._resolver = FilterResolver(default_supplier=self.config.default_filter)
        self._normalizer = ScoreNormalizer(self.config.similarity)

    def retrieve(self, query: Query, options: Optional[RetrievalOptions] = None) -> list[Document]:
        if query is None:
            raise ValueError("query cannot be None")

        # Parse errors surface here, before any I/O
        filter_expression = self._resolver.resolve(query, options)
        lexical_field = self._resolver.resolve_lexical_field(query, options)
        lexical_query = LexicalQuery(text=escape_query_text(query.text), field=lexical_field)

        return self._search(query, filter_expression, lexical_query)

    def retrieve_with_queries(
        self,
        query: Query,
        filter_query: Optional[FilterExpression],
        lexical_query: Optional[LexicalQuery],
    ) -> list[Document]:
        if query is None:
            raise ValueError("query cannot be None")
        return self._search(query, filter_query, lexical_query)

    def _request_threshold(self) -> float:
        threshold = self.config.similarity_threshold
        if self.config.similarity == SimilarityMetric.L2_NORM:
            # l2 similarity is a maximum distance
            return 1.0 - threshold
        return threshold

    def build_request(
        self,
        query_vector: Optional[list[float]],
        filter_expression: Optional[FilterExpression],
        lexical_query: Optional[LexicalQuery],
    ) -> HybridSearchRequest:
        config = self.config
        knn_enabled = config.mode in (RetrieverMode.KNN, RetrieverMode.HYBRID)
        lexical_enabled = config.mode in (RetrieverMode.BM25, RetrieverMode.HYBRID)

        return HybridSearchRequest(
            index_name=config.index_name,
            size=config.top_k,
            knn_enabled=knn_enabled,
            lexical_enabled=lexical_enabled,
            vector_field=config.vector_field,
            query_vector=query_vector if knn_enabled else None,
            k=config.neighbors_num,
            num_candidates=config.candidate_num,
            similarity_threshold=self._request_threshold(),
            filter_expression=filter_expression,
            lexical_field=lexical_query.field if lexical_query else "",
            lexical_text=lexical_query.text if lexical_query else None,
            knn_boost=config.knn_bias,
            bm25_boost=config.bm25_bias,
            rrf=RrfParams(config.rank_constant, config.rank_window_size) if config.rrf_enabled else None,
        )

    def _search(
        self,
        query: Query,
        filter_expression: Optional[FilterExpression],
        lexical_query: Optional[LexicalQuery],
    ) -> list[Document]:
        query_vector = None
        if self.config.mode != RetrieverMode.BM25:
            query_vector = _embed(self.embedder, query.text)

        request = self.build_request(query_vector, filter_expression, lexical_query)
        logger.debug(f"[HYBRID] Search request: {request.describe()}")

        try:
            hits = self.index.search(request)
        except HybridRagError:
            raise
        except Exception as e:
            raise RetrievalIOError(f"Hybrid search on '{request.index_name}' failed: {e}") from e

        rrf_used = request.rrf is not None
        documents = [self._to_document(hit, rrf_used) for hit in hits]
        logger.debug(f"[HYBRID] {len(documents)} documents (rrf={rrf_used}, mode={self.config.mode.value})")
        return documents

    def _to_document(self, hit: SearchHit, rrf_used: bool) -> Document:
        score, distance = self._normalizer.score_and_distance(hit.score, rrf_used)
        metadata = hit_metadata(hit)
        metadata[DISTANCE_KEY] = distance
        return Document(id=hit.id, text=hit.text, metadata=metadata, score=score)


class HyDeRetriever(DocumentRetriever):
    """
    Dense-only retriever that searches with a HyDE passage instead of the question

    The filter comes from RetrievalOptions, the vector_store_filter_expression
    context key, or the default supplier, resolved against the original query.
    """

    def __init__(
        self,
        hyde_transformer: HyDeTransformer,
        qdrant_store: QdrantStore,
        embedder: Embedder,
        similarity_threshold: Optional[float] = None,
        top_k: Optional[int] = None,
        filter_expression: Optional[FilterSupplier] = None,
    ):
        if hyde_transformer is None:
            raise ValueError("hyde_transformer must not be None")
        if qdrant_store is None:
            raise ValueError("qdrant_store must not be None")
        if similarity_threshold is not None and similarity_threshold < 0:
            raise ValueError("similarity_threshold must not be negative")
        if top_k is not None and top_k < 0:
            raise ValueError("top_k must not be negative")

        self.hyde_transformer = hyde_transformer
        self.qdrant_store = qdrant_store
        self.embedder = embedder
        self.similarity_threshold = SIMILARITY_THRESHOLD_ACCEPT_ALL if similarity_threshold is None else similarity_threshold
        # 0 or None selects the default
        self.top_k = top_k or 4
        self._resolver = FilterResolver(
            default_supplier=filter_expression,
            context_key=VECTOR_STORE_FILTER_EXPRESSION_KEY,
        )

    def retrieve(self, query: Query, options: Optional[RetrievalOptions] = None) -> list[Document]:
        if query is None:
            raise ValueError("query must not be None")

        hyde_query = self.hyde_transformer.transform(query)
        filter_expression = self._resolver.resolve(query, options)
        query_vector = _embed(self.embedder, hyde_query.text)

        try:
            hits = self.qdrant_store.search_dense(
                query_vector=query_vector,
                top_k=self.top_k,
                filter_expression=filter_expression,
                score_threshold=self.similarity_threshold or None,
            )
        except Exception as e:
            raise RetrievalIOError(f"Vector search on '{self.qdrant_store.collection_name}' failed: {e}") from e

        documents = []
        for hit in hits:
            metadata = hit_metadata(hit)
            metadata[DISTANCE_KEY] = 1.0 - hit.score
            documents.append(Document(id=hit.id, text=hit.text, metadata=metadata, score=hit.score))

        logger.debug(f"[HyDE] {len(documents)} documents")
        return documents
