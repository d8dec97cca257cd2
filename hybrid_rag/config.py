"""
Configuration for the Hybrid Retrieval Engine
Settings load from environment variables; RetrieverConfig is the validated per-retriever struct
"""
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Callable, Optional

from pydantic_settings import BaseSettings

from hybrid_rag.errors import ConfigurationError
from hybrid_rag.filters import FilterExpression
from hybrid_rag.types import RetrieverMode, SimilarityMetric


# Defaults mirrored by Settings and RetrieverConfig
SIMILARITY_THRESHOLD_ACCEPT_ALL = 0.0
DEFAULT_NEIGHBORS_NUM = 50
DEFAULT_CANDIDATE_NUM = 100
DEFAULT_TOP_K = 50
DEFAULT_RANK_CONSTANT = 60
DEFAULT_BM25_BIAS = 1.0
DEFAULT_KNN_BIAS = 1.0


class Settings(BaseSettings):
    """Configuration loaded from environment variables"""

    # Qdrant
    qdrant_url: str = "http://localhost:6333"
    qdrant_api_key: str | None = None
    collection_name: str = "rag_chunks"
    vector_field: str = ""  # unnamed default vector
    content_field: str = "text"

    # Embedding Model (Bi-Encoder)
    embed_model: str = "intfloat/multilingual-e5-base"

    # CrossEncoder for Reranking
    cross_encoder_model: str = "cross-encoder/ms-marco-MiniLM-L-6-v2"

    # Language model (OpenAI-compatible endpoint)
    llm_base_url: str = "http://localhost:1234/v1"
    llm_api_key: str = "lm-studio"
    llm_model: str = ""
    llm_temperature: float = 0.0

    # Retriever defaults
    similarity_threshold: float = SIMILARITY_THRESHOLD_ACCEPT_ALL
    neighbors_num: int = DEFAULT_NEIGHBORS_NUM
    candidate_num: int = DEFAULT_CANDIDATE_NUM
    top_k: int = DEFAULT_TOP_K
    rank_window_size: int = 0  # 0 -> same as top_k
    rank_constant: int = DEFAULT_RANK_CONSTANT
    bm25_bias: float = DEFAULT_BM25_BIAS
    knn_bias: float = DEFAULT_KNN_BIAS
    retriever_mode: RetrieverMode = RetrieverMode.HYBRID
    use_rrf: bool = False
    similarity: SimilarityMetric = SimilarityMetric.COSINE

    # Pipeline
    retrieval_max_workers: int = 4

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


def _positive_or_default(name: str, value: Optional[int], default: int) -> int:
    if value is None or value == 0:
        return default
    if value < 0:
        raise ConfigurationError(f"{name} must be greater than 0, got {value}")
    return value


@dataclass(frozen=True)
class RetrieverConfig:
    """
    Immutable settings for one HybridRetriever

    Zero values fall back to the defaults above (rank_window_size falls back to top_k).
    Invariants are checked on construction and raise ConfigurationError:
    rank_window_size >= top_k >= 1, similarity_threshold >= 0.

    filter_expression is a supplier evaluated on every request, so it can depend on
    request-scoped state such as the current tenant.
    """
    similarity_threshold: float = SIMILARITY_THRESHOLD_ACCEPT_ALL
    neighbors_num: int = DEFAULT_NEIGHBORS_NUM
    candidate_num: int = DEFAULT_CANDIDATE_NUM
    top_k: int = DEFAULT_TOP_K
    rank_window_size: int = 0
    rank_constant: int = DEFAULT_RANK_CONSTANT
    bm25_bias: float = DEFAULT_BM25_BIAS
    knn_bias: float = DEFAULT_KNN_BIAS
    mode: RetrieverMode = RetrieverMode.HYBRID
    use_rrf: bool = False
    similarity: SimilarityMetric = SimilarityMetric.COSINE
    filter_expression: Optional[Callable[[], Optional[FilterExpression]]] = field(default=None, compare=False)
    index_name: str = ""
    vector_field: str = ""

    def __post_init__(self):
        # frozen dataclass: normalize through object.__setattr__
        def _set(name, value):
            object.__setattr__(self, name, value)

        threshold = self.similarity_threshold if self.similarity_threshold is not None else SIMILARITY_THRESHOLD_ACCEPT_ALL
        if threshold < 0:
            raise ConfigurationError(f"similarity_threshold must not be negative, got {threshold}")
        _set("similarity_threshold", float(threshold))

        _set("neighbors_num", _positive_or_default("neighbors_num", self.neighbors_num, DEFAULT_NEIGHBORS_NUM))
        _set("candidate_num", _positive_or_default("candidate_num", self.candidate_num, DEFAULT_CANDIDATE_NUM))
        _set("top_k", _positive_or_default("top_k", self.top_k, DEFAULT_TOP_K))
        _set("rank_window_size", _positive_or_default("rank_window_size", self.rank_window_size, self.top_k))
        _set("rank_constant", _positive_or_default("rank_constant", self.rank_constant, DEFAULT_RANK_CONSTANT))

        if self.rank_window_size < self.top_k:
            raise ConfigurationError(
                f"rank_window_size must be >= top_k (rank_window_size={self.rank_window_size}, top_k={self.top_k})"
            )

        _set("bm25_bias", float(self.bm25_bias) if self.bm25_bias else DEFAULT_BM25_BIAS)
        _set("knn_bias", float(self.knn_bias) if self.knn_bias else DEFAULT_KNN_BIAS)
        _set("mode", RetrieverMode(self.mode) if self.mode is not None else RetrieverMode.HYBRID)
        _set("similarity", SimilarityMetric(self.similarity) if self.similarity is not None else SimilarityMetric.COSINE)

    @property
    def rrf_enabled(self) -> bool:
        """RRF only applies when both branches run"""
        return self.use_rrf and self.mode == RetrieverMode.HYBRID

    def default_filter(self) -> Optional[FilterExpression]:
        """Evaluate the lazy default filter (None means match everything)"""
        if self.filter_expression is None:
            return None
        return self.filter_expression()

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        filter_expression: Optional[Callable[[], Optional[FilterExpression]]] = None,
    ) -> "RetrieverConfig":
        settings = settings or get_settings()
        return cls(
            similarity_threshold=settings.similarity_threshold,
            neighbors_num=settings.neighbors_num,
            candidate_num=settings.candidate_num,
            top_k=settings.top_k,
            rank_window_size=settings.rank_window_size,
            rank_constant=settings.rank_constant,
            bm25_bias=settings.bm25_bias,
            knn_bias=settings.knn_bias,
            mode=settings.retriever_mode,
            use_rrf=settings.use_rrf,
            similarity=settings.similarity,
            filter_expression=filter_expression,
            index_name=settings.collection_name,
            vector_field=settings.vector_field,
        )
