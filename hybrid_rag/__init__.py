"""
Hybrid RAG - Hybrid Retrieval Engine
BM25 (rank-bm25) + KNN (Qdrant) + RRF or boosted fusion, wrapped in a retrieval-augmented chat pipeline
"""
from hybrid_rag.advisors import (
    AdvisedRequest,
    AdvisedResponse,
    ChatResponse,
    HybridSearchAdvisor,
    MultiQueryRetrieverAdvisor,
    PipelineStage,
    chat_model_call,
)
from hybrid_rag.config import RetrieverConfig, Settings, get_settings
from hybrid_rag.errors import (
    ConfigurationError,
    EmbeddingError,
    FilterParseError,
    HybridRagError,
    RetrievalIOError,
    RetrievalPipelineError,
    TransformationError,
)
from hybrid_rag.index import HybridSearchRequest, LocalHybridIndex, SearchIndex
from hybrid_rag.retriever import HybridRetriever, HyDeRetriever
from hybrid_rag.types import Document, Query, RetrievalOptions, RetrieverMode, SimilarityMetric

__all__ = [
    "AdvisedRequest", "AdvisedResponse", "ChatResponse", "HybridSearchAdvisor",
    "MultiQueryRetrieverAdvisor", "PipelineStage", "chat_model_call",
    "RetrieverConfig", "Settings", "get_settings",
    "ConfigurationError", "EmbeddingError", "FilterParseError", "HybridRagError",
    "RetrievalIOError", "RetrievalPipelineError", "TransformationError",
    "HybridSearchRequest", "LocalHybridIndex", "SearchIndex",
    "HybridRetriever", "HyDeRetriever",
    "Document", "Query", "RetrievalOptions", "RetrieverMode", "SimilarityMetric",
]
__version__ = "1.0.0"
