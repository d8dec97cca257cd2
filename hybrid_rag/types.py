"""
Type definitions for the Hybrid Retrieval Engine
"""
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

from langchain_core.messages import BaseMessage

from hybrid_rag.filters import FilterExpression


# Well-known query context keys
FILTER_EXPRESSION_KEY = "hybrid_rag_filter_expression"
LEXICAL_FIELD_KEY = "hybrid_rag_bm25_field"
VECTOR_STORE_FILTER_EXPRESSION_KEY = "vector_store_filter_expression"
DOCUMENT_CONTEXT_KEY = "hybrid_rag_document_context"

# Document metadata keys
DISTANCE_KEY = "distance"


class RetrieverMode(str, Enum):
    """Which search branches a HybridRetriever issues"""
    BM25 = "BM25"
    KNN = "KNN"
    HYBRID = "HYBRID"


class SimilarityMetric(str, Enum):
    """Vector similarity function configured on the index"""
    COSINE = "cosine"
    DOT_PRODUCT = "dot_product"
    L2_NORM = "l2_norm"


def _freeze(context: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(dict(context or {}))


@dataclass(frozen=True)
class Query:
    """Immutable query threaded through every pipeline stage"""
    text: str
    history: tuple[BaseMessage, ...] = ()
    context: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.text is None:
            raise ValueError("query text cannot be None")
        object.__setattr__(self, "history", tuple(self.history or ()))
        object.__setattr__(self, "context", _freeze(self.context))

    def mutate(self, **changes) -> "Query":
        """Return a copy with the given fields replaced"""
        return replace(self, **changes)


@dataclass
class Document:
    """Retrieved unit of content"""
    id: Union[str, int]
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)
    score: Optional[float] = None

    @property
    def distance(self) -> Optional[float]:
        return self.metadata.get(DISTANCE_KEY)

    def mutate(self, **changes) -> "Document":
        """Return a copy with the given fields replaced (metadata is copied)"""
        changes.setdefault("metadata", dict(self.metadata))
        return replace(self, **changes)


@dataclass
class SearchHit:
    """Raw hit returned by a search backend"""
    id: Union[str, int]
    text: str
    score: float
    source: str  # "dense" | "sparse" | "fused" | "combined"
    payload: dict[str, Any] = field(default_factory=dict)

    def __hash__(self):
        return hash(self.id)

    def __eq__(self, other):
        if not isinstance(other, SearchHit):
            return False
        return self.id == other.id


@dataclass(frozen=True)
class LexicalQuery:
    """Pre-built lexical clause: match `text` against `field` ("" = index default)"""
    text: str
    field: str = ""


@dataclass(frozen=True)
class RetrievalOptions:
    """
    Per-request overrides passed alongside a Query

    filter_expression accepts a structured FilterExpression (used verbatim) or
    filter text (parsed). lexical_field selects the field for the BM25 branch.
    """
    filter_expression: Union[FilterExpression, str, None] = None
    lexical_field: Optional[str] = None

    @classmethod
    def from_context(
        cls,
        context: Mapping[str, Any],
        filter_key: str = FILTER_EXPRESSION_KEY,
        lexical_field_key: str = LEXICAL_FIELD_KEY,
    ) -> "RetrievalOptions":
        lexical_field = context.get(lexical_field_key)
        if not isinstance(lexical_field, str):
            lexical_field = None
        return cls(
            filter_expression=context.get(filter_key),
            lexical_field=lexical_field,
        )

