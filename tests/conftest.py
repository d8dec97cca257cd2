"""
Shared fakes for the hybrid_rag tests
"""
import pytest

from hybrid_rag.embeddings import Embedder
from hybrid_rag.index import HybridSearchRequest, SearchIndex
from hybrid_rag.types import SearchHit


class FakeEmbedder(Embedder):
    """Returns a fixed vector and records every embedded text"""

    def __init__(self, vector=None, error=None):
        self.vector = vector or [0.1, 0.2, 0.3]
        self.error = error
        self.calls = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return list(self.vector)


class FakeIndex(SearchIndex):
    """Captures requests and returns canned hits"""

    def __init__(self, hits=None, error=None):
        self.hits = hits or []
        self.error = error
        self.requests: list[HybridSearchRequest] = []

    @property
    def last_request(self) -> HybridSearchRequest:
        return self.requests[-1]

    def search(self, request: HybridSearchRequest) -> list[SearchHit]:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return [SearchHit(h.id, h.text, h.score, h.source, dict(h.payload)) for h in self.hits]


def make_hit(hit_id, score: float, text: str = "", source: str = "dense", **metadata) -> SearchHit:
    """Helper to create a SearchHit shaped like a stored payload"""
    text = text or f"document {hit_id}"
    return SearchHit(
        id=hit_id,
        text=text,
        score=score,
        source=source,
        payload={"text": text, "metadata": metadata},
    )


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def index():
    return FakeIndex()
