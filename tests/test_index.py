"""
Tests for LocalHybridIndex (mocked Qdrant, real BM25)
"""
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest

from hybrid_rag.filters import parse_filter
from hybrid_rag.index import HybridSearchRequest, LocalHybridIndex, RrfParams
from hybrid_rag.types import SearchHit, SimilarityMetric


PAYLOADS = [
    {"_point_id": 1, "text": "quasar telescopes observe distant galaxies",
     "metadata": {"lang": "en", "title": "Quasars"}},
    {"_point_id": 2, "text": "sourdough bread needs patient fermentation",
     "metadata": {"lang": "en", "title": "Baking"}},
    {"_point_id": 3, "text": "quasar jets emit radio waves",
     "metadata": {"lang": "pt", "title": "Radio"}},
    {"_point_id": 4, "text": "chess openings reward careful preparation", "metadata": {"lang": "en"}},
    {"_point_id": 5, "text": "glaciers carve valleys over millennia", "metadata": {"lang": "en"}},
]


def dense_hits(*scored):
    return [
        SearchHit(id=pid, text=PAYLOADS[pid - 1]["text"], score=score, source="dense",
                  payload=dict(PAYLOADS[pid - 1]))
        for pid, score in scored
    ]


@pytest.fixture
def qdrant():
    store = MagicMock()
    store.content_field = "text"
    store.metadata_field = "metadata"
    store.get_all_payloads.return_value = [dict(p) for p in PAYLOADS]
    store.search_dense.return_value = dense_hits((2, 0.8), (1, 0.6))
    return store


def knn_request(**overrides):
    params = dict(index_name="docs", size=5, knn_enabled=True, query_vector=[0.1, 0.2],
                  k=10, num_candidates=20)
    params.update(overrides)
    return HybridSearchRequest(**params)


def lexical_request(**overrides):
    params = dict(index_name="docs", size=5, lexical_enabled=True, lexical_text="quasar")
    params.update(overrides)
    return HybridSearchRequest(**params)


class TestKnnBranch:
    """Dense search through Qdrant"""

    def test_cosine_scores_and_params(self, qdrant):
        index = LocalHybridIndex(qdrant)

        hits = index.search(knn_request())

        qdrant.search_dense.assert_called_once_with(
            query_vector=[0.1, 0.2],
            top_k=10,
            filter_expression=None,
            score_threshold=None,
            num_candidates=20,
            vector_name=None,
            collection_name="docs",
        )
        assert [h.id for h in hits] == [2, 1]
        assert hits[0].score == pytest.approx(0.9)
        assert hits[1].score == pytest.approx(0.8)

    def test_positive_threshold_passed_through(self, qdrant):
        LocalHybridIndex(qdrant).search(knn_request(similarity_threshold=0.3))
        assert qdrant.search_dense.call_args.kwargs["score_threshold"] == 0.3

    def test_l2_distance_scale(self, qdrant):
        qdrant.search_dense.return_value = dense_hits((1, 1.0))
        index = LocalHybridIndex(qdrant, similarity=SimilarityMetric.L2_NORM)

        hits = index.search(knn_request(similarity_threshold=0.8))

        assert qdrant.search_dense.call_args.kwargs["score_threshold"] == 0.8
        assert hits[0].score == pytest.approx(0.5)

    def test_knn_boost(self, qdrant):
        hits = LocalHybridIndex(qdrant).search(knn_request(knn_boost=2.0))
        assert hits[0].score == pytest.approx(1.8)

    def test_missing_vector(self, qdrant):
        with pytest.raises(ValueError):
            LocalHybridIndex(qdrant).search(knn_request(query_vector=None))


class TestLexicalBranch:
    """BM25 over the collection payloads"""

    def test_match_and_filter(self, qdrant):
        index = LocalHybridIndex(qdrant)

        assert {h.id for h in index.search(lexical_request())} == {1, 3}

        filtered = index.search(lexical_request(filter_expression=parse_filter("lang == 'en'")))
        assert [h.id for h in filtered] == [1]

        # BM25 index is built once, lazily
        qdrant.get_all_payloads.assert_called_once()
        qdrant.search_dense.assert_not_called()

    def test_lexical_field(self, qdrant):
        hits = LocalHybridIndex(qdrant).search(lexical_request(lexical_text="radio", lexical_field="title"))
        assert [h.id for h in hits] == [3]

    def test_match_all(self, qdrant):
        hits = LocalHybridIndex(qdrant).search(
            lexical_request(lexical_text=None, filter_expression=parse_filter("lang == 'pt'"))
        )

        assert [h.id for h in hits] == [3]
        assert hits[0].score == pytest.approx(1.0)

    def test_concurrent_first_searches_build_once(self, qdrant):
        def slow_scroll():
            time.sleep(0.05)
            return [dict(p) for p in PAYLOADS]

        qdrant.get_all_payloads.side_effect = slow_scroll
        index = LocalHybridIndex(qdrant)
        barrier = threading.Barrier(4)

        def search():
            barrier.wait()
            return index.search(lexical_request())

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = [f.result() for f in [pool.submit(search) for _ in range(4)]]

        assert qdrant.get_all_payloads.call_count == 1
        assert all({h.id for h in hits} == {1, 3} for hits in results)

    def test_empty_collection_scrolled_once(self, qdrant):
        qdrant.get_all_payloads.return_value = []
        index = LocalHybridIndex(qdrant)

        assert index.search(lexical_request()) == []
        assert index.search(lexical_request(lexical_text=None)) == []

        qdrant.get_all_payloads.assert_called_once()

    def test_refresh_rebuilds(self, qdrant):
        index = LocalHybridIndex(qdrant)
        index.search(lexical_request())

        qdrant.get_all_payloads.return_value = [dict(PAYLOADS[1])]
        index.refresh_lexical_index()

        assert index.search(lexical_request()) == []
        assert qdrant.get_all_payloads.call_count == 2


class TestHybrid:
    """Both branches in one request"""

    def test_rrf(self, qdrant):
        request = knn_request(lexical_enabled=True, lexical_text="quasar", size=2, rrf=RrfParams(60, 10))

        hits = LocalHybridIndex(qdrant).search(request)

        # doc 1 is in both lists
        assert len(hits) == 2
        assert hits[0].id == 1
        assert all(h.source == "fused" for h in hits)
        assert hits[0].score > hits[1].score

    def test_combined_scores(self, qdrant):
        request = knn_request(lexical_enabled=True, lexical_text="quasar")

        hits = LocalHybridIndex(qdrant).search(request)

        by_id = {h.id: h for h in hits}
        assert set(by_id) == {1, 2, 3}
        assert by_id[1].score > by_id[1].payload["dense_score"]
        assert by_id[2].score == pytest.approx(0.9)
