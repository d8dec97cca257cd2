"""
Tests for Settings and RetrieverConfig
"""
from dataclasses import FrozenInstanceError

import pytest

from hybrid_rag.config import RetrieverConfig, Settings
from hybrid_rag.errors import ConfigurationError
from hybrid_rag.filters import parse_filter
from hybrid_rag.types import RetrieverMode, SimilarityMetric


class TestRetrieverConfigDefaults:
    """Defaults and fallbacks"""

    def test_defaults(self):
        config = RetrieverConfig()

        assert config.similarity_threshold == 0.0
        assert config.neighbors_num == 50
        assert config.candidate_num == 100
        assert config.top_k == 50
        assert config.rank_window_size == 50
        assert config.rank_constant == 60
        assert config.bm25_bias == 1.0
        assert config.knn_bias == 1.0
        assert config.mode == RetrieverMode.HYBRID
        assert config.use_rrf is False
        assert config.similarity == SimilarityMetric.COSINE
        assert config.default_filter() is None

    def test_zero_values_fall_back(self):
        config = RetrieverConfig(neighbors_num=0, candidate_num=0, top_k=0, rank_constant=0,
                                 bm25_bias=0, knn_bias=0)

        assert config.neighbors_num == 50
        assert config.candidate_num == 100
        assert config.top_k == 50
        assert config.rank_constant == 60
        assert config.bm25_bias == 1.0
        assert config.knn_bias == 1.0

    def test_rank_window_defaults_to_top_k(self):
        config = RetrieverConfig(top_k=7)
        assert config.rank_window_size == 7

    def test_string_enums_accepted(self):
        config = RetrieverConfig(mode="KNN", similarity="l2_norm")
        assert config.mode == RetrieverMode.KNN
        assert config.similarity == SimilarityMetric.L2_NORM


class TestRetrieverConfigValidation:
    """Invariants raise ConfigurationError at construction"""

    def test_window_smaller_than_top_k(self):
        with pytest.raises(ConfigurationError):
            RetrieverConfig(top_k=10, rank_window_size=5)

    def test_negative_threshold(self):
        with pytest.raises(ConfigurationError):
            RetrieverConfig(similarity_threshold=-0.1)

    @pytest.mark.parametrize("field", ["neighbors_num", "candidate_num", "top_k", "rank_constant"])
    def test_negative_counts(self, field):
        with pytest.raises(ConfigurationError):
            RetrieverConfig(**{field: -1})

    def test_config_is_frozen(self):
        config = RetrieverConfig()
        with pytest.raises(FrozenInstanceError):
            config.top_k = 3


class TestRrfGate:
    """RRF only applies when both branches run"""

    def test_hybrid_with_rrf(self):
        assert RetrieverConfig(use_rrf=True).rrf_enabled

    @pytest.mark.parametrize("mode", [RetrieverMode.BM25, RetrieverMode.KNN])
    def test_single_branch_ignores_rrf(self, mode):
        assert not RetrieverConfig(use_rrf=True, mode=mode).rrf_enabled


def test_filter_supplier_evaluated_each_time():
    calls = []

    def supplier():
        calls.append(1)
        return parse_filter(f"tenant == 't{len(calls)}'")

    config = RetrieverConfig(filter_expression=supplier)

    assert config.default_filter() == parse_filter("tenant == 't1'")
    assert config.default_filter() == parse_filter("tenant == 't2'")
    assert len(calls) == 2


def test_from_settings():
    settings = Settings(
        _env_file=None,
        top_k=5,
        rank_window_size=10,
        use_rrf=True,
        retriever_mode="HYBRID",
        similarity="dot_product",
        collection_name="docs",
        vector_field="embedding",
    )

    config = RetrieverConfig.from_settings(settings)

    assert config.top_k == 5
    assert config.rank_window_size == 10
    assert config.rrf_enabled
    assert config.similarity == SimilarityMetric.DOT_PRODUCT
    assert config.index_name == "docs"
    assert config.vector_field == "embedding"
