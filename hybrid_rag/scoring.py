"""
Score normalization
Maps index scores (Elasticsearch scale) back to relevance and distance
"""
import math

from hybrid_rag.types import SimilarityMetric


class ScoreNormalizer:
    """
    Converts raw hit scores into (score, distance)

    Without RRF the index reports cosine/dot similarity as (1 + s) / 2 and L2 as
    1 / (1 + d²); relevance undoes that scaling and distance = 1 - relevance.
    With RRF the fused score is kept as-is and also used as distance.
    """

    def __init__(self, similarity: SimilarityMetric = SimilarityMetric.COSINE):
        self.similarity = SimilarityMetric(similarity)

    def relevance(self, raw: float) -> float:
        if self.similarity == SimilarityMetric.L2_NORM:
            if raw >= 1.0:
                return 1.0
            if raw <= 0.0:
                # 1/s - 1 is undefined; treat as the least relevant value
                return 0.0
            return 1.0 - math.sqrt(1.0 / raw - 1.0)
        return 2.0 * raw - 1.0

    def score_and_distance(self, raw: float, rrf_used: bool) -> tuple[float, float]:
        if rrf_used:
            return raw, raw
        relevance = self.relevance(raw)
        return relevance, 1.0 - relevance
