"""
Embedding collaborators
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional

from hybrid_rag.config import get_settings

logger = logging.getLogger("hybrid_rag.embeddings")


class Embedder(ABC):
    """Turns text into a fixed-length vector"""

    @abstractmethod
    def embed(self, text: str) -> list[float]:
        pass


class SentenceTransformerEmbedder(Embedder):
    """Bi-encoder embeddings via sentence-transformers (model loaded lazily)"""

    def __init__(self, model_name: Optional[str] = None, device: Optional[str] = None):
        self.model_name = model_name or get_settings().embed_model
        self.device = device
        self._model = None

    def _ensure_model(self):
        if self._model is not None:
            return

        from sentence_transformers import SentenceTransformer
        self._model = SentenceTransformer(self.model_name, device=self.device)
        logger.info(f"✅ [EMBED] Loaded bi-encoder: {self.model_name}")

    def embed(self, text: str) -> list[float]:
        self._ensure_model()
        return self._model.encode(text, convert_to_numpy=True).tolist()
