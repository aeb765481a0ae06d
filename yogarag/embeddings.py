"""
yogarag/embeddings.py - Embedding service
=========================================

Wraps a sentence-transformers model that maps text to a fixed-dimension,
L2-normalized vector. The model runs locally (no API key needed) and is
loaded lazily on first use.

Anything with ``embed(text)`` and ``embed_many(texts)`` can stand in for
the embedder (the tests use small fakes).
"""

import logging
import threading
from typing import Optional

import numpy as np
from sentence_transformers import SentenceTransformer

from yogarag.config import EMBEDDING_MODEL_NAME
from yogarag.errors import EmbeddingError

logger = logging.getLogger(__name__)


class SentenceTransformerEmbedder:
    """
    Text -> vector using sentence-transformers with mean pooling and
    normalization (the model's default pipeline for all-MiniLM-L6-v2).
    """

    def __init__(self, model_name: str = EMBEDDING_MODEL_NAME):
        self.model_name = model_name
        self._model: Optional[SentenceTransformer] = None
        self._lock = threading.Lock()

    @property
    def model(self) -> SentenceTransformer:
        """Lazy-load the model."""
        if self._model is None:
            with self._lock:
                if self._model is None:
                    logger.info("Loading embedding model: %s", self.model_name)
                    try:
                        self._model = SentenceTransformer(self.model_name)
                    except Exception as e:
                        raise EmbeddingError(
                            f"Could not load embedding model {self.model_name}: {e}"
                        ) from e
                    logger.info("Embedding model loaded")
        return self._model

    def warm_up(self) -> None:
        """Load the model ahead of the first query."""
        _ = self.model

    def embed_many(self, texts: list[str]) -> np.ndarray:
        """
        Convert texts to embedding vectors.

        Returns:
            Array of shape (len(texts), dimension)

        Raises:
            EmbeddingError: If the model fails
        """
        if not texts:
            return np.empty((0, 0), dtype=np.float32)

        model = self.model
        try:
            embeddings = model.encode(
                texts,
                normalize_embeddings=True,
                convert_to_numpy=True,
                show_progress_bar=False,
            )
        except Exception as e:
            raise EmbeddingError(f"Embedding failed: {e}") from e

        return np.asarray(embeddings, dtype=np.float32)

    def embed(self, text: str) -> np.ndarray:
        """Embed a single text. Returns an array of shape (dimension,)."""
        return self.embed_many([text])[0]


# Global embedder instance (lazy loaded)
_embedder: Optional[SentenceTransformerEmbedder] = None


def get_embedder() -> SentenceTransformerEmbedder:
    """Get or create the shared embedder."""
    global _embedder
    if _embedder is None:
        _embedder = SentenceTransformerEmbedder()
    return _embedder
