"""
Embedding generator for semantic search.

Transforms ad text into vector embeddings using Sentence Transformers.
The model is loaded lazily on first use and shared by all callers of
the same generator instance.
"""

import logging
import threading
from typing import TYPE_CHECKING, Optional, Sequence

import numpy as np

if TYPE_CHECKING:
    from sentence_transformers import SentenceTransformer
    from ..models import Ad

logger = logging.getLogger(__name__)


class ModelUnavailable(Exception):
    """Raised when the embedding model cannot be loaded."""
    pass


# Fields that carry meaning for similarity, in embedding order
EMBEDDING_FIELDS = (
    "account",
    "brand",
    "industry",
    "campaign",
    "creative_name",
    "format",
    "template",
    "features",
)


def compose_ad_text(ad: "Ad") -> str:
    """
    Create composite text for embedding.

    Joins the semantically meaningful fields with single spaces, skipping
    empty ones.
    """
    return " ".join(filter(None, (getattr(ad, name) for name in EMBEDDING_FIELDS)))


class EmbeddingGenerator:
    """
    Generates semantic embeddings for ads and queries.

    Uses Sentence Transformers with all-MiniLM-L6-v2 model (384 dimensions).
    Construct one instance per process and pass it to the components that
    need it.

    Example:
        generator = EmbeddingGenerator()
        vector = generator.embed("luxury car interstitial with video")
        matrix = generator.embed_ads(ads)
    """

    MODEL_NAME = "all-MiniLM-L6-v2"
    DIMENSION = 384

    def __init__(
        self,
        model_name: Optional[str] = None,
        device: Optional[str] = None,
        dimension: Optional[int] = None,
    ):
        """
        Initialize generator with lazy model loading.

        Args:
            model_name: Override default model (e.g., for testing)
            device: 'cpu', 'cuda', 'mps', or None for auto-detect
            dimension: Expected embedding size (defaults to DIMENSION)
        """
        self._model: Optional["SentenceTransformer"] = None
        self._model_lock = threading.Lock()
        self.model_name = model_name or self.MODEL_NAME
        self.device = device
        self.dimension = dimension or self.DIMENSION

    def _load_model(self) -> "SentenceTransformer":
        from sentence_transformers import SentenceTransformer

        return SentenceTransformer(self.model_name, device=self.device)

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    @property
    def model(self) -> "SentenceTransformer":
        """
        Lazy load the model on first use.

        Concurrent first callers block on the lock; only one of them loads.
        A failed load leaves the generator unloaded so a later call can retry.

        Raises:
            ModelUnavailable: If the model cannot be loaded
        """
        if self._model is not None:
            return self._model

        with self._model_lock:
            if self._model is None:
                logger.info(f"Loading embedding model: {self.model_name}")
                try:
                    self._model = self._load_model()
                except Exception as e:
                    raise ModelUnavailable(
                        f"Failed to load embedding model {self.model_name}: {e}"
                    ) from e
                logger.info(f"Model loaded on device: {getattr(self._model, 'device', 'unknown')}")
        return self._model

    def embed(self, text: str) -> np.ndarray:
        """
        Generate a normalized embedding for one text.

        Returns:
            Array of shape (dimension,), float32
        """
        embedding = self.model.encode(text, normalize_embeddings=True)
        return np.asarray(embedding, dtype=np.float32)

    def embed_batch(
        self,
        texts: Sequence[str],
        batch_size: int = 32,
        show_progress: bool = False,
    ) -> np.ndarray:
        """
        Generate embeddings for many texts efficiently.

        Returns:
            Matrix of shape (len(texts), dimension), float32
        """
        if not texts:
            return np.empty((0, self.dimension), dtype=np.float32)

        embeddings = self.model.encode(
            list(texts),
            normalize_embeddings=True,
            batch_size=batch_size,
            show_progress_bar=show_progress,
        )
        return np.asarray(embeddings, dtype=np.float32)

    def embed_ads(self, ads: Sequence["Ad"], batch_size: int = 32) -> np.ndarray:
        """Embed the composed text of every ad, in order."""
        return self.embed_batch([compose_ad_text(ad) for ad in ads], batch_size=batch_size)
