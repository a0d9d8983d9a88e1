"""
Text Embeddings Module
Turns text into fixed-length dense vectors for indexing and search.

Two backends share the EmbeddingService interface:
- SentenceTransformerEmbeddings: a sentence-transformers model (production)
- HashingEmbeddings: token-hash bag of words, deterministic and model-free
  (development and tests)
"""
import re
from typing import List, Sequence

import numpy as np
from sentence_transformers import SentenceTransformer

from .config import settings
from .exceptions import EmbeddingError
from .logging_config import get_logger, timed

log = get_logger("embeddings")

Vector = List[float]


class EmbeddingService:
    """Base class: prefixes, batching contract and error wrapping."""

    def __init__(self, passage_prefix: str = None, query_prefix: str = None):
        self.passage_prefix = settings.passage_prefix if passage_prefix is None else passage_prefix
        self.query_prefix = settings.query_prefix if query_prefix is None else query_prefix

    @property
    def dimension(self) -> int:
        raise NotImplementedError

    def _encode(self, texts: List[str]) -> np.ndarray:
        raise NotImplementedError

    def _run(self, texts: List[str]) -> List[Vector]:
        if not texts:
            return []
        try:
            matrix = np.asarray(self._encode(texts), dtype="float32")
        except EmbeddingError:
            raise
        except Exception as e:
            log.error(f"Embedding backend failed for {len(texts)} texts: {e}")
            raise EmbeddingError(f"Embedding failed: {e}") from e

        if matrix.ndim != 2 or matrix.shape[0] != len(texts):
            raise EmbeddingError(
                f"Embedding backend returned shape {matrix.shape} for {len(texts)} texts"
            )
        return matrix.tolist()

    def embed(self, texts: Sequence[str]) -> List[Vector]:
        """One vector per passage, in input order."""
        return self._run([f"{self.passage_prefix}{t or ''}" for t in texts])

    def embed_query(self, text: str) -> Vector:
        """Vector for a single search query."""
        return self._run([f"{self.query_prefix}{text or ''}"])[0]


class SentenceTransformerEmbeddings(EmbeddingService):
    """Handles text embedding operations using sentence-transformers."""

    def __init__(self, model_name: str = None, batch_size: int = None, **kwargs):
        super().__init__(**kwargs)
        self.model_name = model_name or settings.embedding_model
        self.batch_size = batch_size or settings.embedding_batch_size
        log.info(f"Loading embedding model: {self.model_name}")
        self.model = SentenceTransformer(self.model_name)
        self._dimension = self.model.get_sentence_embedding_dimension()
        log.info(f"Embedding model loaded (dim={self._dimension})")

    @property
    def dimension(self) -> int:
        return self._dimension

    @timed(name="embeddings.encode")
    def _encode(self, texts: List[str]) -> np.ndarray:
        return self.model.encode(
            texts,
            batch_size=self.batch_size,
            convert_to_numpy=True,
            normalize_embeddings=True,
            show_progress_bar=False,
        )


_TOKEN_STRIP = re.compile(r"[^a-z0-9\u0600-\u06FF\s]")


def _token_hash(token: str) -> int:
    h = 5381
    for ch in token:
        h = (((h << 5) + h) ^ ord(ch)) & 0xFFFFFFFF
    return h


class HashingEmbeddings(EmbeddingService):
    """Deterministic hashed bag-of-words vectors, L2-normalized."""

    def __init__(self, dimension: int = None, **kwargs):
        super().__init__(**kwargs)
        self._dimension = dimension or settings.hashing_dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    def _encode_one(self, text: str) -> np.ndarray:
        vec = np.zeros(self._dimension, dtype="float32")
        for token in _TOKEN_STRIP.sub(" ", text.lower()).split():
            vec[_token_hash(token) % self._dimension] += 1.0
        norm = float(np.linalg.norm(vec))
        return vec / norm if norm else vec

    def _encode(self, texts: List[str]) -> np.ndarray:
        return np.stack([self._encode_one(t) for t in texts])


def create_embedding_service(backend: str = None) -> EmbeddingService:
    backend = (backend or settings.embedding_backend).lower()
    if backend == "hashing":
        return HashingEmbeddings()
    if backend in ("sentence-transformers", "sentence_transformers"):
        return SentenceTransformerEmbeddings()
    raise ValueError(f"Unknown embedding backend: {backend}")


# Singleton instance
_embedding_service = None


def get_embedding_service() -> EmbeddingService:
    """Get or create the embedding service singleton."""
    global _embedding_service
    if _embedding_service is None:
        _embedding_service = create_embedding_service()
    return _embedding_service
