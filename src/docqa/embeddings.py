"""
Embeddings module
----------------
Purpose: Convert text to vector embeddings using local Sentence-Transformers or Ollama
"""
from abc import ABC, abstractmethod
import logging
from typing import List, Optional

import requests

from .errors import EmbeddingFailed, EmbeddingTimeout

logger = logging.getLogger(__name__)


class EmbeddingProvider(ABC):
    """
    Maps text to fixed-length dense vectors.

    Built once per process and passed to the pipelines; the dimension must
    match the vector index the pipelines write to.
    """

    name = "base"

    @property
    @abstractmethod
    def dimension(self) -> Optional[int]:
        """Vector dimension, or None until the first call reveals it."""

    @abstractmethod
    def embed(self, text: str) -> List[float]:
        """Embed a single text. Raises EmbeddingFailed."""

    @abstractmethod
    def embed_many(self, texts: List[str]) -> List[List[float]]:
        """Embed several texts, one vector per text, in order. Raises EmbeddingFailed."""


class OllamaEmbeddingClient(EmbeddingProvider):
    """
    Client for Ollama embedding service

    Requires: ollama serve running on localhost:11434
    Model: nomic-embed-text (768 dimensions)
    """

    name = "ollama"

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "nomic-embed-text",
        timeout: float = 10
    ):
        """
        Initialize the Ollama embedding client
        Args:
            base_url: Ollama server URL
            model: Embedding model name
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._dimension = None

        self._test_connection()

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def _test_connection(self) -> None:
        """Test if Ollama is running."""
        try:
            response = requests.get(f"{self.base_url}/api/tags", timeout=5)
        except requests.exceptions.RequestException:
            raise ConnectionError(
                f"Cannot connect to Ollama at {self.base_url}. "
                "Start it with: ollama serve"
            )
        if response.status_code != 200:
            raise ConnectionError(f"Ollama returned {response.status_code}")
        logger.info(f"✓ Connected to Ollama at {self.base_url}")

    def _post_embed(self, payload) -> List[List[float]]:
        try:
            response = requests.post(
                f"{self.base_url}/api/embed",
                json={"model": self.model, "input": payload},
                timeout=self.timeout
            )
        except requests.exceptions.Timeout:
            raise EmbeddingTimeout(f"Ollama request timed out after {self.timeout}s")
        except requests.exceptions.RequestException as e:
            raise EmbeddingFailed(f"Lost connection to Ollama at {self.base_url}: {e}")

        if response.status_code != 200:
            raise EmbeddingFailed(f"Ollama error {response.status_code}: {response.text}")

        try:
            embeddings = response.json()["embeddings"]
        except (KeyError, ValueError) as e:
            raise EmbeddingFailed(f"Unexpected Ollama response format: {e}")

        if embeddings:
            self._dimension = len(embeddings[0])
        return embeddings

    def embed(self, text: str) -> List[float]:
        """
        Get embedding for a single text.

        Example:
            >>> client = OllamaEmbeddingClient()
            >>> len(client.embed("Hello world"))
            768
        """
        return self._post_embed(text)[0]

    def embed_many(self, texts: List[str]) -> List[List[float]]:
        """Get embeddings for multiple texts in one Ollama request."""
        if not texts:
            return []
        embeddings = self._post_embed(texts)
        if len(embeddings) != len(texts):
            raise EmbeddingFailed(
                f"Ollama returned {len(embeddings)} embeddings for {len(texts)} texts"
            )
        return embeddings


class SentenceTransformerEmbeddingClient(EmbeddingProvider):
    """
    Client for Sentence-Transformers embeddings (local, free).

    No external service required - runs locally.
    Model: all-MiniLM-L6-v2 (384 dimensions, normalized)
    """

    name = "sentence-transformers"

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        """
        Load the model once; reuse this instance for every request.

        Note: First initialization downloads the model
        """
        logger.info(f"Initializing Sentence-Transformers (model: {model_name})")
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError:
            raise ImportError(
                "sentence-transformers not installed. "
                "Install with: pip install sentence-transformers"
            )

        self.model_name = model_name
        self.model = SentenceTransformer(model_name)
        self._dimension = self.model.get_sentence_embedding_dimension()
        logger.info(f"✓ Loaded Sentence-Transformer model: {model_name} ({self._dimension} dims)")

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def embed(self, text: str) -> List[float]:
        """Get embedding for a single text."""
        try:
            embedding = self.model.encode(text, convert_to_numpy=True, normalize_embeddings=True)
        except Exception as e:
            logger.error(f"Failed to embed text: {e}")
            raise EmbeddingFailed(f"Sentence-Transformers embedding failed: {e}")
        return embedding.tolist()

    def embed_many(self, texts: List[str]) -> List[List[float]]:
        """Get embeddings for multiple texts (one forward pass per batch)."""
        if not texts:
            return []
        try:
            embeddings = self.model.encode(texts, convert_to_numpy=True, normalize_embeddings=True)
        except Exception as e:
            logger.error(f"Failed to embed batch: {e}")
            raise EmbeddingFailed(f"Sentence-Transformers batch embedding failed: {e}")
        return [emb.tolist() for emb in embeddings]


def get_embeddings_client(config) -> EmbeddingProvider:
    """
    Build the embedding provider selected by ``config.embedding_backend``.

    Called once at startup; the instance is injected into the pipelines.
    """
    backend = (config.embedding_backend or "sentence-transformers").lower()

    if backend == "ollama":
        logger.info("Using Ollama embeddings")
        return OllamaEmbeddingClient(
            base_url=config.ollama_base_url,
            model=config.embedding_model or "nomic-embed-text",
            timeout=config.embedding_timeout,
        )

    logger.info("Using Sentence-Transformers embeddings (local)")
    return SentenceTransformerEmbeddingClient(config.embedding_model or "all-MiniLM-L6-v2")
