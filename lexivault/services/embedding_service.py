"""Sentence Transformers embeddings for page text and search queries."""
import os
import threading
from typing import List, Optional

from sentence_transformers import SentenceTransformer
import torch

from lexivault.exceptions import EmbeddingError
from lexivault.utils.logger import logger

MODEL_DIR_ENV = "LEXIVAULT_EMBEDDING_MODEL_DIR"


def set_torch_threads(cpu_cores: int = 0) -> int:
    """Limit PyTorch intra-op threads; 0 uses every available core."""
    available = os.cpu_count() or 1
    threads = min(cpu_cores, available) if cpu_cores > 0 else available
    torch.set_num_threads(threads)
    logger.info(f"Embedding model uses {threads} of {available} CPU cores")
    return threads


def resolve_model_source(model_name: str) -> str:
    """
    Return a local directory holding ``model_name`` or the hub name itself.

    The directory named by ``LEXIVAULT_EMBEDDING_MODEL_DIR`` wins. Otherwise
    ``./models/<org>_<name>`` is used when present, so deployments without
    network access can ship the model next to the database files.
    """
    configured = os.getenv(MODEL_DIR_ENV)
    if configured and os.path.isdir(configured):
        return configured

    bundled = os.path.abspath(os.path.join("models", model_name.replace("/", "_")))
    if os.path.isdir(bundled):
        return bundled
    return model_name


class EmbeddingService:
    """Lazily loaded sentence embedding model shared by workers and search."""

    def __init__(
        self,
        model_name: str = "sentence-transformers/all-MiniLM-L6-v2",
        cpu_cores: int = 0,
        batch_size: int = 32,
        expected_dimension: Optional[int] = None,
    ):
        """
        Args:
            model_name: Hub name of the sentence transformer model
            cpu_cores: CPU cores for PyTorch (0 = all available)
            batch_size: Encoding batch size
            expected_dimension: Vector size the page collection was created with;
                               loading a model of another size fails
        """
        self.model_name = model_name
        self.cpu_cores = cpu_cores
        self.batch_size = batch_size
        self.expected_dimension = expected_dimension
        self._model: Optional[SentenceTransformer] = None
        self._lock = threading.Lock()

    def _load(self) -> SentenceTransformer:
        with self._lock:
            if self._model is not None:
                return self._model

            set_torch_threads(self.cpu_cores)
            source = resolve_model_source(self.model_name)
            logger.info(f"Loading embedding model from {source}")
            model = SentenceTransformer(source, device="cpu")

            dimension = model.get_sentence_embedding_dimension()
            if self.expected_dimension and dimension != self.expected_dimension:
                raise EmbeddingError(
                    f"Model {self.model_name} produces {dimension}-dimensional vectors, "
                    f"expected {self.expected_dimension}"
                )
            logger.info(f"Embedding model ready (dimension: {dimension})")
            self._model = model
            return model

    @property
    def model(self) -> SentenceTransformer:
        if self._model is None:
            return self._load()
        return self._model

    def generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        """
        Encode texts into unit-length vectors.

        Args:
            texts: Page texts or queries

        Returns:
            One vector per input text, in input order

        Raises:
            EmbeddingError: If the model cannot be loaded or encoding fails
        """
        if not texts:
            return []

        model = self.model
        try:
            vectors = model.encode(
                texts,
                batch_size=self.batch_size,
                show_progress_bar=False,
                convert_to_numpy=True,
                normalize_embeddings=True,
            )
        except Exception as e:
            logger.error(f"Embedding {len(texts)} texts failed: {str(e)}", exc_info=True)
            raise EmbeddingError(f"Failed to generate embeddings: {str(e)}") from e
        return vectors.tolist()

    def generate_embedding(self, text: str) -> List[float]:
        """Encode a single page text or query."""
        return self.generate_embeddings([text])[0]
