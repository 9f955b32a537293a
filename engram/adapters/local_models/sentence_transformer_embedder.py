"""sentence-transformers embedder adapter.

One class serves every catalogue model; the model id, dimension and loader
flags come from its ModelSpec.
"""

import logging
from typing import TYPE_CHECKING

from engram.adapters.local_models.oom_retry import embed_with_oom_retry
from engram.ports.embedders import EmbeddingResult

# Lazy import - only load when actually needed
if TYPE_CHECKING:
    from sentence_transformers import SentenceTransformer

logger = logging.getLogger(__name__)


class SentenceTransformerEmbedder:
    """Embedder backed by a local sentence-transformers model.

    Implements the Embedder protocol. The model is loaded on first use (or
    by ``ensure_loaded``), from the local HuggingFace cache when possible.
    """

    DEFAULT_BATCH_SIZE = 32

    def __init__(
        self,
        model_id: str,
        dim: int,
        max_seq_length: int | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        device: str | None = None,
        trust_remote_code: bool = False,
    ):
        """Initialize the embedder.

        Args:
            model_id: HuggingFace model id.
            dim: Embedding dimension the model produces.
            max_seq_length: Maximum sequence length (None keeps the model's).
            batch_size: Batch size for encoding.
            device: Device to run on ('cpu', 'cuda', 'mps', or None for auto).
            trust_remote_code: Allow the model repo's custom modelling code.
        """
        self._model_id = model_id
        self._dim = dim
        self._max_seq_length = max_seq_length
        self._batch_size = batch_size
        self._device = device
        self._trust_remote_code = trust_remote_code
        self._model: SentenceTransformer | None = None

    def _ensure_model_loaded(self) -> "SentenceTransformer":
        """Lazy-load the model on first use.

        Raises:
            RuntimeError: If model fails to load.
        """
        if self._model is None:
            import os

            # Tokenizer thread pools do not survive fork()
            os.environ.setdefault("TOKENIZERS_PARALLELISM", "false")

            from sentence_transformers import SentenceTransformer

            try:
                try:
                    self._model = SentenceTransformer(
                        self._model_id,
                        device=self._device,
                        trust_remote_code=self._trust_remote_code,
                        local_files_only=True,
                    )
                except (OSError, ValueError):
                    logger.info("Model %s not cached, downloading", self._model_id)
                    self._model = SentenceTransformer(
                        self._model_id,
                        device=self._device,
                        trust_remote_code=self._trust_remote_code,
                    )
                if self._max_seq_length is not None:
                    self._model.max_seq_length = self._max_seq_length
            except Exception as e:
                raise RuntimeError(f"Failed to load {self._model_id}: {e}") from e
        return self._model

    @property
    def name(self) -> str:
        """Model name."""
        return self._model_id

    @property
    def dim(self) -> int:
        """Embedding dimension."""
        return self._dim

    @property
    def loaded(self) -> bool:
        return self._model is not None

    def ensure_loaded(self) -> None:
        """Load the model into memory now. No-op when already loaded."""
        self._ensure_model_loaded()

    def count_tokens(self, texts: list[str]) -> int:
        """Count the tokens the model sees for ``texts`` after truncation."""
        model = self._ensure_model_loaded()
        encoded = model.tokenizer(
            texts,
            truncation=True,
            max_length=model.max_seq_length,
        )
        return sum(len(ids) for ids in encoded["input_ids"])

    def embed(self, texts: list[str]) -> EmbeddingResult:
        """Embed a batch of texts into vectors.

        Raises:
            RuntimeError: If model fails to load or embed.
        """
        if not texts:
            return EmbeddingResult(vectors=[], prompt_tokens=0)

        try:
            model = self._ensure_model_loaded()
            embeddings = embed_with_oom_retry(
                lambda batch_size: model.encode(
                    texts,
                    batch_size=batch_size,
                    show_progress_bar=False,
                    convert_to_numpy=True,
                    normalize_embeddings=True,
                ),
                self._batch_size,
            )
            prompt_tokens = self.count_tokens(texts)
        except Exception as e:
            raise RuntimeError(f"Failed to embed {len(texts)} texts: {e}") from e

        return EmbeddingResult(
            vectors=[emb.tolist() for emb in embeddings],
            prompt_tokens=prompt_tokens,
        )
