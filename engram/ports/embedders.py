"""Embedder port interface for text embedding models.

Defines the capability the embedding engine (and any host-side caller of the
store) uses to turn text into vectors.
"""

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class EmbeddingResult:
    """Vectors for a batch of texts plus usage accounting.

    Attributes:
        vectors: One embedding per input text, in input order.
        prompt_tokens: Total tokens consumed across the batch.
    """

    vectors: list[list[float]]
    prompt_tokens: int


class Embedder(Protocol):
    """Protocol for text embedding models."""

    @property
    def name(self) -> str:
        """Model name (e.g., 'sentence-transformers/all-MiniLM-L6-v2')."""
        ...

    @property
    def dim(self) -> int:
        """Embedding dimension (e.g., 384, 768)."""
        ...

    def ensure_loaded(self) -> None:
        """Load model weights now instead of on first use."""
        ...

    def embed(self, texts: list[str]) -> EmbeddingResult:
        """Embed a batch of texts into vectors.

        Args:
            texts: List of text strings to embed.

        Returns:
            EmbeddingResult with one vector per input text.

        Raises:
            RuntimeError: If model fails to load or embed.
        """
        ...
