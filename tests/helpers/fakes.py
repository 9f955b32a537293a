"""In-memory stand-ins for heavy adapters."""

from engram.ports.embedders import EmbeddingResult


class FakeEmbedder:
    """Deterministic in-memory embedder implementing the Embedder protocol.

    Each text maps to a ``dim``-sized vector derived from its characters;
    token usage is the number of whitespace-separated words.
    """

    def __init__(self, name: str = "fake-model", dim: int = 4) -> None:
        self._name = name
        self._dim = dim
        self.loaded = False
        self.calls: list[list[str]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def dim(self) -> int:
        return self._dim

    def ensure_loaded(self) -> None:
        self.loaded = True

    def embed(self, texts: list[str]) -> EmbeddingResult:
        self.calls.append(list(texts))
        vectors = []
        for text in texts:
            vector = [0.0] * self._dim
            for i, ch in enumerate(text):
                vector[i % self._dim] += ord(ch) / 1000.0
            vectors.append(vector)
        tokens = sum(len(t.split()) for t in texts)
        return EmbeddingResult(vectors=vectors, prompt_tokens=tokens)
