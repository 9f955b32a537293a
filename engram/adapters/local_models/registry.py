"""Model registry for embedding model selection.

Maps preset names and HuggingFace model IDs to model specs, and keeps the
set of embedders an engine has loaded. Several engines in one process may
share an EmbedderRegistry; access to it is serialized by a lock.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

from engram.adapters.local_models.sentence_transformer_embedder import (
    SentenceTransformerEmbedder,
)
from engram.domain.exceptions import ModelNotLoadedError
from engram.ports.embedders import Embedder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelSpec:
    """Single source of truth for model metadata."""

    id: str
    presets: tuple[str, ...]
    dim: int
    params: str
    memory: str
    max_seq_length: int
    description: str
    trust_remote_code: bool = False


MODEL_REGISTRY: dict[str, ModelSpec] = {
    "sentence-transformers/all-MiniLM-L6-v2": ModelSpec(
        id="sentence-transformers/all-MiniLM-L6-v2",
        presets=("minilm", "all-minilm-l6-v2"),
        dim=384,
        params="22M",
        memory="~100MB",
        max_seq_length=256,
        description="Lightweight general-purpose model, very fast",
    ),
    "BAAI/bge-small-en-v1.5": ModelSpec(
        id="BAAI/bge-small-en-v1.5",
        presets=("bge-small", "bge-small-en-v1.5"),
        dim=384,
        params="33M",
        memory="~130MB",
        max_seq_length=512,
        description="Small retrieval-optimized model, good accuracy",
    ),
    "nomic-ai/nomic-embed-text-v1.5": ModelSpec(
        id="nomic-ai/nomic-embed-text-v1.5",
        presets=("nomic-embed", "nomic-embed-text-v1.5"),
        dim=768,
        params="137M",
        memory="~550MB",
        max_seq_length=8192,
        description="Long-context general-purpose model",
        trust_remote_code=True,
    ),
}

# Derived from MODEL_REGISTRY - preset names map to HuggingFace model IDs
MODEL_PRESETS: dict[str, str] = {
    preset: spec.id for spec in MODEL_REGISTRY.values() for preset in spec.presets
}

SUPPORTED_MODELS: set[str] = set(MODEL_REGISTRY.keys())

DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"


def resolve_model_name(model_name: str) -> str:
    """Resolve a model name to its canonical HuggingFace ID.

    Raises:
        ValueError: If model name is not recognized
    """
    normalized = model_name.lower()
    if normalized in MODEL_PRESETS:
        return MODEL_PRESETS[normalized]
    if model_name in SUPPORTED_MODELS:
        return model_name

    valid_options = sorted(set(MODEL_PRESETS.keys()) | SUPPORTED_MODELS)
    raise ValueError(
        f"Unknown embedding model: '{model_name}'. "
        f"Valid options are: {', '.join(valid_options)}"
    )


def create_embedder(
    model_name: str | None = None,
    batch_size: int = 32,
    device: str | None = None,
) -> Embedder:
    """Create an (unloaded) embedder for a catalogue model.

    Raises:
        ValueError: If model name is not recognized
    """
    resolved = DEFAULT_MODEL if model_name is None else resolve_model_name(model_name)
    spec = MODEL_REGISTRY[resolved]
    return SentenceTransformerEmbedder(
        model_id=spec.id,
        dim=spec.dim,
        max_seq_length=spec.max_seq_length,
        batch_size=batch_size,
        device=device,
        trust_remote_code=spec.trust_remote_code,
    )


def list_available_models() -> list[dict]:
    """List all catalogue models with their info."""
    return [
        {
            "name": spec.id,
            "preset": spec.presets[0] if spec.presets else None,
            "dim": spec.dim,
            "params": spec.params,
            "memory": spec.memory,
            "max_seq_length": spec.max_seq_length,
            "description": spec.description,
            "presets": list(spec.presets),
        }
        for spec in MODEL_REGISTRY.values()
    ]


def is_model_cached(model_name: str) -> bool:
    """Check if a model is in the local HuggingFace cache.

    Inspects the cache for the model's config.json without loading it.
    """
    resolved = resolve_model_name(model_name)
    try:
        from huggingface_hub import try_to_load_from_cache
    except ImportError:
        return False
    # Returns a path when cached, None or a sentinel otherwise
    return isinstance(try_to_load_from_cache(resolved, "config.json"), str)


EmbedderFactory = Callable[[str, int, "str | None"], Embedder]


def _default_factory(model_id: str, batch_size: int, device: str | None) -> Embedder:
    return create_embedder(model_id, batch_size=batch_size, device=device)


class EmbedderRegistry:
    """Loaded embedders keyed by canonical model id."""

    def __init__(
        self,
        batch_size: int = 32,
        device: str | None = None,
        factory: EmbedderFactory = _default_factory,
    ) -> None:
        self._batch_size = batch_size
        self._device = device
        self._factory = factory
        self._embedders: dict[str, Embedder] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _canonical(model: str) -> str:
        try:
            return resolve_model_name(model)
        except ValueError:
            return model

    def load(self, model: str) -> Embedder:
        """Load a catalogue model, or return it if already loaded.

        Raises:
            ValueError: If model name is not recognized
            RuntimeError: If the model fails to load
        """
        model_id = resolve_model_name(model)
        with self._lock:
            embedder = self._embedders.get(model_id)
            if embedder is not None:
                return embedder
            logger.info("Loading embedding model %s", model_id)
            embedder = self._factory(model_id, self._batch_size, self._device)
            embedder.ensure_loaded()
            self._embedders[model_id] = embedder
            logger.info("Model %s loaded (dim=%d)", model_id, embedder.dim)
            return embedder

    def register(self, model: str, embedder: Embedder) -> None:
        """Add an already-constructed embedder under ``model``."""
        with self._lock:
            self._embedders[self._canonical(model)] = embedder

    def get(self, model: str) -> Embedder:
        """Look up a loaded embedder.

        Raises:
            ModelNotLoadedError: If the model has not been loaded.
        """
        model_id = self._canonical(model)
        with self._lock:
            embedder = self._embedders.get(model_id)
        if embedder is None:
            raise ModelNotLoadedError(model)
        return embedder

    def is_loaded(self, model: str) -> bool:
        with self._lock:
            return self._canonical(model) in self._embedders

    def loaded(self) -> list[str]:
        """Canonical ids of loaded models, in load order."""
        with self._lock:
            return list(self._embedders)

    def clear(self) -> None:
        """Drop all loaded embedders."""
        with self._lock:
            self._embedders.clear()
