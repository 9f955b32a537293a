"""Local embedding model adapters.

Implementations of the Embedder protocol backed by local sentence-transformers
models, plus the model catalogue and the loaded-model registry.
"""

from engram.adapters.local_models.registry import (
    DEFAULT_MODEL,
    MODEL_PRESETS,
    SUPPORTED_MODELS,
    EmbedderRegistry,
    create_embedder,
    is_model_cached,
    list_available_models,
    resolve_model_name,
)

__all__ = [
    "DEFAULT_MODEL",
    "MODEL_PRESETS",
    "SUPPORTED_MODELS",
    "EmbedderRegistry",
    "create_embedder",
    "is_model_cached",
    "list_available_models",
    "resolve_model_name",
]
