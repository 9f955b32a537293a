"""Embedding engine methods.

The embedding engine answers prompt-style requests: a ``prompt`` whose
content blocks carry ``{"action": "embed", "texts": [...]}`` is answered with
a single data block holding the embeddings.
"""

import logging
from typing import Any

from engram.adapters.local_models.registry import (
    EmbedderRegistry,
    list_available_models,
    resolve_model_name,
)
from engram.adapters.rpc.dispatcher import Dispatcher
from engram.adapters.rpc.params import InvalidParamsError, ModelParams, PromptParams
from engram.domain.exceptions import EmbeddingFailedError

logger = logging.getLogger(__name__)


class EmbeddingMethods:
    """Handlers for the embedding engine."""

    def __init__(self, registry: EmbedderRegistry, default_model: str) -> None:
        self.registry = registry
        self.default_model = default_model

    def initialize(self, params: Any) -> dict[str, Any]:
        return {"models": self.registry.loaded(), "defaultModel": self.default_model}

    def list_models(self, params: Any) -> dict[str, Any]:
        models = list_available_models()
        for info in models:
            info["loaded"] = self.registry.is_loaded(info["name"])
        return {"models": models}

    def load_model(self, params: Any) -> dict[str, Any]:
        p = ModelParams.decode(params)
        try:
            resolve_model_name(p.model)
        except ValueError as e:
            raise InvalidParamsError(str(e)) from e
        try:
            embedder = self.registry.load(p.model)
        except RuntimeError as e:
            raise EmbeddingFailedError(str(e)) from e
        return {"model": embedder.name, "dim": embedder.dim}

    def prompt(self, params: Any) -> dict[str, Any]:
        p = PromptParams.decode(params)
        embedder = self.registry.get(p.model or self.default_model)
        try:
            result = embedder.embed(p.texts)
        except RuntimeError as e:
            raise EmbeddingFailedError(str(e)) from e
        logger.debug(
            "Embedded %d texts with %s (%d tokens)",
            len(p.texts),
            embedder.name,
            result.prompt_tokens,
        )
        return {
            "content": [
                {
                    "type": "data",
                    "mimeType": "application/json",
                    "data": {"embeddings": result.vectors},
                }
            ],
            "stopReason": "end_turn",
            "metadata": {
                "usage": {
                    "promptTokens": result.prompt_tokens,
                    "completionTokens": 0,
                    "totalTokens": result.prompt_tokens,
                }
            },
        }


def register_embedding_methods(
    dispatcher: Dispatcher, registry: EmbedderRegistry, default_model: str
) -> EmbeddingMethods:
    """Register the embedding engine's methods on a dispatcher."""
    methods = EmbeddingMethods(registry, default_model)
    dispatcher.register("initialize", methods.initialize)
    dispatcher.register("models/list", methods.list_models)
    dispatcher.register("models/load", methods.load_model)
    dispatcher.register("prompt", methods.prompt)
    return methods
