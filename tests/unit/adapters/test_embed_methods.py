"""Unit tests for the embedding engine methods."""

import json
from unittest.mock import MagicMock

import pytest

from engram.adapters.local_models.registry import MODEL_REGISTRY, EmbedderRegistry
from engram.adapters.rpc.dispatcher import Dispatcher
from engram.adapters.rpc.embed_methods import register_embedding_methods
from engram.adapters.rpc.protocol import ENGINE_ERROR, INVALID_PARAMS, Request
from tests.helpers import FakeEmbedder

MINILM = "sentence-transformers/all-MiniLM-L6-v2"


@pytest.fixture
def registry() -> EmbedderRegistry:
    def factory(model_id: str, batch_size: int, device: str | None) -> FakeEmbedder:
        return FakeEmbedder(name=model_id, dim=MODEL_REGISTRY[model_id].dim)

    return EmbedderRegistry(factory=factory)


@pytest.fixture
def dispatcher(registry: EmbedderRegistry) -> Dispatcher:
    dispatcher = Dispatcher("embedding")
    register_embedding_methods(dispatcher, registry, MINILM)
    return dispatcher


def _call(dispatcher: Dispatcher, method: str, params: dict | None = None):
    return dispatcher.dispatch(Request(method, params or {}, request_id=1))


def _embed_prompt(texts: list[str], model: str | None = None) -> dict:
    params: dict = {"prompt": [{"type": "data", "data": {"action": "embed", "texts": texts}}]}
    if model is not None:
        params["metadata"] = {"model": model}
    return params


class TestEmbeddingMethods:
    """Tests for initialize, models/* and prompt."""

    def test_registers_expected_methods(self, dispatcher: Dispatcher) -> None:
        assert dispatcher.methods == ["initialize", "models/list", "models/load", "prompt"]

    def test_initialize_reports_loaded_models(
        self, dispatcher: Dispatcher, registry: EmbedderRegistry
    ) -> None:
        registry.load("minilm")

        response = _call(dispatcher, "initialize")

        assert response.result == {"models": [MINILM], "defaultModel": MINILM}

    def test_models_list_flags_loaded(
        self, dispatcher: Dispatcher, registry: EmbedderRegistry
    ) -> None:
        registry.load("bge-small")

        models = _call(dispatcher, "models/list").result["models"]

        loaded = {m["name"]: m["loaded"] for m in models}
        assert loaded["BAAI/bge-small-en-v1.5"] is True
        assert loaded[MINILM] is False

    def test_models_load(self, dispatcher: Dispatcher) -> None:
        response = _call(dispatcher, "models/load", {"model": "minilm"})

        assert response.result == {"model": MINILM, "dim": 384}

    def test_models_load_unknown_model_is_invalid_params(self, dispatcher: Dispatcher) -> None:
        response = _call(dispatcher, "models/load", {"model": "nope"})

        assert response.error["code"] == INVALID_PARAMS

    def test_prompt_before_load_is_model_not_loaded(self, dispatcher: Dispatcher) -> None:
        response = _call(dispatcher, "prompt", _embed_prompt(["hello"]))

        assert response.error["code"] == ENGINE_ERROR
        assert response.error["data"]["engineCode"] == "MODEL_NOT_LOADED"

    def test_prompt_response_shape(
        self, dispatcher: Dispatcher, registry: EmbedderRegistry
    ) -> None:
        registry.load("minilm")

        result = _call(dispatcher, "prompt", _embed_prompt(["hello world", "hi"])).result

        assert result["stopReason"] == "end_turn"
        block = result["content"][0]
        assert block["type"] == "data"
        assert block["mimeType"] == "application/json"
        embeddings = block["data"]["embeddings"]
        assert len(embeddings) == 2
        assert all(len(v) == 384 for v in embeddings)
        assert result["metadata"]["usage"] == {
            "promptTokens": 3,
            "completionTokens": 0,
            "totalTokens": 3,
        }
        json.dumps(result, allow_nan=False)

    def test_prompt_uses_requested_model(
        self, dispatcher: Dispatcher, registry: EmbedderRegistry
    ) -> None:
        registry.load("minilm")
        bge = registry.load("bge-small")

        _call(dispatcher, "prompt", _embed_prompt(["x"], model="bge-small"))

        assert bge.calls == [["x"]]

    def test_prompt_without_embed_block(
        self, dispatcher: Dispatcher, registry: EmbedderRegistry
    ) -> None:
        registry.load("minilm")

        response = _call(dispatcher, "prompt", {"prompt": [{"type": "text", "text": "hi"}]})

        assert response.error["code"] == INVALID_PARAMS

    def test_embedding_failure_is_engine_error(
        self, dispatcher: Dispatcher, registry: EmbedderRegistry
    ) -> None:
        broken = FakeEmbedder(name=MINILM)
        broken.embed = MagicMock(side_effect=RuntimeError("model crashed"))
        registry.register(MINILM, broken)

        response = _call(dispatcher, "prompt", _embed_prompt(["x"]))

        assert response.error["code"] == ENGINE_ERROR
        assert response.error["data"]["engineCode"] == "EMBEDDING_FAILED"
        assert "model crashed" in response.error["message"]
