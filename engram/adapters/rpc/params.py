"""Typed params for engine methods.

Each method's params arrive as a generic JSON value and are decoded here
into a frozen dataclass. Anything that does not fit the expected shape
raises InvalidParamsError, which the dispatcher reports as ``-32602``.
Field names on the wire are camelCase.
"""

import json
import math
from dataclasses import dataclass, field
from typing import Any

from engram.domain.config import StoreConfig
from engram.domain.entities import (
    DuplicateBehavior,
    MetadataFilter,
    MetadataMatchMode,
    TextMatchMode,
)


class InvalidParamsError(Exception):
    """Params do not match the method's expected shape."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


def _as_object(params: Any) -> dict[str, Any]:
    if not isinstance(params, dict):
        raise InvalidParamsError("params must be an object")
    return params


def _str(p: dict[str, Any], key: str, *, required: bool = True) -> str | None:
    value = p.get(key)
    if value is None:
        if required:
            raise InvalidParamsError(f"'{key}' is required")
        return None
    if not isinstance(value, str):
        raise InvalidParamsError(f"'{key}' must be a string")
    return value


def _bool(p: dict[str, Any], key: str, default: bool = False) -> bool:
    value = p.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise InvalidParamsError(f"'{key}' must be a boolean")
    return value


def _int(p: dict[str, Any], key: str, *, minimum: int = 0) -> int | None:
    value = p.get(key)
    if value is None:
        return None
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidParamsError(f"'{key}' must be an integer")
    if value < minimum:
        raise InvalidParamsError(f"'{key}' must be >= {minimum}")
    return value


def _number(p: dict[str, Any], key: str) -> float | None:
    value = p.get(key)
    if value is None:
        return None
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        raise InvalidParamsError(f"'{key}' must be a number")
    return float(value)


def _vector(value: Any, key: str) -> list[float]:
    """Decode a list of finite numbers. Emptiness is left to the store."""
    if not isinstance(value, list):
        raise InvalidParamsError(f"'{key}' must be an array of numbers")
    vector = []
    for x in value:
        if not isinstance(x, (int, float)) or isinstance(x, bool):
            raise InvalidParamsError(f"'{key}' must contain only numbers")
        x = float(x)
        if not math.isfinite(x):
            raise InvalidParamsError(f"'{key}' must contain only finite numbers")
        vector.append(x)
    return vector


def _metadata(p: dict[str, Any]) -> dict[str, Any]:
    value = p.get("metadata")
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InvalidParamsError("'metadata' must be an object")
    return value


def _str_list(p: dict[str, Any], key: str) -> list[str]:
    value = p.get(key)
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise InvalidParamsError(f"'{key}' must be an array of strings")
    return value


def _threshold(p: dict[str, Any], key: str) -> float | None:
    value = _number(p, key)
    if value is not None and not 0.0 < value <= 1.0:
        raise InvalidParamsError(f"'{key}' must be in (0, 1]")
    return value


@dataclass(frozen=True)
class InitializeParams:
    storage_path: str | None
    recover_truncated: bool
    config: StoreConfig

    @classmethod
    def decode(cls, params: Any, base: StoreConfig) -> "InitializeParams":
        p = _as_object(params)
        storage_path = _str(p, "storagePath", required=False) or base.storage_path
        if not storage_path:
            raise InvalidParamsError("'storagePath' is required")
        behavior = _str(p, "duplicateBehavior", required=False)
        try:
            config = base.with_overrides(
                duplicate_threshold=_threshold(p, "duplicateThreshold"),
                duplicate_behavior=DuplicateBehavior(behavior) if behavior else None,
                max_regex_pattern_length=_int(p, "maxRegexPatternLength", minimum=1),
            )
        except ValueError as e:
            raise InvalidParamsError(str(e)) from e
        return cls(
            storage_path=storage_path,
            recover_truncated=_bool(p, "recoverTruncated"),
            config=config,
        )


@dataclass(frozen=True)
class AddParams:
    text: str
    embedding: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)
    force: bool = False

    @classmethod
    def decode(cls, params: Any) -> "AddParams":
        p = _as_object(params)
        text = _str(p, "text")
        assert text is not None
        if "embedding" not in p:
            raise InvalidParamsError("'embedding' is required")
        return cls(
            text=text,
            embedding=_vector(p["embedding"], "embedding"),
            metadata=_metadata(p),
            force=_bool(p, "force"),
        )


@dataclass(frozen=True)
class AddBatchParams:
    entries: list[AddParams]
    force: bool = False

    @classmethod
    def decode(cls, params: Any) -> "AddBatchParams":
        p = _as_object(params)
        raw = p.get("entries")
        if not isinstance(raw, list):
            raise InvalidParamsError("'entries' must be an array")
        return cls(entries=[AddParams.decode(item) for item in raw], force=_bool(p, "force"))


@dataclass(frozen=True)
class SearchParams:
    query_embedding: list[float]
    top_k: int | None = None
    min_score: float | None = None

    @classmethod
    def decode(cls, params: Any) -> "SearchParams":
        p = _as_object(params)
        if "queryEmbedding" not in p:
            raise InvalidParamsError("'queryEmbedding' is required")
        return cls(
            query_embedding=_vector(p["queryEmbedding"], "queryEmbedding"),
            top_k=_int(p, "topK", minimum=1),
            min_score=_number(p, "minScore"),
        )


@dataclass(frozen=True)
class PatternParams:
    pattern: str
    ignore_case: bool = False
    limit: int | None = None

    @classmethod
    def decode(cls, params: Any) -> "PatternParams":
        p = _as_object(params)
        pattern = _str(p, "pattern")
        assert pattern is not None
        return cls(
            pattern=pattern,
            ignore_case=_bool(p, "ignoreCase"),
            limit=_int(p, "limit", minimum=1),
        )


@dataclass(frozen=True)
class TextSearchParams:
    query: str
    mode: TextMatchMode = TextMatchMode.FUZZY
    threshold: float | None = None
    limit: int | None = None

    @classmethod
    def decode(cls, params: Any) -> "TextSearchParams":
        p = _as_object(params)
        query = _str(p, "query")
        assert query is not None
        mode = _str(p, "mode", required=False) or TextMatchMode.FUZZY.value
        try:
            match_mode = TextMatchMode(mode)
        except ValueError as e:
            raise InvalidParamsError(f"unknown text search mode {mode!r}") from e
        return cls(
            query=query,
            mode=match_mode,
            threshold=_threshold(p, "threshold"),
            limit=_int(p, "limit", minimum=1),
        )


@dataclass(frozen=True)
class IdParams:
    id: str

    @classmethod
    def decode(cls, params: Any) -> "IdParams":
        entry_id = _str(_as_object(params), "id")
        assert entry_id is not None
        return cls(id=entry_id)


@dataclass(frozen=True)
class IdsParams:
    ids: list[str]

    @classmethod
    def decode(cls, params: Any) -> "IdsParams":
        return cls(ids=_str_list(_as_object(params), "ids"))


@dataclass(frozen=True)
class ListParams:
    offset: int = 0
    limit: int | None = None

    @classmethod
    def decode(cls, params: Any) -> "ListParams":
        p = _as_object(params)
        return cls(offset=_int(p, "offset") or 0, limit=_int(p, "limit", minimum=1))


@dataclass(frozen=True)
class CheckDuplicateParams:
    embedding: list[float]
    threshold: float | None = None

    @classmethod
    def decode(cls, params: Any) -> "CheckDuplicateParams":
        p = _as_object(params)
        if "embedding" not in p:
            raise InvalidParamsError("'embedding' is required")
        return cls(
            embedding=_vector(p["embedding"], "embedding"),
            threshold=_threshold(p, "threshold"),
        )


@dataclass(frozen=True)
class ThresholdParams:
    threshold: float | None = None

    @classmethod
    def decode(cls, params: Any) -> "ThresholdParams":
        return cls(threshold=_threshold(_as_object(params), "threshold"))


_LIST_MODES = (MetadataMatchMode.IN, MetadataMatchMode.NOT_IN, MetadataMatchMode.BETWEEN)


@dataclass(frozen=True)
class MetadataFilterParams:
    filters: list[MetadataFilter]

    @classmethod
    def decode(cls, params: Any) -> "MetadataFilterParams":
        raw = _as_object(params).get("filters")
        if not isinstance(raw, list):
            raise InvalidParamsError("'filters' must be an array")
        filters = []
        for item in raw:
            f = _as_object(item)
            key = _str(f, "key")
            assert key is not None
            mode = _str(f, "mode", required=False) or MetadataMatchMode.EQ.value
            try:
                match_mode = MetadataMatchMode(mode)
            except ValueError as e:
                raise InvalidParamsError(f"unknown filter mode {mode!r}") from e
            value = f.get("value")
            if match_mode in _LIST_MODES and not isinstance(value, list):
                raise InvalidParamsError(f"'value' must be an array for mode {mode!r}")
            if match_mode is MetadataMatchMode.BETWEEN and len(value) != 2:
                raise InvalidParamsError("'value' must be [min, max] for mode 'between'")
            filters.append(MetadataFilter(key=key, value=value, mode=match_mode))
        return cls(filters=filters)


@dataclass(frozen=True)
class DateRangeParams:
    after: int | None = None
    before: int | None = None

    @classmethod
    def decode(cls, params: Any) -> "DateRangeParams":
        p = _as_object(params)
        return cls(after=_int(p, "after"), before=_int(p, "before"))


@dataclass(frozen=True)
class PromptParams:
    """Params of the embedding engine's ``prompt`` method."""

    texts: list[str]
    model: str | None = None

    @classmethod
    def decode(cls, params: Any) -> "PromptParams":
        p = _as_object(params)
        blocks = p.get("prompt")
        if not isinstance(blocks, list):
            raise InvalidParamsError("'prompt' must be an array of content blocks")
        metadata = p.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise InvalidParamsError("'metadata' must be an object")
        model = _str(metadata, "model", required=False)
        texts = _embed_texts(blocks)
        if texts is None:
            raise InvalidParamsError(
                "prompt has no embed request (expected {\"action\": \"embed\", \"texts\": [...]})"
            )
        return cls(texts=texts, model=model)


def _embed_texts(blocks: list[Any]) -> list[str] | None:
    """Find ``{"action": "embed", "texts": [...]}`` in data or JSON text blocks."""
    for block in blocks:
        if not isinstance(block, dict):
            continue
        payload: Any = None
        if block.get("type") == "data":
            payload = block.get("data")
        elif block.get("type") == "text" and isinstance(block.get("text"), str):
            try:
                payload = json.loads(block["text"])
            except json.JSONDecodeError:
                continue
        if isinstance(payload, dict) and payload.get("action") == "embed":
            return _str_list(payload, "texts")
    return None


@dataclass(frozen=True)
class ModelParams:
    model: str

    @classmethod
    def decode(cls, params: Any) -> "ModelParams":
        model = _str(_as_object(params), "model")
        assert model is not None
        return cls(model=model)
