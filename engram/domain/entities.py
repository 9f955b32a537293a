"""Domain entities.

Core models of the memory store. These are plain dataclasses with no
dependencies on infrastructure; the wire and on-disk shapes are produced by
``to_dict`` / ``from_dict``.
"""

from __future__ import annotations

import operator
import re
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return time.time_ns() // 1_000_000


class DuplicateBehavior(str, Enum):
    """What ``add`` does when a near-duplicate already exists.

    - ERROR: reject the add with a duplicate error (default)
    - SKIP: return the existing entry's id without storing
    - WARN: like SKIP, but log a warning
    """

    ERROR = "error"
    SKIP = "skip"
    WARN = "warn"


class MetadataMatchMode(str, Enum):
    """Comparison applied by a metadata filter.

    String comparisons (CONTAINS on strings, STARTS_WITH, ENDS_WITH) ignore
    case. Ordering modes accept numbers or numeric strings on either side.
    """

    EQ = "eq"
    NEQ = "neq"
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    REGEX = "regex"
    EXISTS = "exists"
    NOT_EXISTS = "notExists"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NOT_IN = "notIn"
    BETWEEN = "between"


class TextMatchMode(str, Enum):
    """How ``text_search`` scores an entry's text against the query.

    - EXACT: identical text scores 1
    - SUBSTRING: case-insensitive containment scores 1
    - REGEX: a ``re.search`` hit scores 1
    - TOKEN: Jaccard overlap of word tokens
    - FUZZY: blend of edit, bigram and token similarity (default)
    """

    EXACT = "exact"
    SUBSTRING = "substring"
    REGEX = "regex"
    TOKEN = "token"
    FUZZY = "fuzzy"


@dataclass(frozen=True)
class Entry:
    """One stored memory unit.

    Attributes:
        id: Opaque unique identifier (uuid4), never reused.
        text: Non-empty text content.
        embedding: Non-empty embedding vector.
        metadata: Caller-supplied attributes.
        created_at: Insertion time in epoch milliseconds, never mutated.
    """

    id: str
    text: str
    embedding: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: int = 0

    @classmethod
    def create(
        cls,
        text: str,
        embedding: list[float],
        metadata: dict[str, Any] | None = None,
    ) -> Entry:
        """Build a new entry with a fresh id and timestamp."""
        return cls(
            id=str(uuid.uuid4()),
            text=text,
            embedding=[float(x) for x in embedding],
            metadata=dict(metadata or {}),
            created_at=now_ms(),
        )

    @property
    def dimension(self) -> int:
        return len(self.embedding)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "embedding": list(self.embedding),
            "metadata": dict(self.metadata),
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Entry:
        """Rebuild an entry from its dict form.

        Raises:
            KeyError: If a required field is missing.
            TypeError: If a field has the wrong type.
            ValueError: If a numeric field cannot be converted.
        """
        embedding = data["embedding"]
        metadata = data.get("metadata") or {}
        if not isinstance(data["id"], str) or not isinstance(data["text"], str):
            raise TypeError("id and text must be strings")
        if not isinstance(embedding, list) or not isinstance(metadata, dict):
            raise TypeError("embedding must be a list and metadata an object")
        return cls(
            id=data["id"],
            text=data["text"],
            embedding=[float(x) for x in embedding],
            metadata=metadata,
            created_at=int(data.get("createdAt", 0)),
        )


@dataclass(frozen=True)
class Lookup:
    """A search hit: an entry and its similarity to the query."""

    entry: Entry
    score: float

    def to_dict(self) -> dict[str, Any]:
        return {"entry": self.entry.to_dict(), "score": self.score}


@dataclass(frozen=True)
class DuplicateCheck:
    """Result of checking the store for a near-duplicate embedding."""

    is_duplicate: bool
    similarity: float | None = None
    existing: Entry | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "isDuplicate": self.is_duplicate,
            "similarity": self.similarity,
            "existing": self.existing.to_dict() if self.existing else None,
        }


@dataclass(frozen=True)
class DuplicateGroup:
    """A cluster of near-duplicate entries around the earliest one."""

    representative: Entry
    duplicates: list[Entry]
    average_similarity: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "representative": self.representative.to_dict(),
            "duplicates": [e.to_dict() for e in self.duplicates],
            "averageSimilarity": self.average_similarity,
        }


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


_ORDERING = {
    MetadataMatchMode.GT: operator.gt,
    MetadataMatchMode.GTE: operator.ge,
    MetadataMatchMode.LT: operator.lt,
    MetadataMatchMode.LTE: operator.le,
}


@dataclass(frozen=True)
class MetadataFilter:
    """A single metadata predicate.

    Attributes:
        key: Metadata key to test.
        value: Comparison value. A list for IN, NOT_IN and BETWEEN
            (``[low, high]``, inclusive); ignored for EXISTS and NOT_EXISTS.
        mode: Comparison mode.
    """

    key: str
    value: Any = None
    mode: MetadataMatchMode = MetadataMatchMode.EQ

    def matches(self, metadata: dict[str, Any]) -> bool:
        mode = self.mode
        if mode is MetadataMatchMode.EXISTS:
            return self.key in metadata
        if mode is MetadataMatchMode.NOT_EXISTS:
            return self.key not in metadata
        if self.key not in metadata:
            return mode is MetadataMatchMode.NEQ
        actual = metadata[self.key]

        if mode is MetadataMatchMode.EQ:
            return actual == self.value
        if mode is MetadataMatchMode.NEQ:
            return actual != self.value
        if mode is MetadataMatchMode.CONTAINS:
            if isinstance(actual, list):
                return self.value in actual
            return (
                isinstance(actual, str)
                and isinstance(self.value, str)
                and self.value.lower() in actual.lower()
            )
        if mode in (MetadataMatchMode.STARTS_WITH, MetadataMatchMode.ENDS_WITH):
            if not isinstance(actual, str) or not isinstance(self.value, str):
                return False
            if mode is MetadataMatchMode.STARTS_WITH:
                return actual.lower().startswith(self.value.lower())
            return actual.lower().endswith(self.value.lower())
        if mode is MetadataMatchMode.REGEX:
            return (
                isinstance(actual, str)
                and isinstance(self.value, str)
                and re.search(self.value, actual) is not None
            )
        if mode in (MetadataMatchMode.IN, MetadataMatchMode.NOT_IN):
            if not isinstance(self.value, list):
                return False
            return (actual in self.value) == (mode is MetadataMatchMode.IN)
        if mode is MetadataMatchMode.BETWEEN:
            if not isinstance(self.value, list) or len(self.value) != 2:
                return False
            number = _as_number(actual)
            low, high = (_as_number(v) for v in self.value)
            if number is None or low is None or high is None:
                return False
            return low <= number <= high
        # GT, GTE, LT, LTE
        number, bound = _as_number(actual), _as_number(self.value)
        if number is None or bound is None:
            return False
        return _ORDERING[mode](number, bound)


@dataclass(frozen=True)
class AddResult:
    """Outcome of an add.

    Attributes:
        id: Id of the new entry, or of the existing one when a duplicate was
            skipped.
        duplicate: True when nothing was stored because of a duplicate.
        similarity: Highest similarity measured against existing entries.
    """

    id: str
    duplicate: bool = False
    similarity: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "duplicate": self.duplicate, "similarity": self.similarity}


@dataclass(frozen=True)
class StoreSummary:
    """What ``initialize`` reports about a loaded store."""

    path: str
    count: int
    dimension: int | None
    recovered: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "count": self.count,
            "dimension": self.dimension,
            "recovered": self.recovered,
        }
