"""Domain exceptions for Engram.

Store errors form a closed taxonomy: every failure the store can report has
exactly one subclass here, and each subclass carries the stable wire code the
host relies on for programmatic handling. The dispatcher maps these to
protocol error responses; nothing below the dispatcher swallows them.
"""

from typing import Any


class EngramDomainError(Exception):
    """Base exception for all domain errors.

    Attributes:
        message: User-facing error message.
        hint: Optional actionable suggestion.
    """

    def __init__(self, message: str, hint: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint


class StoreError(EngramDomainError):
    """Base class for memory store failures.

    Subclasses set ``code`` to their wire code and may override
    ``to_error_data`` to attach structured context.
    """

    code = "STORE_ERROR"

    def to_error_data(self) -> dict[str, Any]:
        """Structured payload sent alongside the message."""
        return {}


class StoreNotLoadedError(StoreError):
    """Raised when an operation runs before ``store/initialize``."""

    code = "STORE_NOT_LOADED"

    def __init__(self) -> None:
        super().__init__(
            "Store not initialized: call store/initialize first",
            hint="Send store/initialize with a storagePath before other requests",
        )


class EmptyTextError(StoreError):
    """Raised when an entry is added, or text is searched for, with empty text."""

    code = "STORE_EMPTY_TEXT"

    def __init__(self, action: str = "add an entry") -> None:
        super().__init__(f"Empty text: cannot {action} without text")


class EmptyEmbeddingError(StoreError):
    """Raised when an entry or query carries an empty embedding."""

    code = "STORE_EMPTY_EMBEDDING"

    def __init__(self) -> None:
        super().__init__("Empty embedding: cannot use an empty vector")


class DimensionMismatchError(StoreError):
    """Raised when a vector's length differs from the store's dimensionality."""

    code = "STORE_DIMENSION_MISMATCH"

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Embedding dimension mismatch: store has {expected}, got {actual}",
            hint="Use the same embedding model for every entry in a store",
        )

    def to_error_data(self) -> dict[str, Any]:
        return {"expected": self.expected, "actual": self.actual}


class EntryNotFoundError(StoreError):
    """Raised when an id does not name a stored entry."""

    code = "ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str) -> None:
        self.entry_id = entry_id
        super().__init__(f"Entry not found: {entry_id}")

    def to_error_data(self) -> dict[str, Any]:
        return {"entryId": self.entry_id}


class DuplicateEntryError(StoreError):
    """Raised when an added embedding is too close to an existing entry.

    This is a signal rather than a hard failure: the measured similarity and
    the existing id let the caller decide whether to force the insert.
    """

    code = "STORE_DUPLICATE"

    def __init__(self, similarity: float, existing_id: str) -> None:
        self.similarity = similarity
        self.existing_id = existing_id
        super().__init__(
            f"Duplicate detected: similarity {similarity:.4f} with entry {existing_id}",
            hint="Pass force=true to insert anyway",
        )

    def to_error_data(self) -> dict[str, Any]:
        return {"similarity": self.similarity, "existingId": self.existing_id}


class InvalidRegexError(StoreError):
    """Raised when a search pattern cannot be compiled."""

    code = "STORE_INVALID_REGEX"

    def __init__(self, pattern: str, reason: str) -> None:
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"Invalid regex pattern {pattern!r}: {reason}")

    def to_error_data(self) -> dict[str, Any]:
        return {"pattern": self.pattern}


class StoreIOError(StoreError):
    """Raised when the backing file cannot be read or written."""

    code = "STORE_IO"

    def __init__(self, message: str) -> None:
        super().__init__(
            f"IO error: {message}",
            hint="Check file permissions, disk space, and filesystem access",
        )


class StoreSerializationError(StoreError):
    """Raised when an entry cannot be encoded for storage."""

    code = "STORE_SERIALIZATION"

    def __init__(self, message: str) -> None:
        super().__init__(f"Serialization error: {message}")


class CorruptStoreError(StoreError):
    """Raised when a persisted record fails integrity validation.

    Attributes:
        offset: Byte offset of the first bad record.
        recoverable: True when only the final record is damaged, so the log
            can be truncated to its last valid record on request.
    """

    code = "STORE_CORRUPT"

    def __init__(self, message: str, offset: int, recoverable: bool = False) -> None:
        self.offset = offset
        self.recoverable = recoverable
        hint = (
            "Re-initialize with recoverTruncated=true to drop the incomplete trailing record"
            if recoverable
            else "Restore the store from a backup or remove the file to start over"
        )
        super().__init__(f"Storage corruption at byte {offset}: {message}", hint=hint)

    def to_error_data(self) -> dict[str, Any]:
        return {"offset": self.offset, "recoverable": self.recoverable}


class EmbedderError(EngramDomainError):
    """Base class for embedding capability failures."""

    code = "EMBEDDER_ERROR"

    def to_error_data(self) -> dict[str, Any]:
        return {}


class ModelNotLoadedError(EmbedderError):
    """Raised when a model id is looked up before it has been loaded."""

    code = "MODEL_NOT_LOADED"

    def __init__(self, model_id: str) -> None:
        self.model_id = model_id
        super().__init__(
            f"Embedding model not loaded: {model_id}",
            hint="Send models/load for this model first",
        )

    def to_error_data(self) -> dict[str, Any]:
        return {"model": self.model_id}


class EmbeddingFailedError(EmbedderError):
    """Raised when a loaded model fails to embed a batch."""

    code = "EMBEDDING_FAILED"
