"""Config domain models for engram.

Configuration is read from config.toml (global and/or an explicit file) and
represents the defaults each engine starts with. Per-request overrides (for
example ``store/initialize`` params) are applied with ``replace``.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Literal

from engram.domain.entities import DuplicateBehavior


@dataclass(frozen=True)
class StoreConfig:
    """Configuration for the memory store.

    Attributes:
        duplicate_threshold: Similarity at or above which an add counts as a
            duplicate. None disables duplicate detection.
        duplicate_behavior: What add does on a duplicate ("error", "skip", "warn").
        max_regex_pattern_length: Longest regex pattern the store will compile.
        default_top_k: Result count used when a search omits topK.
        fsync: fsync the log after every mutating record.
        storage_path: Optional default storage path for store/initialize.

    Raises:
        ValueError: If the threshold is outside (0, 1] or a limit is not positive.
    """

    duplicate_threshold: float | None = 0.95
    duplicate_behavior: DuplicateBehavior = DuplicateBehavior.ERROR
    max_regex_pattern_length: int = 500
    default_top_k: int = 10
    fsync: bool = True
    storage_path: str | None = None

    def __post_init__(self) -> None:
        """Validate store config after initialization."""
        if self.duplicate_threshold is not None and not (
            0.0 < self.duplicate_threshold <= 1.0
        ):
            raise ValueError(
                f"duplicate_threshold must be in (0, 1], got {self.duplicate_threshold}"
            )
        if not isinstance(self.duplicate_behavior, DuplicateBehavior):
            # Accept plain strings from TOML
            object.__setattr__(
                self, "duplicate_behavior", DuplicateBehavior(self.duplicate_behavior)
            )
        if self.max_regex_pattern_length <= 0:
            raise ValueError(
                f"max_regex_pattern_length must be positive, "
                f"got {self.max_regex_pattern_length}"
            )
        if self.default_top_k <= 0:
            raise ValueError(f"default_top_k must be positive, got {self.default_top_k}")

    def with_overrides(self, **overrides: Any) -> "StoreConfig":
        """Return a copy with the non-None overrides applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self


@dataclass(frozen=True)
class EmbeddingConfig:
    """Configuration for the embedding engine.

    Attributes:
        model: Default model preset or HuggingFace id.
        preload: Models to load at startup.
        batch_size: Batch size for encoding.
        device: Device to run on ('cpu', 'cuda', 'mps', or None for auto).

    Raises:
        ValueError: If batch_size is not positive.
    """

    model: str = "minilm"
    preload: list[str] = field(default_factory=list)
    batch_size: int = 32
    device: str | None = None

    def __post_init__(self) -> None:
        """Validate embedding config after initialization."""
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")


@dataclass(frozen=True)
class ServerConfig:
    """Configuration for the engine process.

    Attributes:
        log_level: Root log level for the engine.
        log_file: Optional file to mirror stderr logging to.
    """

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_file: str | None = None

    def __post_init__(self) -> None:
        """Validate server config after initialization."""
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR"):
            raise ValueError(f"Invalid log_level: {self.log_level}")


@dataclass(frozen=True)
class EngramConfig:
    """Complete engram configuration.

    Attributes:
        store: Memory store configuration
        embedding: Embedding engine configuration
        server: Process and logging configuration
    """

    store: StoreConfig = field(default_factory=StoreConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @staticmethod
    def default() -> "EngramConfig":
        """Create a config with all default values."""
        return EngramConfig(
            store=StoreConfig(),
            embedding=EmbeddingConfig(),
            server=ServerConfig(),
        )

    @staticmethod
    def from_partial(base: "EngramConfig", data: dict[str, Any]) -> "EngramConfig":
        """Overlay a partial config dict (as read from TOML) onto ``base``.

        Keys missing from ``data`` keep their values from ``base``. Each section
        is re-validated by its dataclass.

        Raises:
            ValueError: If a section has an invalid value.
            TypeError: If a section has an unknown key.
        """
        sections: dict[str, Any] = {}
        for name in ("store", "embedding", "server"):
            section = data.get(name)
            if section is None:
                continue
            if not isinstance(section, dict):
                raise ValueError(f"Config section [{name}] must be a table")
            sections[name] = replace(getattr(base, name), **section)
        return replace(base, **sections)
