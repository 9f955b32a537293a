"""Configuration I/O utilities for reading and writing TOML config files.

This module handles serialization/deserialization of EngramConfig to/from TOML format.
"""

import os
import platform
import tomllib
from pathlib import Path
from typing import Any

import tomli_w

from engram.domain.config import EngramConfig


def get_global_config_path() -> Path:
    """Get the path to the global config file.

    The location is platform-dependent:
    - Linux/macOS: $XDG_CONFIG_HOME/engram/config.toml or ~/.config/engram/config.toml
    - Windows: %APPDATA%/engram/config.toml

    Returns:
        Path to the global config file (may not exist)
    """
    if platform.system() == "Windows":
        appdata = os.environ.get("APPDATA", "")
        if appdata:
            return Path(appdata) / "engram" / "config.toml"
        return Path.home() / ".config" / "engram" / "config.toml"
    xdg_config = os.environ.get("XDG_CONFIG_HOME", "")
    if xdg_config:
        return Path(xdg_config) / "engram" / "config.toml"
    return Path.home() / ".config" / "engram" / "config.toml"


def load_config_data(path: Path) -> dict[str, Any]:
    """Load raw TOML data from a config file.

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config file is malformed
    """
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in config file: {e}") from e


def load_config(path: Path) -> EngramConfig:
    """Load configuration from a TOML file over the built-in defaults.

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config file is malformed or has an invalid value
    """
    data = load_config_data(path)
    try:
        return EngramConfig.from_partial(EngramConfig.default(), data)
    except TypeError as e:
        raise ValueError(f"Unknown config key in {path}: {e}") from e


def config_to_data(config: EngramConfig) -> dict[str, Any]:
    """Convert an EngramConfig to a TOML-ready dict.

    TOML has no null, so unset optional values are omitted.
    """
    store: dict[str, Any] = {
        "duplicate_behavior": config.store.duplicate_behavior.value,
        "max_regex_pattern_length": config.store.max_regex_pattern_length,
        "default_top_k": config.store.default_top_k,
        "fsync": config.store.fsync,
    }
    if config.store.duplicate_threshold is not None:
        store["duplicate_threshold"] = config.store.duplicate_threshold
    if config.store.storage_path is not None:
        store["storage_path"] = config.store.storage_path

    embedding: dict[str, Any] = {
        "model": config.embedding.model,
        "preload": list(config.embedding.preload),
        "batch_size": config.embedding.batch_size,
    }
    if config.embedding.device is not None:
        embedding["device"] = config.embedding.device

    server: dict[str, Any] = {"log_level": config.server.log_level}
    if config.server.log_file is not None:
        server["log_file"] = config.server.log_file

    return {"store": store, "embedding": embedding, "server": server}


def save_config(config: EngramConfig, path: Path) -> None:
    """Save configuration to a TOML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as f:
        tomli_w.dump(config_to_data(config), f)


def create_default_config_file(path: Path, model: str = "minilm") -> None:
    """Create a default config.toml file with sensible defaults and comments.

    Args:
        path: Destination path for config.toml
        model: Embedding model preset the embedding engine uses by default
    """
    # Template string keeps the comments
    template = f"""\
# Engram Configuration
# Created by: engram config init

[store]
# Similarity (0, 1] at or above which store/add treats a vector as a duplicate
duplicate_threshold = 0.95

# What store/add does on a duplicate: "error", "skip" or "warn"
duplicate_behavior = "error"

# Longest regex pattern the store will compile
max_regex_pattern_length = 500

# Results returned by store/search when topK is omitted
default_top_k = 10

# fsync the record log after every write (turn off only for throwaway stores)
fsync = true

[embedding]
# Default embedding model
# Options: minilm (lightweight, ~100MB), bge-small (balanced, ~130MB),
#          nomic-embed (long context, ~550MB)
model = "{model}"

# Models to load when the embedding engine starts
preload = []

# Batch size for encoding (lower values use less GPU memory)
batch_size = 32

[server]
# DEBUG, INFO, WARNING or ERROR. Logs always go to stderr.
log_level = "INFO"
"""

    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        f.write(template)
