"""TOML-based configuration provider.

Config loading priority (highest to lowest):
1. Explicit: the file passed with ``--config``
2. Global: ~/.config/engram/config.toml (user defaults)
3. Built-in defaults
"""

import logging
from pathlib import Path

from engram.adapters.local_models.registry import resolve_model_name
from engram.domain.config import EngramConfig
from engram.shared.config_io import get_global_config_path, load_config_data

logger = logging.getLogger(__name__)


class TomlConfigProvider:
    """Configuration provider that loads from TOML files.

    A broken global config is skipped with a warning. An explicit config file
    was asked for by name, so it must exist and parse.
    """

    def __init__(self, global_path: Path | None = None) -> None:
        self.global_path = global_path or get_global_config_path()

    def load(self, explicit_path: Path | None = None) -> EngramConfig:
        """Load configuration with global fallback.

        Args:
            explicit_path: Optional config file layered over the global one

        Returns:
            EngramConfig with merged values

        Raises:
            FileNotFoundError: If explicit_path does not exist
            ValueError: If explicit_path is malformed or invalid
        """
        config = EngramConfig.default()

        if self.global_path.exists():
            try:
                global_data = load_config_data(self.global_path)
                config = EngramConfig.from_partial(config, global_data)
                logger.debug("Loaded global config from %s", self.global_path)
            except (FileNotFoundError, ValueError, TypeError) as e:
                logger.warning(
                    "Failed to parse global config at %s: %s. Ignoring global config.",
                    self.global_path,
                    e,
                )

        if explicit_path is not None:
            data = load_config_data(explicit_path)
            try:
                config = EngramConfig.from_partial(config, data)
            except TypeError as e:
                raise ValueError(f"Unknown config key in {explicit_path}: {e}") from e
            logger.debug("Loaded config from %s", explicit_path)

        try:
            resolve_model_name(config.embedding.model)
        except ValueError as e:
            logger.warning("Invalid model configuration: %s. Using default model.", e)
            config = EngramConfig.from_partial(config, {"embedding": {"model": "minilm"}})

        return config
