"""Pytest configuration and shared fixtures."""

from pathlib import Path

import pytest

from engram.core.store.memory_store import MemoryStore
from engram.domain.config import StoreConfig
from tests.helpers.fakes import FakeEmbedder


@pytest.fixture(autouse=True)
def isolated_global_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the global config lookup at an empty temp directory.

    Keeps a developer's real ~/.config/engram/config.toml out of test runs.
    """
    config_home = tmp_path / "xdg-config"
    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_home))
    monkeypatch.setattr("platform.system", lambda: "Linux")
    return config_home / "engram" / "config.toml"


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def store_config() -> StoreConfig:
    """Store config without fsync, to keep tests fast."""
    return StoreConfig(fsync=False)


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    return tmp_path / "memory.log"


@pytest.fixture
def store(store_config: StoreConfig, store_path: Path):
    """Initialized MemoryStore backed by a temp record log."""
    memory_store = MemoryStore(store_config)
    memory_store.initialize(store_path)
    yield memory_store
    memory_store.close()
