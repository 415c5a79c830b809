from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from chatdesk_core.config import CoreConfig, write_core_config
from chatdesk_core.crypto.encryption import DataEncryption
from chatdesk_core.home import ChatDeskPaths, ensure_chatdesk_layout
from chatdesk_core.manager import DatabaseManager

# Keeps PBKDF2 cheap under test; production uses the configured default.
TEST_KDF_ITERATIONS = 1_000


@pytest.fixture
def paths(tmp_path: Path) -> ChatDeskPaths:
    return ensure_chatdesk_layout(tmp_path)


@pytest.fixture
def fast_config() -> CoreConfig:
    return CoreConfig.model_validate({"crypto": {"kdf_iterations": TEST_KDF_ITERATIONS}})


@pytest.fixture
def encryption() -> DataEncryption:
    return DataEncryption("test-master-secret", iterations=TEST_KDF_ITERATIONS)


@pytest.fixture
def manager(paths: ChatDeskPaths, fast_config: CoreConfig) -> Iterator[DatabaseManager]:
    db_manager = DatabaseManager(paths, fast_config)
    result = db_manager.initialize()
    assert result.success, result.errors
    try:
        yield db_manager
    finally:
        db_manager.shutdown()


@pytest.fixture
def chatdesk_home(tmp_path: Path, monkeypatch) -> Path:
    """A CHATDESK_HOME with a pre-written core.json for app tests."""

    monkeypatch.setenv("CHATDESK_HOME", str(tmp_path))
    layout = ensure_chatdesk_layout(tmp_path)
    write_core_config(
        layout, CoreConfig.model_validate({"crypto": {"kdf_iterations": TEST_KDF_ITERATIONS}})
    )
    return tmp_path
