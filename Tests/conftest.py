"""
Root conftest.py for shared test fixtures and configuration.
This file provides common fixtures used across the test suite.
"""

import sys
from pathlib import Path

import pytest

# Add project root to Python path for consistent imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from draftkeeper import config as dk_config
from draftkeeper.AutoSave import manager as manager_module
from draftkeeper.AutoSave.manager import AutoSaveConfig, AutoSaveManager
from draftkeeper.Storage.backends import MemoryStore
from draftkeeper.Storage.storage_adapter import StorageAdapter, StorageOptions
from draftkeeper.Utils.payload_encryption import PayloadEncryption


START_TIME = 1_700_000_000.0
TEST_DEBOUNCE_MS = 50
# Long enough for a TEST_DEBOUNCE_MS timer plus the threaded encode to finish
SETTLE_SECONDS = 0.3


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, start: float = START_TIME):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


# ========== Isolation ==========

@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep every test away from the real config file and data dir."""
    config_path = tmp_path / "config" / "config.toml"
    monkeypatch.setenv(dk_config.CONFIG_PATH_ENV, str(config_path))
    monkeypatch.setattr(dk_config, "BASE_DATA_DIR", tmp_path / "data")
    monkeypatch.setattr(dk_config, "_CONFIG_CACHE", None)
    monkeypatch.setattr(manager_module, "_MANAGER", None)
    yield config_path


# ========== Clock and Storage Fixtures ==========

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(scope="session")
def encryption():
    """Low iteration count; key derivation speed is not under test."""
    return PayloadEncryption("test-passphrase", salt=b"\x01" * PayloadEncryption.SALT_SIZE, iterations=1000)


@pytest.fixture
def session_store():
    return MemoryStore()


@pytest.fixture
def persistent_store():
    return MemoryStore()


@pytest.fixture
def adapter(session_store, persistent_store, clock):
    return StorageAdapter(session_store, persistent_store, prefix="test:", clock=clock)


@pytest.fixture
def encrypted_adapter(session_store, persistent_store, clock, encryption):
    return StorageAdapter(session_store, persistent_store, prefix="test:", encryption=encryption, clock=clock)


# ========== Manager Fixtures ==========

@pytest.fixture
def make_manager(adapter, clock):
    """Factory for managers over the shared test adapter."""
    def _make(storage=None, **overrides):
        overrides.setdefault("debounce_ms", TEST_DEBOUNCE_MS)
        overrides.setdefault("storage_key", "test")
        overrides.setdefault("storage_options", StorageOptions(persistent=True))
        return AutoSaveManager(AutoSaveConfig(**overrides), storage=storage or adapter, clock=clock)
    return _make


@pytest.fixture
def manager(make_manager):
    return make_manager()
