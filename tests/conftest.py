"""
Shared fixtures for DOORLOCK tests.
"""

import pytest

from doorlock.config import LockConfig
from doorlock.store import MemoryCounterStore

SCENARIO_SECRET = b"123456789"


@pytest.fixture
def config():
    return LockConfig(secret=SCENARIO_SECRET, window=10)


@pytest.fixture
def verifier_store():
    return MemoryCounterStore()


@pytest.fixture
def requester_store():
    return MemoryCounterStore()


@pytest.fixture
def no_log_sinks(monkeypatch):
    """Keep the CLI from installing loguru sinks on CliRunner's streams."""
    monkeypatch.setattr("doorlock.cli.setup_logging", lambda *args, **kwargs: None)
