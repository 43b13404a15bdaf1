"""Shared pytest fixtures for wagate tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402

from wagate.infra.token_store import MemoryTokenStore  # noqa: E402

from helpers import FakeClientFactory  # noqa: E402


@pytest.fixture
def sessions_dir(tmp_path):
    path = tmp_path / "sessions"
    path.mkdir()
    return path


@pytest.fixture
def token_store():
    return MemoryTokenStore()


@pytest.fixture
def factory():
    return FakeClientFactory()


@pytest.fixture(autouse=True)
def _no_database_env(monkeypatch):
    """Keep DB-less tests from picking up a developer's DB_* variables."""
    for name in ("DB_HOST", "DB_PORT", "DB_USERNAME", "DB_PASSWORD", "DB_DATABASE"):
        monkeypatch.delenv(name, raising=False)
