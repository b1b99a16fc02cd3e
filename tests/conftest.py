"""
Shared fixtures.
"""

import pytest

from auth.session_store import InMemorySessionStore
from config.settings import Settings
from connectors.token_manager import CredentialManager


@pytest.fixture
def make_settings(tmp_path):
    """Settings rooted in a temporary directory, ignoring any local .env."""

    def _make(**overrides) -> Settings:
        values = {
            "data_path": str(tmp_path / "storage"),
            "hosting_path": str(tmp_path / "hosting"),
            "public_url": "http://testserver",
            "session_secret": "test-secret",
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def credentials(session_store):
    return CredentialManager(session_store)
