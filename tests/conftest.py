"""Pytest configuration and shared fixtures."""

import os
from pathlib import Path

import pytest

# Settings are cached on first use, so the environment has to be in place
# before anything imports the application.
os.environ.update(
    {
        "PODFLOW_SECRET_KEY": "test-secret-key-for-testing-only-0123456789",
        "PODFLOW_DATABASE_URL": "sqlite+aiosqlite:///:memory:",
        "PODFLOW_REDIS_URL": "redis://localhost:6379/0",
        "PODFLOW_ENVIRONMENT": "development",
    }
)


@pytest.fixture(scope="session")
def project_root():
    """Get project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def backup_dir(tmp_path, monkeypatch):
    """Temporary backup directory wired into the settings."""
    from podflow_admin.api.config import get_settings

    directory = tmp_path / "backups"
    monkeypatch.setattr(get_settings(), "backup_dir", str(directory))
    return directory
