"""
Test fixtures for StreetWise job tests.
"""

import os
import tempfile

import pytest
from click.testing import CliRunner

from streetwise.database import Database
from streetwise.jobs import JobConfig, JobManager, NotificationStore


@pytest.fixture
def runner():
    """Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def temp_db():
    """Create a temporary database for testing.

    Uses check_same_thread=False to allow use with FastAPI TestClient
    which runs in a different thread.
    """
    with tempfile.NamedTemporaryFile(suffix='.db', delete=False) as f:
        db_path = f.name

    db = Database(db_path, check_same_thread=False)
    db.init_schema()

    yield db

    # Cleanup
    db.close()
    for suffix in ('', '-wal', '-shm'):
        try:
            os.unlink(db_path + suffix)
        except OSError:
            pass


@pytest.fixture
def temp_db_path():
    """Return a path to a temporary database file."""
    with tempfile.NamedTemporaryFile(suffix='.db', delete=False) as f:
        db_path = f.name

    yield db_path

    # Cleanup
    for suffix in ('', '-wal', '-shm'):
        try:
            os.unlink(db_path + suffix)
        except OSError:
            pass


@pytest.fixture
def manager(temp_db):
    """Job manager over the temporary database."""
    return JobManager(temp_db, JobConfig(max_concurrent_jobs=10))


@pytest.fixture
def store(temp_db):
    """Notification store over the temporary database."""
    return NotificationStore(temp_db)


@pytest.fixture
def client(temp_db):
    """FastAPI test client with the database dependency overridden."""
    from fastapi.testclient import TestClient
    from web.api.main import app
    from web.api import deps

    # Override the database dependency
    def override_get_db():
        return temp_db

    def override_get_job_config():
        return JobConfig(max_concurrent_jobs=10)

    app.dependency_overrides[deps.get_db] = override_get_db
    app.dependency_overrides[deps.get_job_config] = override_get_job_config

    yield TestClient(app, raise_server_exceptions=False)

    # Clear overrides
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Build bearer headers for a user ID."""
    from web.api.auth import create_access_token

    def make(user_id: str = "user-1") -> dict:
        token = create_access_token({"sub": user_id})
        return {"Authorization": f"Bearer {token}"}

    return make


@pytest.fixture
def mock_config(monkeypatch, temp_db_path):
    """Mock the config loading to use temp database."""
    def mock_load_config():
        return {
            "database": {"path": temp_db_path},
            "logging": {"level": "WARNING"},
            "jobs": {"max_concurrent_jobs": 10},
        }

    monkeypatch.setattr("streetwise.cli.load_config", mock_load_config)
    monkeypatch.setattr("streetwise.config.load_config", mock_load_config)

    return temp_db_path
