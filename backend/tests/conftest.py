"""Pytest configuration and fixtures."""

import os

import pytest

# Rate limits are exercised separately; keep them out of route tests
os.environ.setdefault("WEAVE_RATE_LIMIT_ENABLED", "false")

from app.config import Settings, get_settings  # noqa: E402
from app.main import app  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from weavestore.auth import SQLiteAuthentication  # noqa: E402

TEST_ADMIN_SECRET = "test-only-admin-secret"
ALICE = ("alice", "s3cret")
BOB = ("bob", "hunter2")


@pytest.fixture
def settings(tmp_path):
    """Settings pointing every database at a per-test directory."""
    return Settings(
        _env_file=None,
        storage_engine="sqlite",
        sqlite_path=tmp_path / "weave.db",
        auth_engine="sqlite",
        auth_sqlite_path=tmp_path / "users.db",
        payload_max_size=1024,
        quota_kb=5000,
        admin_secret=TEST_ADMIN_SECRET,
        rate_limit_enabled=False,
    )


@pytest.fixture
def users(settings):
    """Registered test users."""
    provider = SQLiteAuthentication(settings.auth_sqlite_path)
    provider.create_user(*ALICE)
    provider.create_user(*BOB)
    return provider


@pytest.fixture
def client(settings, users):
    """Create a test client bound to the per-test settings."""
    app.dependency_overrides[get_settings] = lambda: settings
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def alice():
    return ALICE


@pytest.fixture
def bob():
    return BOB


@pytest.fixture
def admin_headers():
    return {"X-Weave-Admin-Secret": TEST_ADMIN_SECRET}
