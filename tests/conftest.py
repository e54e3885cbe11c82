"""
RTalks test configuration.

This module provides pytest fixtures for setting up test environments, including:
- Isolation from RTALKS_* environment variables
- A temporary project directory per test module (database + uploads)
- An API client per test module, and an admin with a signed token
- Image payload factories
"""

import os

import pytest
from fastapi.testclient import TestClient

from rtalks.config.settings import AppSettings, ConfigManager

TEST_JWT_SECRET = "test-secret-for-rtalks-suite"

ADMIN_EMAIL = "admin@rtalks.test"
ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "correct-horse-battery"

IMAGE_MAGIC = {
    "image/jpeg": b"\xFF\xD8\xFF\xE0",
    "image/png": b"\x89PNG\r\n\x1a\n",
    "image/gif": b"GIF89a",
}


# Session-level fixture to clear environment variables before any tests run
@pytest.fixture(scope="session", autouse=True)
def clear_env_vars():
    """
    Clear RTALKS_* environment variables at session start.

    A developer shell exporting production settings must not leak into
    the test run.
    """
    original_values = {
        key: value for key, value in os.environ.items()
        if key.startswith("RTALKS_")
    }
    for key in original_values:
        del os.environ[key]

    yield

    for key, value in original_values.items():
        os.environ[key] = value


@pytest.fixture(scope="module")
def test_project_dir(tmp_path_factory, request):
    """Creates a unique test project directory for each test module."""
    dirname = f"test_project_{request.module.__name__.rsplit('.', 1)[-1]}"
    return tmp_path_factory.mktemp(dirname)


@pytest.fixture(scope="module")
def upload_dir(test_project_dir):
    return test_project_dir / "uploads"


@pytest.fixture(scope="module")
def app_settings(test_project_dir, upload_dir):
    """Settings pointing the database and uploads into the project directory."""
    return AppSettings(
        environment="test",
        database={"url": f"sqlite:///{test_project_dir}/test.db"},
        security={"jwt_secret": TEST_JWT_SECRET},
        uploads={"base_path": str(upload_dir)},
    )


@pytest.fixture(scope="module")
def api_client(app_settings):
    """
    Creates an API client for each test module with its own database and
    upload directory.
    """
    from rtalks.main import create_app

    ConfigManager.reset_instance()
    app = create_app(app_settings)
    with TestClient(app, base_url="http://testserver",
                    raise_server_exceptions=False) as client:
        yield client
    ConfigManager.reset_instance()


@pytest.fixture
def client(api_client):
    """The module's API client with fresh rate limits and counters."""
    api_client.app.state.rate_limiter.reset()
    api_client.app.state.metrics.reset()
    return api_client


@pytest.fixture(scope="module")
def admin(api_client):
    """An admin account in the module's database."""
    auth = api_client.app.state.auth_service
    return auth.register(
        email=ADMIN_EMAIL, username=ADMIN_USERNAME, password=ADMIN_PASSWORD)


@pytest.fixture(scope="module")
def auth_headers(api_client, admin):
    token = api_client.app.state.tokens.issue(admin.to_dict())
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_image():
    """
    Build an image payload: the magic number of ``content_type`` padded
    with filler bytes up to ``size``.
    """
    def _make(content_type="image/jpeg", size=2048):
        magic = IMAGE_MAGIC[content_type]
        filler = bytes(i % 251 for i in range(max(0, size - len(magic))))
        return magic + filler

    return _make


@pytest.fixture
def stored_files(upload_dir):
    """Snapshot of every entry in the upload directory, hidden ones included."""
    def _list():
        if not upload_dir.exists():
            return set()
        return {p.name for p in upload_dir.iterdir()}

    return _list


@pytest.fixture(scope="module")
def admin_credentials():
    return {
        "email": ADMIN_EMAIL,
        "username": ADMIN_USERNAME,
        "password": ADMIN_PASSWORD,
    }
