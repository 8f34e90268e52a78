# tests/conftest.py
import os
import tempfile
from contextlib import ExitStack

# Set up test environment variables BEFORE importing the app module,
# which builds a default application at import time.
_IMPORT_DIR = tempfile.mkdtemp(prefix="filevault-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_IMPORT_DIR}/import.db")
os.environ.setdefault("UPLOAD_DIR", os.path.join(_IMPORT_DIR, "uploads"))
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from filevault.core.config import Settings
from filevault.main import create_app
from filevault.models.file import File
from filevault.models.user import ApiKey, Permission, User


@pytest.fixture
def make_settings(tmp_path):
    def _make(**overrides) -> Settings:
        values = {
            "database_url": f"sqlite:///{(tmp_path / 'test.db').as_posix()}",
            "upload_dir": tmp_path / "uploads",
            "rate_limit_enabled": False,
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def make_client(make_settings):
    """Build a started app (lifespan run, tables created) from setting overrides."""
    with ExitStack() as stack:

        def _make(**overrides) -> TestClient:
            return stack.enter_context(TestClient(create_app(make_settings(**overrides))))

        yield _make


@pytest.fixture
def client(make_client) -> TestClient:
    return make_client()


@pytest.fixture
def app(client):
    return client.app


@pytest.fixture
def upload_dir(app):
    return app.state.blob_store.directory


@pytest.fixture
def db(app):
    with app.state.session_factory() as session:
        yield session


def add_user(db, name: str, email: str) -> User:
    user = User(name=name, email=email)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def add_key(db, user: User, key: str, permission: Permission = Permission.FULL_ACCESS) -> ApiKey:
    api_key = ApiKey(name=f"{user.name} key", key=key, user_id=user.id, permission=permission)
    db.add(api_key)
    db.commit()
    return api_key


def count_files(app) -> int:
    with app.state.session_factory() as session:
        return session.query(File).count()


@pytest.fixture
def user(db) -> User:
    return add_user(db, "Ada", "ada@example.com")


@pytest.fixture
def other_user(db) -> User:
    return add_user(db, "Grace", "grace@example.com")


@pytest.fixture
def auth(db, user) -> dict:
    add_key(db, user, "ada-full-access-key")
    return {"x-api-key": "ada-full-access-key"}


@pytest.fixture
def other_auth(db, other_user) -> dict:
    add_key(db, other_user, "grace-full-access-key")
    return {"x-api-key": "grace-full-access-key"}


@pytest.fixture
def upload(client, auth):
    """Upload one file through the API and return its FileRecord."""

    def _upload(name: str = "notes.txt", content: bytes = b"hello", content_type: str = "text/plain", headers=None):
        r = client.post(
            "/api/upload",
            files={"file": (name, content, content_type)},
            headers=headers or auth,
        )
        assert r.status_code == 200, r.text
        return r.json()["files"][0]

    return _upload
