"""Shared test fixtures for the OverSkill storage test suite.

Tests run against a throwaway SQLite file unless TEST_DATABASE_URL points
elsewhere (e.g. a PostgreSQL test database). Every test starts from empty
tables. The object store is an in-memory double with failure injection,
so nothing here talks to R2.

The app's migrator creates the schema on import, so no explicit
create_all is needed here.
"""

import os
import tempfile

# Configure the test environment before any overskill imports.
_TEST_DIR = tempfile.mkdtemp(prefix="overskill-tests-")
os.environ["DATABASE_URL"] = os.environ.get(
    "TEST_DATABASE_URL",
    f"sqlite:///{_TEST_DIR}/overskill_test.db",
)
os.environ["LOG_FORMAT"] = "text"
os.environ["R2_STORAGE_ENABLED"] = "false"
os.environ["R2_ACCOUNT_ID"] = ""
os.environ["R2_ENDPOINT_URL"] = ""
os.environ["R2_ACCESS_KEY_ID"] = ""
os.environ["R2_SECRET_ACCESS_KEY"] = ""
os.environ["DISPLAY_NAME_MODEL"] = ""
os.environ["DEPLOY_COMMAND"] = ""

import pytest
from sqlalchemy import text
from fastapi.testclient import TestClient

from overskill.core.config import settings
from overskill.database import get_db, SessionLocal
from overskill.exceptions import ObjectStoreError
from overskill.main import app
from overskill.middleware.request_context import _rate_buckets
from overskill.schemas.app import AppCreate
from overskill.schemas.file import FileWrite
from overskill.services.app_service import AppService
from overskill.services.file_service import FileService
from overskill.storage import content_cache, get_object_store

# Deleted in this order between tests (children first).
_CLEAN_TABLES = [
    "background_jobs",
    "app_deployments",
    "app_version_files",
    "app_versions",
    "app_files",
    "apps",
    "database_shards",
]


class FakeObjectStore:
    """In-memory object store with switchable failures."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self.fail_put = False
        self.fail_put_paths: set[str] = set()  # matched against the key suffix
        self.fail_get = False
        self.fail_delete = False
        self.corrupt_on_put = False
        self.put_calls = 0
        self.get_calls = 0
        self.deleted: list[str] = []

    def put(self, key: str, data: bytes, content_type: str = "text/plain") -> None:
        self.put_calls += 1
        if self.fail_put or any(key.endswith("/" + p) for p in self.fail_put_paths):
            raise ObjectStoreError(f"Injected upload failure for {key}", object_key=key)
        self.objects[key] = data + b"<!-- corrupted -->" if self.corrupt_on_put else data
        self.content_types[key] = content_type

    def get(self, key: str) -> bytes:
        self.get_calls += 1
        if self.fail_get:
            raise ObjectStoreError(f"Injected fetch failure for {key}", object_key=key)
        if key not in self.objects:
            raise ObjectStoreError(f"Object not found: {key}", object_key=key)
        return self.objects[key]

    def delete(self, key: str) -> None:
        if self.fail_delete:
            raise ObjectStoreError(f"Injected delete failure for {key}", object_key=key)
        self.objects.pop(key, None)
        self.deleted.append(key)


@pytest.fixture(autouse=True)
def _clean_tables():
    """Empty all data tables and the read cache before each test.

    Runs before the test (not after) so failures leave data behind for
    debugging.
    """
    db = SessionLocal()
    try:
        for table in _CLEAN_TABLES:
            db.execute(text(f"DELETE FROM {table}"))
        db.commit()
    finally:
        db.close()
    content_cache.clear()
    yield


@pytest.fixture()
def db():
    """Per-test database session."""
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture()
def object_store():
    return FakeObjectStore()


@pytest.fixture()
def tiering_on(monkeypatch):
    """Switch the tiering feature flag on for one test."""
    monkeypatch.setattr(settings, "r2_storage_enabled", True)


@pytest.fixture()
def client(db, object_store):
    """TestClient using the test session and the in-memory object store."""

    def _override_get_db():
        try:
            yield db
        except Exception:
            db.rollback()
            raise

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_object_store] = lambda: object_store
    _rate_buckets.clear()  # Reset rate limiter so tests don't hit 429
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def make_app(db, name: str = "Demo App", **overrides):
    """Factory: create an app through the service (shard assigned)."""
    return AppService(db).create_app(AppCreate(name=name, **overrides))


def write_file(db, object_store, app_id: int, path: str, content: str, **overrides):
    """Factory: write one file through the editor write path."""
    data = FileWrite(path=path, content=content, **overrides)
    return FileService(db, object_store).write_file(app_id, data)


def sized(n: int, fill: str = "a") -> str:
    """ASCII content of exactly ``n`` bytes."""
    return fill * n
