"""
Pytest configuration and shared fixtures.

Collaborator stores are replaced with in-memory fakes injected into the
MessageService; the local (SQLite + filesystem) backend gets its own
fixtures pointed at a temporary directory.
"""

import os
from datetime import datetime, timedelta, timezone

import pytest

# Keep the module-level app on the side-effect-free backend before imports
os.environ.setdefault("STORAGE_BACKEND", "firebase")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from fastapi.testclient import TestClient  # noqa: E402

from filedrop.config import Settings, get_settings  # noqa: E402
get_settings.cache_clear()

from filedrop.main import create_app  # noqa: E402
from filedrop.schemas import StoredMessage  # noqa: E402
from filedrop.service import MessageService  # noqa: E402


START = datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc)
START_MILLIS = 1736935200000


class FakeRecordStore:
    """In-memory record store; ids are "msg-1", "msg-2", ..."""

    def __init__(self):
        self.messages = []
        self.fail_add = False
        self.fail_list = False
        self.healthy = True

    def add(self, record):
        if self.fail_add:
            raise RuntimeError("record store unavailable")
        message_id = f"msg-{len(self.messages) + 1}"
        self.messages.append(StoredMessage(id=message_id, record=record))
        return message_id

    def list_all(self, order_by="timestamp", descending=True):
        if self.fail_list:
            raise RuntimeError("record store unavailable")
        return sorted(
            self.messages,
            key=lambda m: getattr(m.record, order_by),
            reverse=descending,
        )

    def check_health(self):
        return self.healthy


class FakeBlobStore:
    """In-memory blob store; handles are the storage keys."""

    def __init__(self):
        self.blobs = {}
        self.public = set()
        self.deleted = []
        self.fail_on = None

    def _maybe_fail(self, step):
        if self.fail_on == step:
            raise RuntimeError(f"blob store {step} failed")

    def store(self, key, data, content_type):
        self._maybe_fail("store")
        self.blobs[key] = (data, content_type)
        return key

    def make_public(self, handle):
        self._maybe_fail("make_public")
        self.public.add(handle)

    def public_url(self, handle):
        self._maybe_fail("public_url")
        return f"https://storage.example.com/test-bucket/{handle}"

    def delete(self, key):
        self._maybe_fail("delete")
        self.deleted.append(key)
        self.blobs.pop(key, None)


class SteppingClock:
    """Returns START, START+1s, START+2s, ... on successive calls."""

    def __init__(self, start=START, step=timedelta(seconds=1)):
        self.current = start
        self.step = step

    def __call__(self):
        now = self.current
        self.current = self.current + self.step
        return now


@pytest.fixture
def record_store():
    return FakeRecordStore()


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def clock():
    return SteppingClock()


@pytest.fixture
def service(record_store, blob_store, clock):
    return MessageService(record_store, blob_store, timeout_seconds=5.0, clock=clock)


@pytest.fixture
def client(service):
    """Test client whose app uses the in-memory stores."""
    app = create_app(Settings(STORAGE_BACKEND="firebase"))
    app.state.message_service = service

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def local_settings(tmp_path):
    return Settings(
        STORAGE_BACKEND="local",
        DATABASE_URL=f"sqlite:///{tmp_path / 'test.db'}",
        UPLOAD_DIR=str(tmp_path / "uploads"),
        PUBLIC_BASE_URL="http://testserver",
    )


@pytest.fixture
def local_client(local_settings):
    """Test client running the real SQLite record store and local blob store."""
    app = create_app(local_settings)

    with TestClient(app) as test_client:
        yield test_client
