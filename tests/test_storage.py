"""
Tests for the record and blob store backends.

Tests cover:
- SqlRecordStore against a temporary SQLite database
- LocalBlobStore against a temporary directory
- Firestore / Cloud Storage stores against SDK doubles
- The local backend end to end through the HTTP API
"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from conftest import START
from filedrop.firebase import CloudStorageBlobStore, FirestoreRecordStore
from filedrop.schemas import MessageRecord
from filedrop.storage import LocalBlobStore, SqlRecordStore


@pytest.fixture
def sql_store(tmp_path):
    store = SqlRecordStore(f"sqlite:///{tmp_path / 'records.db'}")
    store.init_db()
    return store


@pytest.fixture
def local_blobs(tmp_path):
    return LocalBlobStore(str(tmp_path / "blobs"), "http://files.local/")


class TestSqlRecordStore:

    def test_add_assigns_unique_ids(self, sql_store):
        first = sql_store.add(MessageRecord(text="a", timestamp=START))
        second = sql_store.add(MessageRecord(text="b", timestamp=START))

        assert first != second
        assert len(first) == 32

    def test_list_all_newest_first(self, sql_store):
        for i, text in enumerate(["old", "middle", "new"]):
            sql_store.add(MessageRecord(text=text, timestamp=START + timedelta(minutes=i)))

        messages = sql_store.list_all("timestamp", descending=True)

        assert [m.record.text for m in messages] == ["new", "middle", "old"]

    def test_list_all_ascending(self, sql_store):
        for i, text in enumerate(["old", "new"]):
            sql_store.add(MessageRecord(text=text, timestamp=START + timedelta(minutes=i)))

        messages = sql_store.list_all("timestamp", descending=False)

        assert [m.record.text for m in messages] == ["old", "new"]

    def test_round_trip_preserves_fields(self, sql_store):
        record = MessageRecord(
            text=None,
            file_url="http://files.local/uploads/1_a.txt",
            file_name="1_a.txt",
            file_type="text/plain",
            timestamp=START,
        )
        message_id = sql_store.add(record)

        [stored] = sql_store.list_all()

        assert stored.id == message_id
        assert stored.record == record

    def test_timestamps_come_back_as_utc(self, sql_store):
        sql_store.add(MessageRecord(text="a", timestamp=START))

        [stored] = sql_store.list_all()

        assert stored.record.timestamp.utcoffset() == timedelta(0)

    def test_health_ok(self, sql_store):
        assert sql_store.check_health() is True

    def test_health_without_schema(self, tmp_path):
        store = SqlRecordStore(f"sqlite:///{tmp_path / 'empty.db'}")

        assert store.check_health() is False


class TestLocalBlobStore:

    def test_store_writes_file(self, local_blobs, tmp_path):
        handle = local_blobs.store("uploads/1_a.txt", b"hello", "text/plain")

        assert handle == "uploads/1_a.txt"
        assert (tmp_path / "blobs" / "1_a.txt").read_bytes() == b"hello"

    def test_public_url_is_quoted(self, local_blobs):
        url = local_blobs.public_url("uploads/1_my photo.png")

        assert url == "http://files.local/uploads/1_my%20photo.png"

    def test_delete(self, local_blobs, tmp_path):
        local_blobs.store("uploads/1_a.txt", b"hello", "text/plain")

        local_blobs.delete("uploads/1_a.txt")

        assert not (tmp_path / "blobs" / "1_a.txt").exists()

    def test_rejects_keys_outside_directory(self, local_blobs):
        with pytest.raises(ValueError):
            local_blobs.store("uploads/../../escape.txt", b"x", "text/plain")


class TestFirestoreRecordStore:

    @pytest.fixture
    def firestore_client(self):
        return MagicMock()

    def test_add_writes_document(self, firestore_client):
        doc_ref = MagicMock(id="abc123")
        firestore_client.collection.return_value.add.return_value = (None, doc_ref)
        store = FirestoreRecordStore(firestore_client, "messages")

        message_id = store.add(MessageRecord(text="budget report", timestamp=START))

        assert message_id == "abc123"
        firestore_client.collection.assert_called_with("messages")
        firestore_client.collection.return_value.add.assert_called_once_with({
            "text": "budget report",
            "fileUrl": None,
            "fileName": None,
            "fileType": None,
            "timestamp": START,
        })

    def test_list_all_orders_descending(self, firestore_client):
        from filedrop.firebase import firestore

        doc = MagicMock(id="abc123")
        doc.to_dict.return_value = {
            "text": "hi",
            "fileUrl": None,
            "fileName": None,
            "fileType": None,
            "timestamp": START,
        }
        query = firestore_client.collection.return_value.order_by.return_value
        query.stream.return_value = iter([doc])
        store = FirestoreRecordStore(firestore_client)

        messages = store.list_all("timestamp", descending=True)

        firestore_client.collection.return_value.order_by.assert_called_once_with(
            "timestamp", direction=firestore.Query.DESCENDING
        )
        assert [(m.id, m.record.text) for m in messages] == [("abc123", "hi")]

    def test_health_failure(self, firestore_client):
        firestore_client.collection.return_value.limit.return_value.stream.side_effect = RuntimeError("down")

        assert FirestoreRecordStore(firestore_client).check_health() is False


class TestCloudStorageBlobStore:

    def test_store_make_public_url(self):
        bucket = MagicMock()
        blob = bucket.blob.return_value
        blob.public_url = "https://storage.googleapis.com/bucket/uploads/1_a.png"
        store = CloudStorageBlobStore(bucket)

        handle = store.store("uploads/1_a.png", b"png", "image/png")
        store.make_public(handle)

        bucket.blob.assert_called_with("uploads/1_a.png")
        blob.upload_from_string.assert_called_once_with(b"png", content_type="image/png")
        blob.make_public.assert_called_once_with()
        assert store.public_url(handle) == "https://storage.googleapis.com/bucket/uploads/1_a.png"

    def test_delete(self):
        bucket = MagicMock()

        CloudStorageBlobStore(bucket).delete("uploads/1_a.png")

        bucket.blob.assert_called_with("uploads/1_a.png")
        bucket.blob.return_value.delete.assert_called_once_with()


class TestLocalBackendEndToEnd:
    """The local backend wired through create_app."""

    def test_post_then_get(self, local_client):
        response = local_client.post("/messages", data={"text": "hello"})
        assert response.status_code == 200
        message_id = response.json()["id"]

        data = local_client.get("/messages").json()

        assert [(m["id"], m["text"], m["fileUrl"]) for m in data] == [(message_id, "hello", None)]

    def test_uploaded_file_is_served(self, local_client):
        response = local_client.post(
            "/messages",
            files={"file": ("notes.txt", b"some notes", "text/plain")},
        )
        assert response.status_code == 200

        [message] = local_client.get("/messages", params={"search": "NOTES"}).json()
        assert message["fileType"] == "text/plain"
        assert message["fileUrl"].startswith("http://testserver/uploads/")
        assert message["fileName"].endswith("_notes.txt")

        served = local_client.get(message["fileUrl"].replace("http://testserver", ""))
        assert served.status_code == 200
        assert served.content == b"some notes"

    def test_ready(self, local_client):
        response = local_client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"
