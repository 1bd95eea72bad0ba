"""
Firebase-backed record and blob stores.

Records live in a Cloud Firestore collection and attachments in a Cloud
Storage bucket, both reached through the firebase-admin SDK from a trusted
server. Credentials come from a service-account JSON when configured,
otherwise from application default credentials.
"""

import logging
from typing import List, Optional

import firebase_admin
from firebase_admin import credentials, firestore, storage

from filedrop.schemas import MessageRecord, StoredMessage

logger = logging.getLogger(__name__)


def init_firebase_app(bucket_name: str, credentials_path: Optional[str] = None) -> firebase_admin.App:
    """
    Initialize (or reuse) the default firebase-admin app.

    Args:
        bucket_name: Cloud Storage bucket used for attachments
        credentials_path: Optional service-account JSON path

    Returns:
        The initialized firebase_admin.App
    """
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    if credentials_path:
        logger.info(f"Using service account credentials from {credentials_path}")
        credential = credentials.Certificate(credentials_path)
    else:
        logger.info("Using application default credentials")
        credential = credentials.ApplicationDefault()

    return firebase_admin.initialize_app(credential, {"storageBucket": bucket_name})


class FirestoreRecordStore:
    """Record store over one Firestore collection."""

    def __init__(self, client, collection: str = "messages"):
        self.client = client
        self.collection_name = collection

    @classmethod
    def from_app(cls, app: firebase_admin.App, collection: str = "messages") -> "FirestoreRecordStore":
        return cls(firestore.client(app), collection)

    @property
    def collection(self):
        return self.client.collection(self.collection_name)

    def add(self, record: MessageRecord) -> str:
        _, doc_ref = self.collection.add(record.to_document())
        logger.info(f"Created document {self.collection_name}/{doc_ref.id}")
        return doc_ref.id

    def list_all(self, order_by: str = "timestamp", descending: bool = True) -> List[StoredMessage]:
        direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
        snapshot = self.collection.order_by(order_by, direction=direction).stream()
        messages = [
            StoredMessage(id=doc.id, record=MessageRecord.from_document(doc.to_dict()))
            for doc in snapshot
        ]
        logger.info(f"Retrieved {len(messages)} documents from {self.collection_name}")
        return messages

    def check_health(self) -> bool:
        try:
            list(self.collection.limit(1).stream())
            return True
        except Exception as e:
            logger.error(f"Firestore health check failed: {e}")
            return False


class CloudStorageBlobStore:
    """Blob store over one Cloud Storage bucket; handles are Blob objects."""

    def __init__(self, bucket):
        self.bucket = bucket

    @classmethod
    def from_app(cls, app: firebase_admin.App) -> "CloudStorageBlobStore":
        return cls(storage.bucket(app=app))

    def store(self, key: str, data: bytes, content_type: str):
        blob = self.bucket.blob(key)
        blob.upload_from_string(data, content_type=content_type)
        logger.info(f"Uploaded gs://{self.bucket.name}/{key} ({len(data)} bytes, {content_type})")
        return blob

    def make_public(self, handle) -> None:
        handle.make_public()

    def public_url(self, handle) -> str:
        return handle.public_url

    def delete(self, key: str) -> None:
        self.bucket.blob(key).delete()
        logger.info(f"Deleted gs://{self.bucket.name}/{key}")
