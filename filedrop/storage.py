import logging
import os
import uuid
from datetime import timezone
from typing import List, Protocol
from urllib.parse import quote

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from filedrop.schemas import MessageRecord, StoredMessage

logger = logging.getLogger(__name__)

# Base class for SQLAlchemy models
Base = declarative_base()


# =============================================================================
# Collaborator Contracts
# =============================================================================

class RecordStore(Protocol):
    """Durable store for message records."""

    def add(self, record: MessageRecord) -> str:
        ...

    def list_all(self, order_by: str = "timestamp", descending: bool = True) -> List[StoredMessage]:
        ...

    def check_health(self) -> bool:
        ...


class BlobStore(Protocol):
    """Durable store for uploaded file content."""

    def store(self, key: str, data: bytes, content_type: str):
        ...

    def make_public(self, handle) -> None:
        ...

    def public_url(self, handle) -> str:
        ...

    def delete(self, key: str) -> None:
        ...


# =============================================================================
# SQL Record Store
# =============================================================================

class SqlRecordStore:
    """
    Record store backed by SQLAlchemy.

    Used by the "local" backend; any SQLAlchemy URL works, SQLite by default.
    """

    def __init__(self, database_url: str):
        connect_args = {}
        if database_url.startswith("sqlite"):
            # Required for SQLite when sessions cross FastAPI worker threads
            connect_args["check_same_thread"] = False
        self.database_url = database_url
        self.engine = create_engine(database_url, connect_args=connect_args, echo=False)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def init_db(self) -> None:
        """
        Initialize the database by creating all tables.
        Called during application startup.
        """
        logger.debug(f"Initializing database with URL: {self.database_url}")
        try:
            # Import models to register them with Base.metadata
            from filedrop.models import Message  # noqa: F401

            Base.metadata.create_all(bind=self.engine)
            logger.info("Database initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

    def add(self, record: MessageRecord) -> str:
        from filedrop.models import Message

        message_id = uuid.uuid4().hex
        logger.info(f"Creating message: id={message_id}")
        with self.SessionLocal() as db:
            try:
                db.add(Message(id=message_id, **record.model_dump()))
                db.commit()
            except Exception:
                db.rollback()
                raise
        logger.info(f"Message created successfully: {message_id}")
        return message_id

    def list_all(self, order_by: str = "timestamp", descending: bool = True) -> List[StoredMessage]:
        from filedrop.models import Message

        column = getattr(Message, order_by)
        logger.info(f"Querying messages ordered by {order_by} {'desc' if descending else 'asc'}")
        with self.SessionLocal() as db:
            rows = db.query(Message).order_by(column.desc() if descending else column.asc()).all()
            messages = [_row_to_stored(row) for row in rows]
        logger.info(f"Retrieved {len(messages)} messages")
        return messages

    def check_health(self) -> bool:
        """
        Check if the database is reachable and schema is applied.

        Returns:
            True if DB is healthy and schema exists, False otherwise.
        """
        logger.debug("Checking database health...")
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            if not inspect(self.engine).has_table("messages"):
                logger.error("Database schema not applied: 'messages' table not found")
                return False
            logger.debug("Database health check passed")
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False


def _row_to_stored(row) -> StoredMessage:
    timestamp = row.timestamp
    # SQLite drops tzinfo on the way back out
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return StoredMessage(
        id=row.id,
        record=MessageRecord(
            text=row.text,
            file_url=row.file_url,
            file_name=row.file_name,
            file_type=row.file_type,
            timestamp=timestamp,
        ),
    )


# =============================================================================
# Local Blob Store
# =============================================================================

class LocalBlobStore:
    """
    Blob store writing into a local directory.

    Files are served by the app under /<key> (see main.create_app), so every
    stored blob is already public and make_public is a no-op.
    """

    def __init__(self, root_dir: str, public_base_url: str, url_prefix: str = "uploads/"):
        self.root_dir = os.path.abspath(root_dir)
        self.public_base_url = public_base_url.rstrip("/")
        self.url_prefix = url_prefix
        os.makedirs(self.root_dir, exist_ok=True)

    def _path(self, key: str) -> str:
        relative = key[len(self.url_prefix):] if key.startswith(self.url_prefix) else key
        path = os.path.abspath(os.path.join(self.root_dir, relative))
        if os.path.commonpath([path, self.root_dir]) != self.root_dir:
            raise ValueError(f"Storage key escapes upload directory: {key}")
        return path

    def store(self, key: str, data: bytes, content_type: str) -> str:
        path = self._path(key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
        logger.info(f"Stored blob {key} ({len(data)} bytes, {content_type})")
        return key

    def make_public(self, handle: str) -> None:
        logger.debug(f"Blob {handle} is served publicly by the app")

    def public_url(self, handle: str) -> str:
        return f"{self.public_base_url}/{quote(handle)}"

    def delete(self, key: str) -> None:
        os.remove(self._path(key))
        logger.info(f"Deleted blob {key}")
