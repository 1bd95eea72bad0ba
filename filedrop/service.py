"""
Message service: the submit and list operations behind /messages.

The service owns no mutable state. Record and blob store handles are built
once at startup and injected; every call into them runs on a worker thread
bounded by a timeout, since the store SDKs are synchronous.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional

from filedrop.errors import FetchFailedError, UploadFailedError
from filedrop.metrics import record_query_outcome, record_upload_outcome
from filedrop.schemas import MessageRecord, StoredMessage, Submission
from filedrop.storage import BlobStore, RecordStore
from filedrop.utils import build_file_name, build_storage_key, utc_now

logger = logging.getLogger(__name__)


def matches_search(message: StoredMessage, needle: str) -> bool:
    """
    Case-insensitive substring match over text and file name.

    `needle` must already be lowercased; an empty needle matches everything.
    """
    if not needle:
        return True
    text = (message.record.text or "").lower()
    file_name = (message.record.file_name or "").lower()
    return needle in text or needle in file_name


def _late_upload_logger(key: str):
    def report(task: asyncio.Future) -> None:
        if not task.cancelled() and task.exception() is None:
            logger.warning(f"Late upload of blob {key} finished; it is left behind")
    return report


class MessageService:
    def __init__(
        self,
        record_store: RecordStore,
        blob_store: BlobStore,
        upload_prefix: str = "uploads/",
        timeout_seconds: Optional[float] = 30.0,
        cleanup_orphaned_blobs: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.record_store = record_store
        self.blob_store = blob_store
        self.upload_prefix = upload_prefix
        self.timeout_seconds = timeout_seconds
        self.cleanup_orphaned_blobs = cleanup_orphaned_blobs
        self.clock = clock

    async def _call(self, fn, *args, **kwargs):
        task = asyncio.ensure_future(asyncio.to_thread(fn, *args, **kwargs))
        return await self._bounded(task)

    async def _bounded(self, task: asyncio.Future):
        # The worker thread cannot be stopped; shield keeps its outcome awaitable after a timeout
        return await asyncio.wait_for(asyncio.shield(task), timeout=self.timeout_seconds)

    async def submit(self, submission: Submission) -> str:
        """
        Store the optional attachment, then the message record.

        A blob whose record was never written is removed again, unless the
        record write timed out: that write may still land, so the blob stays.

        Returns:
            Identifier assigned by the record store

        Raises:
            UploadFailedError: any step failed or timed out
        """
        now = self.clock()
        file_url = file_name = file_type = None
        stored_key = store_task = None
        record_pending = False

        try:
            attachment = submission.attachment
            if attachment is not None:
                file_name = build_file_name(attachment.original_name, now)
                file_type = attachment.mime_type
                key = build_storage_key(self.upload_prefix, file_name)

                store_task = asyncio.ensure_future(
                    asyncio.to_thread(self.blob_store.store, key, attachment.content, file_type)
                )
                stored_key = key
                handle = await self._bounded(store_task)
                await self._call(self.blob_store.make_public, handle)
                file_url = await self._call(self.blob_store.public_url, handle)

            record = MessageRecord(
                text=submission.text,
                file_url=file_url,
                file_name=file_name,
                file_type=file_type,
                timestamp=now,
            )
            try:
                message_id = await self._call(self.record_store.add, record)
            except asyncio.TimeoutError:
                record_pending = True
                raise
        except Exception as e:
            logger.exception(f"Failed to upload message: {e!r}")
            record_upload_outcome("error")
            if stored_key is not None:
                if record_pending:
                    logger.warning(f"Keeping blob {stored_key}: timed-out record write may still complete")
                else:
                    await self._discard_blob(stored_key, store_task)
            raise UploadFailedError() from e

        logger.info(f"Message stored: id={message_id}, has_file={file_name is not None}")
        record_upload_outcome("created")
        return message_id

    async def _discard_blob(self, key: str, store_task: asyncio.Future) -> None:
        if not self.cleanup_orphaned_blobs:
            logger.warning(f"Leaving orphaned blob {key}")
            return

        if not store_task.done():
            # A timed-out upload is still running; give it one more timeout to settle
            await asyncio.wait({store_task}, timeout=self.timeout_seconds)
        if not store_task.done():
            logger.warning(f"Upload of blob {key} still running; it may be left behind")
            store_task.add_done_callback(_late_upload_logger(key))
            return
        if store_task.cancelled() or store_task.exception() is not None:
            logger.debug(f"Blob {key} was never stored")
            return

        try:
            await self._call(self.blob_store.delete, key)
            logger.info(f"Removed orphaned blob {key}")
        except Exception as e:
            logger.error(f"Failed to remove orphaned blob {key}: {e!r}")

    async def list_messages(self, search: Optional[str] = None) -> List[StoredMessage]:
        """
        Fetch every message newest first and keep those matching `search`.

        Raises:
            FetchFailedError: the fetch failed or timed out
        """
        needle = (search or "").lower()
        try:
            messages = await self._call(self.record_store.list_all, "timestamp", True)
        except Exception as e:
            logger.exception(f"Failed to fetch messages: {e!r}")
            record_query_outcome("error")
            raise FetchFailedError() from e

        filtered = [m for m in messages if matches_search(m, needle)]
        logger.debug(f"Search {needle!r} kept {len(filtered)} of {len(messages)} messages")
        record_query_outcome("ok")
        return filtered
