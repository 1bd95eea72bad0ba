"""
Utility functions for the filedrop API.
"""

import logging
from datetime import datetime, timedelta, timezone

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    """Current server time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def epoch_millis(moment: datetime) -> int:
    """
    Convert a datetime to integer milliseconds since the Unix epoch.

    Naive datetimes are taken to be UTC.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (moment - EPOCH) // timedelta(milliseconds=1)


def build_file_name(original_name: str, moment: datetime) -> str:
    """
    Derive the stored file name for an attachment.

    Args:
        original_name: Filename as declared by the client
        moment: Submission time

    Returns:
        "<epoch-millis>_<original_name>"
    """
    file_name = f"{epoch_millis(moment)}_{original_name}"
    logger.debug(f"Derived file name: {file_name}")
    return file_name


def build_storage_key(prefix: str, file_name: str) -> str:
    """Join the configured blob prefix and a file name into a storage key."""
    return f"{prefix}{file_name}"
