"""
Domain errors surfaced by the message service.

Both collapse every underlying cause into one fixed public message; the
cause stays attached as ``__cause__`` for the server-side log.
"""


class FileDropError(Exception):
    """Base class for errors that map to a generic 500 JSON body."""

    public_message = "Internal server error"

    def __init__(self, detail: str = None):
        super().__init__(detail or self.public_message)


class UploadFailedError(FileDropError):
    """Blob storage, visibility change, URL lookup or record write failed."""

    public_message = "Failed to upload message"


class FetchFailedError(FileDropError):
    """Listing records from the record store failed."""

    public_message = "Failed to fetch messages"
