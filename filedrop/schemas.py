"""
Pydantic schemas for request/response validation.

This module contains:
- Submission models validated at the POST /messages boundary
- Record models exchanged with the record store
- Response models for API responses
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# Submission Models
# =============================================================================

class Attachment(BaseModel):
    """A single uploaded file held in memory."""
    content: bytes = Field(..., description="Raw file bytes")
    original_name: str = Field(..., min_length=1, description="Filename declared by the client")
    mime_type: str = Field(
        default="application/octet-stream",
        description="Declared MIME type of the file"
    )


class Submission(BaseModel):
    """
    One client-provided unit of input to POST /messages.

    Validates:
    - text: optional; empty string is coerced to None
    - attachment: optional single file
    """
    text: Optional[str] = Field(None, description="Message text")
    attachment: Optional[Attachment] = Field(None, description="Optional file attachment")

    @field_validator("text")
    @classmethod
    def empty_text_to_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None


# =============================================================================
# Record Models
# =============================================================================

class MessageRecord(BaseModel):
    """
    Fields persisted for one message.

    file_url, file_name and file_type are either all set or all None.
    """
    text: Optional[str] = None
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_type: Optional[str] = None
    timestamp: datetime

    def to_document(self) -> dict:
        """Field layout used in the Firestore collection."""
        return {
            "text": self.text,
            "fileUrl": self.file_url,
            "fileName": self.file_name,
            "fileType": self.file_type,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_document(cls, data: dict) -> "MessageRecord":
        return cls(
            text=data.get("text"),
            file_url=data.get("fileUrl"),
            file_name=data.get("fileName"),
            file_type=data.get("fileType"),
            timestamp=data["timestamp"],
        )


class StoredMessage(BaseModel):
    """A record together with the identifier the record store assigned."""
    id: str
    record: MessageRecord


# =============================================================================
# Response Models
# =============================================================================

class UploadResponse(BaseModel):
    """Response model for a successful POST /messages."""
    id: str = Field(..., description="Identifier assigned to the new message")


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    error: str = Field(..., description="Error description")


class MessageResponse(BaseModel):
    """
    Response model for a single message in the messages list.
    Maps record fields to the camelCase API format.
    """
    id: str = Field(..., description="Message identifier")
    text: Optional[str] = Field(None, description="Message text")
    file_url: Optional[str] = Field(
        None,
        alias="fileUrl",
        serialization_alias="fileUrl",
        description="Public URL of the attachment"
    )
    file_name: Optional[str] = Field(
        None,
        alias="fileName",
        serialization_alias="fileName",
        description="Stored attachment name (<epoch-millis>_<original>)"
    )
    file_type: Optional[str] = Field(
        None,
        alias="fileType",
        serialization_alias="fileType",
        description="Attachment MIME type"
    )
    timestamp: datetime = Field(..., description="Server creation time")

    model_config = {"populate_by_name": True}

    @classmethod
    def from_stored(cls, stored: StoredMessage) -> "MessageResponse":
        record = stored.record
        return cls(
            id=stored.id,
            text=record.text,
            file_url=record.file_url,
            file_name=record.file_name,
            file_type=record.file_type,
            timestamp=record.timestamp,
        )


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
