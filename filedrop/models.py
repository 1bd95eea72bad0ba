"""
SQLAlchemy ORM models for the local record store.

For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import Column, DateTime, String, Text

from filedrop.storage import Base


class Message(Base):
    """
    SQLAlchemy model for storing posted messages.

    Table: messages
    Primary Key: id (opaque hex identifier assigned on insert)
    """
    __tablename__ = "messages"

    id = Column(String, primary_key=True)
    text = Column(Text, nullable=True)
    file_url = Column(String, nullable=True)
    file_name = Column(String, nullable=True)
    file_type = Column(String, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
