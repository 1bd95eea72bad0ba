from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 3000

    # Logging
    LOG_LEVEL: str = "INFO"

    # Which collaborators back the record and blob stores
    STORAGE_BACKEND: Literal["firebase", "local"] = "firebase"

    # Firebase (Firestore + Cloud Storage)
    FIREBASE_STORAGE_BUCKET: str = "mobiletodesktop-23f56.firebasestorage.app"
    FIREBASE_CREDENTIALS: Optional[str] = None
    MESSAGES_COLLECTION: str = "messages"

    # Blob key prefix, shared by both backends
    UPLOAD_PREFIX: str = "uploads/"

    # Local backend (SQLAlchemy + filesystem)
    DATABASE_URL: str = "sqlite:///./filedrop.db"
    UPLOAD_DIR: str = "uploads"
    PUBLIC_BASE_URL: str = "http://localhost:3000"

    # Upper bound on every call into a store
    BACKEND_TIMEOUT_SECONDS: float = 30.0

    # Delete the stored blob when the record write that follows it fails
    CLEANUP_ORPHANED_BLOBS: bool = True


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()

