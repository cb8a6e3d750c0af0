"""Application configuration from environment variables."""
import tempfile

from pydantic import field_validator
from pydantic_settings import BaseSettings

DEFAULT_MAX_FILE_SIZE = 100 * 1024 * 1024


class Settings(BaseSettings):
    """All config comes from env vars or .env file."""

    # 32-byte key as 64 hex chars or base64. Required; validated at startup.
    ENCRYPTION_KEY: str = ""

    DATABASE_URL: str = "sqlite+aiosqlite:///./backend/database.db"
    FILE_STORAGE_PATH: str = "./backend/uploads"
    UPLOAD_TMP_DIR: str = tempfile.gettempdir()
    MAX_FILE_SIZE_BYTES: int = DEFAULT_MAX_FILE_SIZE
    API_PORT: int = 3001
    CORS_ORIGINS: str = "http://localhost:5173"
    LOG_LEVEL: str = "INFO"

    # Streaming
    STREAM_CHUNK_SIZE: int = 64 * 1024
    VERIFY_BEFORE_STREAM: bool = True

    # MOV -> MP4 conversion
    FFMPEG_BINARY: str = "ffmpeg"
    TRANSCODE_TIMEOUT_SECONDS: float = 300.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @field_validator("MAX_FILE_SIZE_BYTES", mode="before")
    @classmethod
    def positive_or_default(cls, v):
        try:
            parsed = int(v)
        except (TypeError, ValueError):
            return DEFAULT_MAX_FILE_SIZE
        return parsed if parsed > 0 else DEFAULT_MAX_FILE_SIZE

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


settings = Settings()
