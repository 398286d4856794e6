"""Application configuration."""

from pathlib import Path
from typing import Literal, Self

from pydantic import computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    # Application
    PROJECT_NAME: str = "appShelf"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"
    LOG_LEVEL: str = "INFO"

    # Firebase Realtime Database
    FIREBASE_DATABASE_URL: str = "https://appshelf-default-rtdb.firebaseio.com"
    CATALOG_DB_PATH: str = "apps"
    REMOTE_TIMEOUT_SEC: float = 15.0
    STARTUP_PROBE_TIMEOUT_SEC: float = 5.0

    @computed_field
    @property
    def catalog_document_url(self) -> str:
        base = self.FIREBASE_DATABASE_URL.rstrip("/")
        return f"{base}/{self.CATALOG_DB_PATH.strip('/')}.json"

    # Push stream（断线重连退避）
    STREAM_RECONNECT_BASE_SEC: float = 1.0
    STREAM_RECONNECT_MAX_SEC: float = 60.0

    # Local cache
    CATALOG_CACHE_BACKEND: Literal["file", "redis"] = "file"
    CATALOG_CACHE_KEY: str = "firebase_apps_cache"
    CATALOG_CACHE_TTL_MS: int = 5 * 60 * 1000  # 5 minutes
    CATALOG_CACHE_DIR: Path = Path.home() / ".cache" / "appshelf"

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"

    @model_validator(mode="after")
    def _check_cache_and_backoff(self) -> Self:
        if self.CATALOG_CACHE_TTL_MS <= 0:
            raise ValueError("CATALOG_CACHE_TTL_MS must be positive")
        if self.STREAM_RECONNECT_BASE_SEC > self.STREAM_RECONNECT_MAX_SEC:
            raise ValueError(
                "STREAM_RECONNECT_BASE_SEC must not exceed STREAM_RECONNECT_MAX_SEC"
            )
        return self


settings = Settings()
