from __future__ import annotations

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings

DEFAULT_ALLOWED_MIME_TYPES = [
    "image/jpeg",
    "image/png",
    "image/webp",
    "image/gif",
    "image/bmp",
]


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    api_key: str = "test-api-key"
    moderator_key: str = Field("test-moderator-key", alias="MODERATOR_KEY")
    trusted_proxies: list[str] = Field(
        default_factory=lambda: ["127.0.0.1", "testclient"]
    )

    database_url: str = Field("sqlite:////tmp/wastewatch_test.db", alias="DATABASE_URL")
    db_create_all: bool = Field(False, alias="DB_CREATE_ALL")

    redis_url: str = Field("redis://localhost:6379", alias="REDIS_URL")

    s3_bucket: str = "wastewatch"
    s3_endpoint: str | None = None
    s3_region: str = "us-east-1"
    s3_access_key: str | None = None
    s3_secret_key: str | None = None
    s3_public_url: str | None = None

    openai_api_key: str | None = Field(None, alias="OPENAI_API_KEY")
    classifier_model: str = Field("gpt-4o-mini", alias="CLASSIFIER_MODEL")
    classifier_timeout_seconds: float = Field(20.0, alias="CLASSIFIER_TIMEOUT_SECONDS")
    classifier_max_attempts: int = Field(3, alias="CLASSIFIER_MAX_ATTEMPTS")
    classifier_backoff_base: float = Field(0.5, alias="CLASSIFIER_BACKOFF_BASE")
    classifier_backoff_max: float = Field(4.0, alias="CLASSIFIER_BACKOFF_MAX")
    classifier_max_side: int = Field(1024, alias="CLASSIFIER_MAX_SIDE")
    classifier_proxy: str | None = Field(None, alias="CLASSIFIER_PROXY")

    max_image_bytes: int = Field(5 * 1024 * 1024, alias="MAX_IMAGE_BYTES")
    max_image_pixels: int = Field(40_000_000, alias="MAX_IMAGE_PIXELS")
    allowed_mime_types: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_MIME_TYPES)
    )

    ledger_max_attempts: int = Field(3, alias="LEDGER_MAX_ATTEMPTS")
    ledger_backoff_seconds: float = Field(0.2, alias="LEDGER_BACKOFF_SECONDS")
    reconcile_interval_seconds: int = Field(300, alias="RECONCILE_INTERVAL_SECONDS")
    reconcile_batch_size: int = Field(100, alias="RECONCILE_BATCH_SIZE")

    model_config = ConfigDict(
        extra="ignore",
        env_file=".env",
        case_sensitive=False,
        populate_by_name=True,
    )
