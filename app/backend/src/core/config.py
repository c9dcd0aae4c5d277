"""Application configuration utilities."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings derived from environment variables."""

    database_url: str = Field(
        default="sqlite:///./billing.db", alias="DATABASE_URL"
    )
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    redis_enabled_flag: bool = Field(default=True, alias="REDIS_ENABLED")
    redis_ca_cert_path: str | None = Field(
        default=None, alias="REDIS_CA_CERT_PATH"
    )
    celery_broker_url: str | None = Field(
        default=None, alias="CELERY_BROKER_URL"
    )
    celery_result_backend: str | None = Field(
        default=None, alias="CELERY_RESULT_BACKEND"
    )
    storage_backend: str = Field(default="local", alias="STORAGE_BACKEND")
    local_storage_path: str = Field(
        default="/tmp/billing-packages", alias="LOCAL_STORAGE_PATH"
    )
    documents_bucket: str = Field(default="documents", alias="DOCUMENTS_BUCKET")
    packages_bucket: str = Field(
        default="billing-packages", alias="PACKAGES_BUCKET"
    )
    aws_region: str = Field(default="us-east-1", alias="AWS_REGION")
    aws_access_key_id: str | None = Field(
        default=None, alias="AWS_ACCESS_KEY_ID"
    )
    aws_secret_access_key: str | None = Field(
        default=None, alias="AWS_SECRET_ACCESS_KEY"
    )
    aws_endpoint_url: str | None = Field(default=None, alias="AWS_ENDPOINT_URL")
    consolidation_workers: int = Field(default=4, alias="CONSOLIDATION_WORKERS")
    package_lock_timeout_seconds: int = Field(
        default=900, alias="PACKAGE_LOCK_TIMEOUT_SECONDS"
    )
    package_lock_wait_seconds: float = Field(
        default=0.0, alias="PACKAGE_LOCK_WAIT_SECONDS"
    )
    presigned_url_ttl_seconds: int = Field(
        default=3600, alias="PRESIGNED_URL_TTL_SECONDS"
    )

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
    )

    @property
    def broker_url(self) -> str:
        """Return the Celery broker URL, defaulting to Redis."""

        return self.celery_broker_url or self.redis_url

    @property
    def result_backend(self) -> str:
        """Return the Celery result backend, defaulting to the Redis URL."""

        if self.celery_result_backend:
            return self.celery_result_backend
        return self.redis_url

    @property
    def redis_enabled(self) -> bool:
        """Return ``True`` when Redis integrations should be used."""

        return self.redis_enabled_flag

    @property
    def is_local_storage(self) -> bool:
        """Return ``True`` when objects are kept on the local filesystem."""

        return self.storage_backend.strip().lower() == "local"


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


__all__ = ["Settings", "get_settings"]
