"""
Configuration management for docsync.

This module centralizes environment-driven configuration using Pydantic's
`BaseSettings`. The startup routine consumes the shared `settings` instance;
tests construct `Settings(...)` directly with explicit values.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import AnyUrl, Field, PositiveInt, field_validator
from pydantic_settings import BaseSettings

from docsync.core.exceptions import ConfigurationError

DEFAULT_ELASTICSEARCH_FIELDS = (
    "Name,Status,Type,OrderNumber,CreatedAt,CustomerName,TotalPrice,OrderStatus,"
    "OrderCurrency,PaymentStatus,Id,ProductId,CustomerIds"
)


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Application configuration sourced from environment variables."""

    ENVIRONMENT: str = Field("development", pattern=r"^(development|staging|production)$")
    LOG_LEVEL: str = Field("INFO", pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")

    # Object storage source
    STORAGE_BACKEND: str = Field("local", pattern=r"^(local|s3|gcs)$")
    STORAGE_CONTAINER: Optional[str] = None
    STORAGE_PREFIX: str = ""
    S3_REGION: Optional[str] = None
    S3_ENDPOINT_URL: Optional[AnyUrl] = None
    GOOGLE_SERVICE_ACCOUNT_FILE: Optional[Path] = None
    LOCAL_STORAGE_PATH: Path = Field(default_factory=lambda: Path("storage"))

    # Search index source; one source per index name
    ELASTICSEARCH_URL: Optional[AnyUrl] = None
    ELASTICSEARCH_USERNAME: Optional[str] = None
    ELASTICSEARCH_PASSWORD: Optional[str] = None
    ELASTICSEARCH_INDICES: str = ""
    ELASTICSEARCH_FIELDS: str = DEFAULT_ELASTICSEARCH_FIELDS
    ELASTICSEARCH_SCROLL: str = Field("2m", pattern=r"^\d+[smh]$")
    ELASTICSEARCH_BATCH_SIZE: PositiveInt = 1000

    # Document store source
    MONGODB_URL: Optional[AnyUrl] = None
    MONGODB_DATABASE: Optional[str] = None
    MONGODB_COLLECTION: Optional[str] = None

    # Downstream document/chunk store
    STORE_BACKEND: str = Field("memory", pattern=r"^(memory|mongo)$")
    STORE_MONGODB_URL: Optional[AnyUrl] = None
    STORE_DATABASE: str = "docsync"
    STORE_MONGODB_TRANSACTIONS: bool = False

    # Chunking and truncation
    CHUNK_MAX_CHARS: PositiveInt = 200
    FIELD_VALUE_MAX_CHARS: PositiveInt = 3000
    DOCUMENT_MAX_CHARS: PositiveInt = 20000

    # Performance tuning
    REMOTE_TIMEOUT_SECONDS: float = Field(30.0, gt=0)
    INGESTION_CONCURRENCY: PositiveInt = 4

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    @field_validator("LOG_LEVEL", mode="before")
    def _upper_level(cls, value: str) -> str:
        return value.upper() if isinstance(value, str) else value

    @field_validator("STORAGE_PREFIX", mode="before")
    def _strip_prefix(cls, value: Optional[str]) -> str:
        return (value or "").lstrip("/")

    @property
    def elasticsearch_indices(self) -> List[str]:
        return _split_csv(self.ELASTICSEARCH_INDICES)

    @property
    def elasticsearch_fields(self) -> List[str]:
        return _split_csv(self.ELASTICSEARCH_FIELDS)

    @property
    def blob_source_enabled(self) -> bool:
        return bool(self.STORAGE_CONTAINER)

    @property
    def elasticsearch_enabled(self) -> bool:
        return self.ELASTICSEARCH_URL is not None

    @property
    def mongodb_enabled(self) -> bool:
        return self.MONGODB_URL is not None

    def validate_sources(self) -> None:
        """Reject partially configured sources before any ingestion run starts."""

        if self.STORAGE_BACKEND in {"s3", "gcs"} and not self.STORAGE_CONTAINER:
            raise ConfigurationError(
                "missing_storage_container",
                f"STORAGE_CONTAINER is required for the {self.STORAGE_BACKEND} storage backend",
            )

        if self.elasticsearch_enabled:
            missing = [
                name
                for name, value in (
                    ("ELASTICSEARCH_USERNAME", self.ELASTICSEARCH_USERNAME),
                    ("ELASTICSEARCH_PASSWORD", self.ELASTICSEARCH_PASSWORD),
                )
                if not value
            ]
            if not self.elasticsearch_indices:
                missing.append("ELASTICSEARCH_INDICES")
            if missing:
                raise ConfigurationError(
                    "missing_elasticsearch_settings",
                    "Elasticsearch source is partially configured",
                    {"missing": missing},
                )

        if self.mongodb_enabled and not (self.MONGODB_DATABASE and self.MONGODB_COLLECTION):
            raise ConfigurationError(
                "missing_mongodb_settings",
                "MONGODB_DATABASE and MONGODB_COLLECTION are required when MONGODB_URL is set",
            )

        if self.STORE_BACKEND == "mongo" and not (self.STORE_MONGODB_URL or self.MONGODB_URL):
            raise ConfigurationError(
                "missing_store_url",
                "STORE_MONGODB_URL (or MONGODB_URL) is required for the mongo store backend",
            )


@lru_cache()
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()


# Singleton-style settings instance for modules that prefer direct access.
settings = get_settings()
