"""ReceiptSearch configuration loaded from environment variables."""

from __future__ import annotations

import os

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """ReceiptSearch configuration."""

    model_config = SettingsConfigDict(
        env_prefix="RECEIPTSEARCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service
    service_name: str = Field(default="receiptsearch", description="Service name")
    host: str = Field(default="0.0.0.0", description="Server bind address")
    port: int = Field(default=8000, description="Server port")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Database
    database_url: str = Field(
        default="sqlite:///./receiptsearch.db",
        description="SQLAlchemy database URL",
    )
    auto_migrate_on_startup: bool = Field(
        default=True,
        description="Apply schema files on startup (dev friendly)",
    )

    # Authentication
    allow_insecure_dev: bool = Field(
        default=False,
        description="Allow unauthenticated access (dev only)",
    )
    api_key: SecretStr = Field(default=SecretStr(""), description="API key for authentication")

    # Embedding providers
    embedding_dimension: int = Field(default=384, description="Vector dimension for every provider")
    provider_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout applied to each outbound provider call",
    )
    openai_api_key: SecretStr = Field(default=SecretStr(""), description="Primary provider key")
    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Primary provider base URL",
    )
    openai_embedding_model: str = Field(
        default="text-embedding-3-small",
        description="Primary provider embedding model",
    )
    fallback_embedding_url: str = Field(
        default="",
        description="Secondary provider endpoint (POST {input, model} -> {embedding})",
    )
    fallback_embedding_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="Secondary provider bearer token",
    )
    fallback_embedding_model: str = Field(
        default="text-embedding-3-small",
        description="Secondary provider embedding model",
    )

    # Backfill
    backfill_default_batch_size: int = Field(default=5, description="Default backfill batch size")
    backfill_max_batch_size: int = Field(default=100, description="Max backfill batch size")
    backfill_workers: int = Field(
        default=1,
        description="Concurrent provider calls per batch (1 = sequential)",
    )
    max_embedding_attempts: int = Field(
        default=0,
        description="Quarantine receipts after this many failed attempts (0 = never)",
    )
    clear_embedding_on_edit: bool = Field(
        default=True,
        description="Drop cached embedding when a textual field changes",
    )

    # Search
    search_default_limit: int = Field(default=5, description="Default search limit")
    search_max_limit: int = Field(default=50, description="Max search limit")
    search_min_score: float = Field(default=0.3, description="Minimum cosine similarity")

    # CORS configuration
    cors_allowed_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins",
    )
    cors_allow_credentials: bool = Field(default=True, description="Allow credentials in CORS requests")
    cors_allowed_methods: list[str] = Field(
        default=["GET", "POST", "PATCH", "OPTIONS"],
        description="Allowed HTTP methods",
    )
    cors_allowed_headers: list[str] = Field(
        default=["Authorization", "Content-Type", "X-API-Key"],
        description="Allowed request headers",
    )

    trusted_hosts: list[str] = Field(default_factory=list, description="Trusted hostnames")

    @property
    def api_key_value(self) -> str:
        return self.api_key.get_secret_value()

    @field_validator("database_url", mode="before")
    @classmethod
    def prefer_global_database_url(cls, v: str) -> str:
        """Allow DATABASE_URL to override when RECEIPTSEARCH_DATABASE_URL is unset."""
        if os.environ.get("RECEIPTSEARCH_DATABASE_URL"):
            return v
        global_url = os.environ.get("DATABASE_URL")
        return global_url or v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 1 <= v <= 65535:
            raise ValueError(f"Port must be between 1 and 65535, got {v}")
        return v

    @field_validator(
        "embedding_dimension",
        "backfill_default_batch_size",
        "backfill_workers",
        "search_default_limit",
    )
    @classmethod
    def validate_positive_ints(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    @field_validator("provider_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("provider_timeout_seconds must be positive")
        return v

    @field_validator("max_embedding_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 0:
            raise ValueError("max_embedding_attempts must be >= 0")
        return v

    @field_validator("search_min_score")
    @classmethod
    def validate_min_score(cls, v: float) -> float:
        if not -1.0 <= v <= 1.0:
            raise ValueError("search_min_score must be within [-1, 1]")
        return v

    @field_validator("backfill_max_batch_size")
    @classmethod
    def validate_batch_limit(cls, v: int, info) -> int:
        default_size = info.data.get("backfill_default_batch_size", 5)
        if v < default_size:
            raise ValueError("backfill_max_batch_size must be >= backfill_default_batch_size")
        return v

    @field_validator("search_max_limit")
    @classmethod
    def validate_search_limit(cls, v: int, info) -> int:
        default_limit = info.data.get("search_default_limit", 5)
        if v < default_limit:
            raise ValueError("search_max_limit must be >= search_default_limit")
        return v

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: SecretStr, info) -> SecretStr:
        allow_insecure = info.data.get("allow_insecure_dev", False)
        key_value = v.get_secret_value() if isinstance(v, SecretStr) else str(v)
        if not key_value and not allow_insecure:
            raise ValueError("api_key is required when allow_insecure_dev=False")
        return v


settings = Settings()
