# src/uploads_api/settings.py
from typing import List, Optional
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache

GIB = 1024 * 1024 * 1024
MIB = 1024 * 1024


class Settings(BaseSettings):
    """
    Single source of truth for all application settings.

    Configuration precedence:
    1. Environment variables (highest priority)
    2. .env file (if exists)
    3. Default values in this class (lowest priority)

    Usage:
        from uploads_api.settings import get_settings
        settings = get_settings()
        bucket_name = settings.s3_bucket_name
    """

    # Application Settings
    app_name: str = Field(
        default="uploads-api",
        description="Application name"
    )

    # Storage backend selector
    storage_backend: str = Field(
        default="local",
        validation_alias=AliasChoices("storage_backend", "STORAGE_BACKEND", "STORAGE_TYPE"),
        description="Storage backend: local or s3"
    )

    # Local storage
    storage_dir: str = Field(
        default="uploads",
        description="Destination directory for the local backend"
    )

    database_path: str = Field(
        default="uploads.db",
        description="SQLite file holding completed file records"
    )

    # AWS Core Settings
    aws_region: str = Field(
        default="us-east-1",
        validation_alias=AliasChoices("aws_region", "AWS_DEFAULT_REGION", "AWS_REGION")
    )

    aws_access_key_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("aws_access_key_id", "AWS_ACCESS_KEY_ID")
    )

    aws_secret_access_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("aws_secret_access_key", "AWS_SECRET_ACCESS_KEY")
    )

    aws_endpoint_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("aws_endpoint_url", "AWS_ENDPOINT_URL", "S3_ENDPOINT"),
        description="Custom endpoint for S3-compatible stores (MinIO, R2, moto)"
    )

    # S3 Configuration
    s3_bucket_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("s3_bucket_name", "S3_BUCKET_NAME"),
        description="Bucket receiving multipart uploads"
    )

    s3_force_path_style: bool = Field(
        default=True,
        description="Use path-style addressing (needed by most S3-compatible stores)"
    )

    s3_key_prefix: str = Field(
        default="uploads",
        description="Key prefix for uploaded objects"
    )

    # Upload limits
    max_file_size_bytes: int = Field(
        default=30 * GIB,
        gt=0,
        description="Largest file a session may declare"
    )

    chunk_size_bytes: int = Field(
        default=10 * MIB,
        gt=0,
        description="Chunk size hint returned to clients"
    )

    max_chunk_size_bytes: int = Field(
        default=10 * MIB,
        gt=0,
        description="Largest chunk accepted by the ingress layer"
    )

    max_buffered_bytes: Optional[int] = Field(
        default=None,
        gt=0,
        description="Cap on chunk bytes held in memory across all sessions (unset = no cap)"
    )

    # URL lifetimes
    part_url_ttl_seconds: int = Field(default=3600, gt=0)
    download_url_ttl_seconds: int = Field(default=3600, gt=0)
    max_download_url_ttl_seconds: int = Field(default=7 * 24 * 3600, gt=0)

    # Backend calls
    backend_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound for a single storage backend call"
    )

    session_idle_timeout_seconds: Optional[int] = Field(
        default=None,
        gt=0,
        description="Abort sessions idle for longer than this (unset = never)"
    )

    # Browser clients
    cors_allow_origins: List[str] = Field(
        default=["*"],
        description="Origins allowed to call the API from a browser (JSON list in the environment)"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    @field_validator("storage_backend", mode="before")
    @classmethod
    def normalize_storage_backend(cls, v):
        """Map legacy selector values onto backend kinds."""
        if isinstance(v, str):
            mode_mapping = {
                "cloud": "s3",
                "aws": "s3",
                "filesystem": "local",
            }
            v = v.strip().lower()
            return mode_mapping.get(v, v)
        return v

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v):
        """Validate the backend selector is one of the allowed values."""
        valid_backends = ["local", "s3"]
        if v not in valid_backends:
            raise ValueError(f"Invalid storage_backend: {v}. Must be one of {valid_backends}")
        return v

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v):
        return v.upper()

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    This ensures we only create one Settings instance per process.
    """
    return Settings()
