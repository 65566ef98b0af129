"""Pydantic models for database, storage and service configuration."""

from pydantic import BaseModel, Field, field_validator, model_validator


# ============================================================================
# Backend Configuration Models
# ============================================================================


class DatabaseConfig(BaseModel):
    """Connection settings for the source database."""

    type: str = "postgres"
    host: str = "localhost"
    port: int = Field(default=5432, gt=0, le=65535)
    username: str = "postgres"
    password: str = ""
    database: str = "postgres"
    sslmode: str = "disable"  # disable, require, verify-full

    @field_validator("host")
    @classmethod
    def _host_required(cls, value: str) -> str:
        if not value:
            raise ValueError("database host is required")
        return value

    @field_validator("username")
    @classmethod
    def _username_required(cls, value: str) -> str:
        if not value:
            raise ValueError("database username is required")
        return value


class StorageConfig(BaseModel):
    """Settings for the backup storage target.

    ``path`` applies to disk storage; the remaining fields apply to
    S3-compatible storage.
    """

    type: str = "disk"
    path: str = "./backups"
    bucket: str = ""
    region: str = "us-east-1"
    endpoint: str = ""        # e.g. MinIO or LocalStack URL
    access_key: str = ""      # optional with IAM roles
    secret_key: str = ""
    prefix: str = "backups/"

    @model_validator(mode="after")
    def _bucket_required_for_s3(self) -> "StorageConfig":
        if self.type == "s3" and not self.bucket:
            raise ValueError("storage bucket is required for S3 storage")
        return self


# ============================================================================
# Service Configuration
# ============================================================================


class ArchiveConfig(BaseModel):
    """Complete configuration for one backup service."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    timeout_seconds: float = Field(default=1800, gt=0)
