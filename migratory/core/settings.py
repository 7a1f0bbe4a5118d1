"""Configuration for migratory."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MigrateSettings(BaseSettings):
    """Settings read from the environment and an optional ``.env`` file.

    Attributes:
        state_backend: Where the applied-migrations state is stored
        state_file: Path of the state file for the ``file`` backend
        state_key: S3 key of the state document for the ``s3`` backend
        aws_bucket_name: S3 bucket holding the state document
        aws_url: Custom S3 endpoint (e.g. LocalStack)
        aws_access_key_id: AWS access key
        aws_secret_access_key: AWS secret key
        aws_default_region: AWS region
        aws_retry_attempts: Retry attempts for S3 API calls
        log_level: Logging level used by the CLI
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    state_backend: Literal["file", "s3", "memory"] = "file"
    state_file: str = "migration-state"
    state_key: str = "_system/migration_state.json"

    aws_bucket_name: str | None = None
    aws_url: str | None = None
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None
    aws_default_region: str = "us-east-1"
    aws_retry_attempts: int = Field(3, ge=0)

    log_level: str = "INFO"
