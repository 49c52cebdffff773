"""Configuration management using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="INKSTREAM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False

    # AWS Configuration
    aws_region: str = Field(default="us-east-1", description="AWS region for all clients")
    aws_profile: str | None = Field(default=None, description="AWS profile name")
    aws_endpoint_url: str | None = Field(
        default=None, description="Custom AWS endpoint URL (for local testing)"
    )

    # Bedrock Configuration
    bedrock_model_id: str = Field(
        default="anthropic.claude-3-haiku-20240307-v1:0",
        description="Model used for formatting and translation",
    )
    bedrock_max_tokens: int = Field(default=4096, description="Max tokens for LLM responses")
    bedrock_temperature: float = Field(default=0.1, description="Temperature for LLM responses")

    # Record store
    store_backend: Literal["memory", "sqlite"] = "sqlite"
    store_sqlite_path: str = Field(
        default="./data/inkstream.db", description="SQLite database for records and job tokens"
    )
    list_max_limit: int = Field(default=100, description="Largest page size accepted by listings")

    # Blob store
    blob_backend: Literal["memory", "local", "s3"] = "local"
    blob_local_path: str = Field(default="./data/blobs", description="Local blob directory")
    blob_s3_bucket: str | None = Field(default=None, description="S3 bucket for artifacts")

    # Extraction
    textract_output_prefix: str = Field(
        default="textract-output", description="Prefix the extraction job writes parts under"
    )
    merged_output_prefix: str = Field(
        default="merged-textract-output", description="Prefix for merged extraction output"
    )
    job_token_ttl_seconds: int = Field(
        default=6 * 60 * 60, description="Lifetime of an unconsumed job token"
    )

    # Timeouts
    execution_timeout_seconds: float = Field(
        default=15 * 60, description="Hard ceiling on total workflow execution time"
    )
    step_timeout_seconds: float = Field(
        default=60.0, description="Ceiling on a single synchronous step"
    )
    execution_history_size: int = Field(
        default=1000, description="Stopped executions kept for status lookups"
    )

    # Transforms
    transform_max_chars: int = Field(
        default=150_000, description="Input size above which text is truncated before transform"
    )

    # Retry Configuration
    retry_max_attempts: int = Field(default=3, description="Max retry attempts")
    retry_base_delay: float = Field(default=1.0, description="Base delay between retries (seconds)")
    retry_max_delay: float = Field(default=30.0, description="Max delay between retries (seconds)")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "console"] = "console"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
