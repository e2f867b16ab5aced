"""Central configuration for the practitioner match stream client.

This module uses Pydantic Settings for validation and env management.
"""
from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"


class ApiSettings(BaseSettings):
    """Backend endpoint and HTTP configuration."""
    model_config = SettingsConfigDict(
        env_prefix="API_",
        extra="ignore",
    )

    base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL of the matching backend",
    )
    stream_path: str = Field(default="/api/v1/match/stream")
    stream_test_path: str = Field(default="/api/v1/match/stream/test")
    access_token: SecretStr | None = Field(
        default=None,
        description="Static bearer token; normally supplied by the credential provider",
    )
    connect_timeout: float = Field(default=10.0, gt=0, le=120)
    read_timeout: float | None = Field(
        default=None,
        description="Per-read timeout for streams; None relies on transport keep-alive",
    )
    request_timeout: float = Field(default=30.0, gt=0, le=300, description="Timeout for non-streaming calls")
    retry_attempts: int = Field(default=3, ge=1, le=10)

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def stream_url(self) -> str:
        return f"{self.base_url}{self.stream_path}"


class StreamSettings(BaseSettings):
    """Streaming search defaults."""
    model_config = SettingsConfigDict(env_prefix="STREAM_", extra="ignore")

    default_limit: int = Field(default=10, ge=1, le=100, description="Matches requested per search")
    include_explanations: bool = Field(default=True)


class ExplanationSettings(BaseSettings):
    """Explanation text parser configuration."""
    model_config = SettingsConfigDict(env_prefix="EXPLANATION_", extra="ignore")

    section_delimiter: str = Field(default="#", min_length=1)
    fuzzy_threshold: int = Field(default=88, ge=0, le=100, description="Rapidfuzz score threshold for headers")


class LoggingSettings(BaseSettings):
    """Logging configuration."""
    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore")

    level: str = Field(default="INFO")
    format: str = Field(default="text")
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Main application settings."""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: Environment = Field(default=Environment.DEVELOPMENT)
    debug: bool = Field(default=False)
    app_name: str = Field(default="Practitioner Match Stream Client")
    version: str = Field(default="0.1.0")

    # Sub-configs
    api: ApiSettings = Field(default_factory=ApiSettings)
    stream: StreamSettings = Field(default_factory=StreamSettings)
    explanation: ExplanationSettings = Field(default_factory=ExplanationSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
