from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_APP_NAME = "store-service"


class ServiceSettings(BaseSettings):
    """Base settings shared by all FastAPI services."""

    app_name: str = Field(default=DEFAULT_APP_NAME)
    service_version: str = Field(default="0.1.0")
    environment: Literal["local", "dev", "staging", "prod"] = Field(default="local")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    service_host: str = Field(default="0.0.0.0")
    service_port: int = Field(default=8000)
    enable_metrics: bool = Field(default=True)
    enable_tracing: bool = Field(default=False)
    tracing_endpoint: str | None = Field(default=None)
    tracing_protocol: Literal["http/protobuf", "grpc"] = Field(default="http/protobuf")
    tracing_insecure: bool = Field(default=True)
    tracing_sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    database_url: str | None = Field(default=None)
    elevated_database_url: str | None = Field(default=None)
    create_schema_on_startup: bool = Field(default=True)
    auth_service_url: str | None = Field(default=None)
    auth_api_key: str | None = Field(default=None)
    auth_timeout_seconds: float = Field(default=2.0, gt=0.0)
    checkout_mode: Literal["atomic", "two_phase"] = Field(default="atomic")
    decrement_max_attempts: int = Field(default=5, ge=1)
    decrement_backoff_seconds: float = Field(default=0.05, ge=0.0)
    recommendation_api_url: str = Field(default="https://api.openai.com/v1/chat/completions")
    recommendation_api_key: str | None = Field(default=None)
    recommendation_model: str = Field(default="gpt-4o-mini")
    recommendation_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    recommendation_max_tokens: int = Field(default=800, ge=1)
    recommendation_timeout_seconds: float = Field(default=30.0, gt=0.0)
    recommendation_context_max_chars: int = Field(default=12000, ge=256)

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"), env_prefix="SERVICE_", extra="ignore"
    )


@lru_cache
def get_settings() -> ServiceSettings:
    """Return cached service settings."""

    return ServiceSettings()
