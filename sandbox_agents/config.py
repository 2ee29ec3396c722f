"""
Configuration management for the sandbox analysis service.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "sandbox-agents"
    app_env: str = Field(default="development", alias="APP_ENV")
    debug: bool = Field(default=True, alias="DEBUG")
    server_port: int = Field(default=8000, alias="SERVER_PORT")

    # VPS control plane
    vps_enabled: bool = Field(default=True, alias="VPS_ENABLED")
    vps_gateway_url: str = Field(
        default="http://localhost:8080",
        alias="VPS_GATEWAY_URL",
    )
    session_timeout_minutes: int = Field(default=60, alias="VPS_SESSION_TIMEOUT_MINUTES")
    http_timeout_seconds: float = Field(default=30.0, alias="VPS_HTTP_TIMEOUT_SECONDS")
    create_max_attempts: int = Field(default=3, ge=1, alias="VPS_CREATE_MAX_ATTEMPTS")
    create_backoff_seconds: float = Field(default=0.5, ge=0.0, alias="VPS_CREATE_BACKOFF_SECONDS")

    # ACP channel
    connect_timeout_seconds: float = Field(default=15.0, alias="ACP_CONNECT_TIMEOUT_SECONDS")
    command_timeout_seconds: float = Field(default=120.0, alias="ACP_COMMAND_TIMEOUT_SECONDS")
    analysis_timeout_seconds: float = Field(default=600.0, alias="ACP_ANALYSIS_TIMEOUT_SECONDS")
    close_timeout_seconds: float = Field(default=5.0, alias="ACP_CLOSE_TIMEOUT_SECONDS")

    # LLM Configuration (direct analysis fallback)
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    openai_base_url: str = Field(default="https://api.openai.com/v1", alias="OPENAI_BASE_URL")
    openai_model_analysis: str = Field(default="gpt-4o-mini", alias="OPENAI_MODEL_ANALYSIS")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"
        populate_by_name = True


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
