"""Configuration management using pydantic-settings."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_url: str = Field(
        default="sqlite:///dmpilot.db",
        description="Database connection URL",
    )

    # Anthropic API
    anthropic_api_key: Optional[str] = Field(
        default=None,
        description="Anthropic API key for the AI chat responder",
    )
    ai_model: str = Field(
        default="claude-sonnet-4-20250514",
        description="Model used for AI chat replies",
    )
    ai_timeout_seconds: float = Field(
        default=20.0,
        description="Timeout for a single AI completion call",
    )

    # Meta/Instagram API
    meta_app_secret: Optional[str] = Field(
        default=None,
        description="Meta App Secret, used to verify webhook signatures",
    )
    webhook_verify_token: Optional[str] = Field(
        default=None,
        description="Token Meta echoes back when subscribing the webhook",
    )
    graph_api_version: str = Field(
        default="v18.0",
        description="Graph API version for outbound messaging",
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for Graph API requests",
    )

    # Engine
    worker_pool_size: int = Field(
        default=8,
        description="Maximum number of conversations processed in parallel",
    )
    idempotency_horizon_days: int = Field(
        default=7,
        description="How long provider event ids are remembered for deduplication",
    )
    dispatch_max_attempts: int = Field(
        default=5,
        description="Attempts for outbound sends and AI calls on transient failures",
    )
    dispatch_max_delay_seconds: float = Field(
        default=30.0,
        description="Upper bound on total retry time for a single action",
    )

    # HTTP server
    host: str = Field(default="0.0.0.0", description="Bind address for 'dmpilot serve'")
    port: int = Field(default=8000, description="Port for 'dmpilot serve'")

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )

    @property
    def is_anthropic_configured(self) -> bool:
        """Check if Anthropic API key is configured."""
        return bool(self.anthropic_api_key)

    @property
    def is_signature_check_enabled(self) -> bool:
        """Check if webhook payloads are verified against the app secret."""
        return bool(self.meta_app_secret)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
