"""
Configuration management for the tile-shop chat client.

This module uses Pydantic Settings for environment-based configuration
with validation and type checking.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application settings
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Logging level")

    # REST backend settings
    api_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL of the tile-shop REST backend"
    )
    request_timeout: float = Field(
        default=30.0,
        description="HTTP request timeout in seconds"
    )

    # Polling settings
    conversation_poll_interval: float = Field(
        default=30.0,
        gt=0,
        description="Seconds between conversation list refreshes"
    )
    message_poll_interval: float = Field(
        default=5.0,
        gt=0,
        description="Seconds between message refreshes for the active conversation"
    )
    poll_max_backoff: float = Field(
        default=300.0,
        gt=0,
        description="Upper bound in seconds for the delay between failing polls"
    )

    # Credential settings
    credential_file: Path = Field(
        default=Path.home() / ".tile-chat" / "credentials.json",
        description="File holding the persisted auth token and user profile"
    )
    chat_username: str = Field(
        default="",
        description="Username used by the console entry point when no session is stored"
    )
    chat_password: str = Field(
        default="",
        description="Password used by the console entry point when no session is stored"
    )


# Global settings instance
settings = Settings()
