"""Configuration utilities for the voice agent relay."""

from __future__ import annotations

import secrets
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

DEFAULT_UPSTREAM_URL = "wss://agent.deepgram.com/v1/agent/converse"


class Settings(BaseSettings):
    """Application settings loaded from the environment."""

    host: str = Field(default="0.0.0.0", description="Interface the server listens on.")
    port: int = Field(default=8081, description="Port the server listens on.")
    frontend_port: int = Field(
        default=8080,
        description="Port of the browser frontend, used to build the allowed CORS origins.",
    )
    allowed_origins: Optional[str] = Field(
        default=None,
        description="Comma-separated CORS origins. Overrides the frontend_port defaults.",
    )

    deepgram_api_key: Optional[str] = Field(
        default=None,
        description="Credential presented to the voice agent service.",
    )
    upstream_url: str = Field(default=DEFAULT_UPSTREAM_URL, description="Voice agent WebSocket URL.")
    upstream_open_timeout_seconds: float = Field(default=10.0, gt=0)

    session_secret: Optional[str] = Field(
        default=None,
        description="Secret used to sign session tokens. Generated per process when unset.",
    )
    session_ttl_seconds: int = Field(default=3600, gt=0)

    shutdown_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Upper bound spent closing each connection during shutdown.",
    )
    max_message_bytes: int = Field(
        default=1024 * 1024,
        gt=0,
        description="Largest message accepted on either leg; bigger frames close the socket with 1009.",
    )

    metadata_path: Path = Field(default=Path("deepgram.toml"))
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def cors_origins(self) -> list[str]:
        if self.allowed_origins:
            return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]
        return [
            f"http://localhost:{self.frontend_port}",
            f"http://127.0.0.1:{self.frontend_port}",
        ]

    def signing_secret(self) -> str:
        """Return the configured secret, or a fresh random one."""

        return self.session_secret or secrets.token_hex(32)

    def require_api_key(self) -> str:
        key = (self.deepgram_api_key or "").strip()
        if not key:
            raise ConfigurationError("DEEPGRAM_API_KEY is not set")
        return key


@lru_cache
def get_settings() -> Settings:
    return Settings()


MISSING_API_KEY_HELP = """
ERROR: Deepgram API key not found!

Please set your API key using one of these methods:

1. Create a .env file (recommended):
   DEEPGRAM_API_KEY=your_api_key_here

2. Environment variable:
   export DEEPGRAM_API_KEY=your_api_key_here

Get your API key at: https://console.deepgram.com
"""
