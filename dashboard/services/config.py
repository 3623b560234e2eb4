"""Central configuration for serverdeck."""

from __future__ import annotations

import logging
import os
from functools import lru_cache

import structlog
from dotenv import load_dotenv
from pydantic import BaseModel

# Load .env file before reading any env vars
load_dotenv()


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Core
    env: str = os.getenv("SERVERDECK_ENV", "development")
    log_level: str = os.getenv("SERVERDECK_LOG_LEVEL", "DEBUG")
    api_key: str = os.getenv("SERVERDECK_API_KEY", "")
    host: str = os.getenv("SERVERDECK_HOST", "127.0.0.1")
    port: int = int(os.getenv("SERVERDECK_PORT", "8000"))

    # Control plane
    control_plane_url: str = os.getenv("CONTROL_PLANE_URL", "")
    control_plane_token: str = os.getenv("CONTROL_PLANE_TOKEN", "")
    control_plane_user_id: str = os.getenv("CONTROL_PLANE_USER_ID", "")
    control_plane_timeout_seconds: float = float(
        os.getenv("CONTROL_PLANE_TIMEOUT_SECONDS", "30")
    )

    # Polling and retries
    poll_interval_seconds: float = float(os.getenv("POLL_INTERVAL_SECONDS", "5"))
    describe_max_attempts: int = int(os.getenv("DESCRIBE_MAX_ATTEMPTS", "3"))
    retry_wait_seconds: float = float(os.getenv("RETRY_WAIT_SECONDS", "0.5"))

    @property
    def is_production(self) -> bool:
        return self.env == "production"

    def validate_required_keys(self) -> list[str]:
        """Return warnings for missing control-plane configuration."""
        warnings: list[str] = []
        if not self.control_plane_url:
            warnings.append("CONTROL_PLANE_URL is not set — server commands will fail")
        if not self.control_plane_token:
            warnings.append("CONTROL_PLANE_TOKEN is not set — requests are unauthenticated")
        if self.is_production and not self.api_key:
            warnings.append("SERVERDECK_API_KEY is not set — dashboard API is unauthenticated")
        return warnings


def configure_logging(level: str) -> None:
    """Drop structlog events below ``level`` (e.g. ``"INFO"``)."""
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(numeric))


@lru_cache
def get_settings() -> Settings:
    return Settings()
