"""Runtime configuration for the analysis pipeline."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Settings loaded from environment variables or a local .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Providers
    provider_backend: Literal["openai", "offline"] = "openai"
    openai_api_key: str = ""
    embedding_model: str = "text-embedding-3-small"
    chat_model: str = "gpt-4o"
    openai_timeout_seconds: float = Field(default=30.0, gt=0)

    # Density clustering
    dbscan_eps: float = Field(default=0.3, gt=0, le=2)
    dbscan_min_points: int = Field(default=3, ge=1)

    # Signal extraction rate limiting
    signal_batch_size: int = Field(default=5, ge=1)
    signal_batch_cooldown_seconds: float = Field(default=1.0, ge=0)
    provider_call_timeout_seconds: float | None = Field(default=60.0, gt=0)

    # Effort fallback when an issue carries no estimate
    default_issue_effort_hours: float = Field(default=2.0, ge=0)

    # Opportunity thresholds
    strategic_action_threshold: float = Field(default=80.0, ge=0, le=100)
    high_priority_threshold: float = Field(default=70.0, ge=0, le=100)

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logger.debug("Logging configured at %s", settings.log_level.upper())
