"""Application settings and configuration management."""
from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or defaults."""

    DB_PATH: str = Field(default="data/interview.db")
    PROFILES_PATH: Optional[str] = None

    ORACLE_CONFIG_PATH: Optional[str] = None
    ORACLE_BASE_URL: Optional[str] = None
    ORACLE_ENDPOINT: str = "/v1/chat/completions"
    ORACLE_MODEL: str = "gpt-4o-mini"
    ORACLE_API_KEY_ENV: Optional[str] = "OPENAI_API_KEY"
    ORACLE_TIMEOUT_S: float = Field(default=45.0, ge=30.0, le=60.0)
    ORACLE_MAX_RETRIES: int = Field(default=1, ge=0)
    ORACLE_RETRY_BASE_DELAY_S: float = Field(default=0.5, ge=0.0)

    CACHE_BUCKET_CAP: int = Field(default=25, ge=1)
    SESSION_IDLE_TIMEOUT_HOURS: float = Field(default=24.0, gt=0.0)
    MAX_TURNS: int = Field(default=15, ge=1)
    MIN_TURNS: int = Field(default=5, ge=0)
    PERFORMANCE_WINDOW: int = Field(default=10, ge=1)
    REINFORCE_PROBABILITY: float = Field(default=0.35, ge=0.0, le=1.0)

    model_config = SettingsConfigDict(env_file=".env", validate_assignment=True, extra="ignore")


settings = Settings()
