from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Iterable, Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Environment-driven application configuration."""

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    APP_NAME: str = "Toolroom"
    DATA_DIR: Path = Path("data")
    TZ: str = "America/Chicago"
    LOG_LEVEL: str = "INFO"

    API_KEY: str = Field(default="", validation_alias=AliasChoices("API_KEY", "API_TOKEN"))
    JWT_SECRET: str = "change-me"
    JWT_ACCESS_TTL_MIN: int = 15
    JWT_REFRESH_TTL_DAYS: int = 7
    ALLOWED_ORIGINS: list[str] = Field(default_factory=list)
    # Role granted to unauthenticated callers when no API key is configured.
    OPEN_ACCESS_ROLE: Literal["admin", "supervisor", "worker"] = "worker"

    STORE_BACKEND: Literal["sql", "memory"] = "sql"
    DB_URL: str = Field(
        default="sqlite+aiosqlite:///./data/toolroom.db",
        validation_alias=AliasChoices("DATABASE_URL", "DB_URL"),
    )

    TRANSACTION_MAX_ATTEMPTS: int = Field(default=5, ge=1, le=25)
    HISTORY_DAYS_BACK: int = Field(default=90, ge=1)
    HISTORY_LIMIT: int = Field(default=50, ge=1)
    TODAY_LIMIT: int = Field(default=100, ge=1)
    RECENT_LIMIT: int = Field(default=20, ge=1)
    TOOL_HISTORY_MAX_MONTHS: int = Field(default=12, ge=1)
    # Longest calendar span one history query may cover.
    HISTORY_MAX_RANGE_DAYS: int = Field(default=366, ge=1)
    HISTORY_READ_CONCURRENCY: int = Field(default=16, ge=1)
    PRELOAD_ID_CACHE: bool = True

    HOST: str = "0.0.0.0"
    PORT: int = 8089

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def parse_allowed_origins(cls, value: Any) -> list[str]:
        if value in (None, "", []):
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, Iterable):
            return [str(item).strip() for item in value if str(item).strip()]
        raise TypeError("ALLOWED_ORIGINS must be a comma separated string or list")


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    settings = AppSettings()
    if settings.STORE_BACKEND == "sql" and settings.DB_URL.startswith("sqlite"):
        settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
    return settings


settings = get_settings()
