from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import Annotated, List, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")

    provider: str = Field("serpapi", alias="FARE_PROVIDER")
    currency: str = Field("TWD", alias="FARE_CURRENCY")
    locale: str = Field("zh-TW", alias="FARE_LOCALE")
    db_path: str = Field("fare_tracker.db", alias="FARE_DB")
    namespace: str = Field("group.fare-tracker", alias="FARE_NAMESPACE")

    request_timeout: float = Field(30.0, alias="REQUEST_TIMEOUT")
    request_delay_s: float = Field(0.3, alias="REQUEST_DELAY_S")
    max_parallel: int = Field(5, alias="MAX_PARALLEL")

    refresh_hours: Annotated[List[int], NoDecode] = Field(
        default_factory=lambda: [8, 12, 16, 20], alias="REFRESH_HOURS"
    )
    denylist: Annotated[List[str], NoDecode] = Field(
        default_factory=list, alias="DENYLIST"
    )

    amadeus_env: str = Field("TEST", alias="AMADEUS_ENV")

    telegram_token: Optional[str] = Field(None, alias="TELEGRAM_BOT_TOKEN")
    telegram_chat_id: Optional[str] = Field(None, alias="TELEGRAM_CHAT_ID")

    log_file: Optional[str] = Field("fare_tracker.log", alias="LOG_FILE")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    @field_validator("provider", "amadeus_env", "log_level")
    @classmethod
    def _normalise_names(cls, v: str, info):
        v = v.strip()
        return v.lower() if info.field_name == "provider" else v.upper()

    @field_validator("currency")
    @classmethod
    def _currency_non_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("FARE_CURRENCY must be a non-empty string")
        return v.strip().upper()

    @field_validator("request_timeout")
    @classmethod
    def _timeout_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("REQUEST_TIMEOUT must be greater than 0")
        return v

    @field_validator("max_parallel")
    @classmethod
    def _parallel_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("MAX_PARALLEL must be at least 1")
        return v

    @field_validator("refresh_hours", mode="before")
    @classmethod
    def _split_hours(cls, v):
        if isinstance(v, str):
            if v.strip().startswith("["):
                return json.loads(v)
            return [int(h) for h in v.split(",") if h.strip()]
        return v

    @field_validator("refresh_hours")
    @classmethod
    def _hours_in_range(cls, v: List[int]) -> List[int]:
        if not v:
            raise ValueError("REFRESH_HOURS must name at least one hour")
        if any(h < 0 or h > 23 for h in v):
            raise ValueError("REFRESH_HOURS must be between 0 and 23")
        return sorted(set(v))

    @field_validator("denylist", mode="before")
    @classmethod
    def _split_denylist(cls, v):
        if isinstance(v, str):
            if v.strip().startswith("["):
                return json.loads(v)
            return [a.strip() for a in v.split(",") if a.strip()]
        return v

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, v: str) -> str:
        if not isinstance(logging.getLevelName(v), int):
            raise ValueError(f"LOG_LEVEL {v!r} is not a logging level")
        return v

    @property
    def amadeus_base_url(self) -> str:
        if self.amadeus_env == "PRODUCTION":
            return "https://api.amadeus.com"
        return "https://test.api.amadeus.com"

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_token and self.telegram_chat_id)


@lru_cache()
def get_settings() -> Settings:
    """Return application settings loaded from the environment."""
    return Settings()  # type: ignore[call-arg]


__all__ = ["Settings", "get_settings"]
