import os
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, field_validator, model_validator


class Settings(BaseModel):
    QUOTE_CACHE_TTL_MS: int = 30000
    QUOTE_MIN_FETCH_INTERVAL_MS: int = 5000
    QUOTE_FETCH_TIMEOUT_MS: int = 15000
    QUOTE_SOURCE: Literal["demo", "http"] = "demo"
    QUOTE_SOURCE_URL: str | None = None
    QUOTE_WARM_SYMBOLS: list[str] = []
    QUOTE_WARM_INTERVAL_SEC: int = 60

    @field_validator("QUOTE_CACHE_TTL_MS", "QUOTE_MIN_FETCH_INTERVAL_MS", "QUOTE_FETCH_TIMEOUT_MS")
    @classmethod
    def non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must be >= 0")
        return value

    @field_validator("QUOTE_WARM_INTERVAL_SEC")
    @classmethod
    def warm_interval_floor(cls, value: int) -> int:
        return max(5, value)

    @model_validator(mode="after")
    def source_url_required_for_http(self) -> "Settings":
        if self.QUOTE_SOURCE == "http" and not self.QUOTE_SOURCE_URL:
            raise ValueError("QUOTE_SOURCE_URL is required when QUOTE_SOURCE=http")
        return self

    @classmethod
    def from_env(cls) -> "Settings":
        raw_warm_symbols = os.getenv("QUOTE_WARM_SYMBOLS", "")
        warm_symbols = [s.strip().upper() for s in raw_warm_symbols.split(",") if s.strip()]

        values = {
            "QUOTE_CACHE_TTL_MS": os.getenv("QUOTE_CACHE_TTL_MS"),
            "QUOTE_MIN_FETCH_INTERVAL_MS": os.getenv("QUOTE_MIN_FETCH_INTERVAL_MS"),
            "QUOTE_FETCH_TIMEOUT_MS": os.getenv("QUOTE_FETCH_TIMEOUT_MS"),
            "QUOTE_SOURCE": os.getenv("QUOTE_SOURCE"),
            "QUOTE_SOURCE_URL": os.getenv("QUOTE_SOURCE_URL"),
            "QUOTE_WARM_INTERVAL_SEC": os.getenv("QUOTE_WARM_INTERVAL_SEC"),
        }
        return cls.model_validate(
            {
                **{k: v for k, v in values.items() if v not in (None, "")},
                "QUOTE_WARM_SYMBOLS": warm_symbols,
            }
        )

    @property
    def cache_ttl_sec(self) -> float:
        return self.QUOTE_CACHE_TTL_MS / 1000

    @property
    def min_fetch_interval_sec(self) -> float:
        return self.QUOTE_MIN_FETCH_INTERVAL_MS / 1000

    @property
    def fetch_timeout_sec(self) -> float:
        return self.QUOTE_FETCH_TIMEOUT_MS / 1000


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
