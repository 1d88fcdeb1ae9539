import os
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, field_validator

_ENV_FIELDS = (
    "PRICE_CACHE_TTL_SEC",
    "RATE_LIMIT_DELAY_MS",
    "QUOTE_TIMEOUT_SEC",
    "HISTORY_TIMEOUT_SEC",
    "MAX_CONCURRENT_REQUESTS",
    "SYNTHETIC_FALLBACK",
    "SCRAPE_ENABLED",
    "SCRAPE_INTERVAL_MS",
    "BROADCAST_INTERVAL_SEC",
    "EXTREMUM_REFRESH_INTERVAL_SEC",
)


def _split_csv(raw: str) -> list[str]:
    return [s.strip() for s in raw.split(",") if s.strip()]


class Settings(BaseModel):
    PRICE_SOURCES: list[Literal["mexc", "gateio"]] = ["mexc", "gateio"]
    TRACKED_SYMBOLS: list[str] = ["BTC", "ETH"]
    PRICE_CACHE_TTL_SEC: float = Field(default=30.0, gt=0)
    RATE_LIMIT_DELAY_MS: int = Field(default=250, ge=0)
    QUOTE_TIMEOUT_SEC: float = Field(default=10.0, gt=0)
    HISTORY_TIMEOUT_SEC: float = Field(default=15.0, gt=0)
    MAX_CONCURRENT_REQUESTS: int = Field(default=4, ge=1)
    SYNTHETIC_FALLBACK: bool = False
    SCRAPE_ENABLED: bool = True
    SCRAPE_INTERVAL_MS: int = Field(default=300_000, gt=0)
    BROADCAST_INTERVAL_SEC: float = Field(default=5.0, gt=0)
    EXTREMUM_REFRESH_INTERVAL_SEC: float = Field(default=86_400.0, gt=0)

    @field_validator("TRACKED_SYMBOLS")
    @classmethod
    def normalize_symbols(cls, value: list[str]) -> list[str]:
        return [s.strip().upper() for s in value if s.strip()]

    @classmethod
    def from_env(cls) -> "Settings":
        raw: dict[str, object] = {}

        sources = _split_csv(os.getenv("PRICE_SOURCES", ""))
        if sources:
            raw["PRICE_SOURCES"] = [s.lower() for s in sources]

        symbols = _split_csv(os.getenv("TRACKED_SYMBOLS", ""))
        if symbols:
            raw["TRACKED_SYMBOLS"] = symbols

        for name in _ENV_FIELDS:
            value = os.getenv(name)
            if value is not None and value.strip() != "":
                raw[name] = value.strip()

        return cls.model_validate(raw)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
