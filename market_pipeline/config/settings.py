import os
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    PROVIDER_BASE_URL: str = "https://api.coingecko.com/api/v3"
    PROVIDER_API_KEY: str | None = None
    INTERNAL_API_KEY: str | None = None

    CACHE_ROOT: str = "data"
    CACHE_BUCKET: str = "market-cache"
    CACHE_KEY: str = "daily/full_market.json"
    SNAPSHOT_TABLE_PATH: str = "data/market_snapshots.jsonl"

    ON_DEMAND_MAX_COINS: int = 10
    ON_DEMAND_CALL_INTERVAL_SEC: float = 4.0

    NIGHTLY_DURATION_SEC: float = 25 * 60
    NIGHTLY_CALLS_PER_MINUTE: int = 4
    NIGHTLY_PAGE_SIZE: int = 50
    NIGHTLY_TOP_N: int = 10
    NIGHTLY_INDICATOR_MODE: Literal["exact", "proxy"] = "proxy"
    NIGHTLY_SCHEDULE_ENABLED: bool = False
    NIGHTLY_SCHEDULE_INTERVAL_SEC: float = 24 * 3600

    @property
    def nightly_call_interval_sec(self) -> float:
        return 60.0 / max(self.NIGHTLY_CALLS_PER_MINUTE, 1)

    @classmethod
    def from_env(cls) -> "Settings":
        raw = {
            "PROVIDER_BASE_URL": os.getenv("PROVIDER_BASE_URL"),
            "PROVIDER_API_KEY": os.getenv("PROVIDER_API_KEY"),
            "INTERNAL_API_KEY": os.getenv("INTERNAL_API_KEY"),
            "CACHE_ROOT": os.getenv("CACHE_ROOT"),
            "CACHE_BUCKET": os.getenv("CACHE_BUCKET"),
            "CACHE_KEY": os.getenv("CACHE_KEY"),
            "SNAPSHOT_TABLE_PATH": os.getenv("SNAPSHOT_TABLE_PATH"),
            "ON_DEMAND_MAX_COINS": os.getenv("ON_DEMAND_MAX_COINS"),
            "ON_DEMAND_CALL_INTERVAL_SEC": os.getenv("ON_DEMAND_CALL_INTERVAL_SEC"),
            "NIGHTLY_DURATION_SEC": os.getenv("NIGHTLY_DURATION_SEC"),
            "NIGHTLY_CALLS_PER_MINUTE": os.getenv("NIGHTLY_CALLS_PER_MINUTE"),
            "NIGHTLY_PAGE_SIZE": os.getenv("NIGHTLY_PAGE_SIZE"),
            "NIGHTLY_TOP_N": os.getenv("NIGHTLY_TOP_N"),
            "NIGHTLY_INDICATOR_MODE": os.getenv("NIGHTLY_INDICATOR_MODE"),
            "NIGHTLY_SCHEDULE_INTERVAL_SEC": os.getenv("NIGHTLY_SCHEDULE_INTERVAL_SEC"),
        }
        # unset or blank variables fall back to model defaults
        values = {k: v for k, v in raw.items() if v is not None and v.strip() != ""}
        values["NIGHTLY_SCHEDULE_ENABLED"] = _env_bool("NIGHTLY_SCHEDULE_ENABLED")
        return cls.model_validate(values)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
