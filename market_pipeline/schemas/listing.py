from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, Field


def to_number(value: Any, fallback: float = 0.0) -> float:
    """Coerce a provider numeric field; None, NaN, inf and junk become ``fallback``."""
    if value is None or value == "" or isinstance(value, bool):
        return fallback
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if math.isnan(number) or math.isinf(number):
        return fallback
    return number


def _to_rank(value: Any) -> int | None:
    number = to_number(value, fallback=-1.0)
    if number <= 0:
        return None
    return int(number)


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _to_date_text(value: Any) -> str | None:
    # provider dates are ISO strings; anything else is dropped
    if isinstance(value, str) and value.strip():
        return value
    return None


class RawListingRecord(BaseModel):
    id: str
    symbol: str = ""
    name: str = ""
    image: str = ""
    current_price: float = 0.0
    market_cap: float = 0.0
    total_volume: float = 0.0
    market_cap_rank: int | None = None
    high_24h: float = 0.0
    low_24h: float = 0.0
    change_1h: float = 0.0
    change_24h: float = 0.0
    change_7d: float = 0.0
    change_30d: float = 0.0
    ath: float = 0.0
    ath_date: str | None = None
    circulating_supply: float = 0.0
    total_supply: float = 0.0
    raw: dict[str, Any] = Field(default_factory=dict, repr=False)

    @classmethod
    def from_provider(cls, payload: Any) -> "RawListingRecord":
        row = payload if isinstance(payload, dict) else {}
        change_24h = row.get("price_change_percentage_24h_in_currency")
        if change_24h is None:
            change_24h = row.get("price_change_percentage_24h")
        return cls(
            id=_to_text(row.get("id")),
            symbol=_to_text(row.get("symbol")),
            name=_to_text(row.get("name")),
            image=_to_text(row.get("image")),
            current_price=to_number(row.get("current_price")),
            market_cap=to_number(row.get("market_cap")),
            total_volume=to_number(row.get("total_volume")),
            market_cap_rank=_to_rank(row.get("market_cap_rank")),
            high_24h=to_number(row.get("high_24h")),
            low_24h=to_number(row.get("low_24h")),
            change_1h=to_number(row.get("price_change_percentage_1h_in_currency")),
            change_24h=to_number(change_24h),
            change_7d=to_number(row.get("price_change_percentage_7d_in_currency")),
            change_30d=to_number(row.get("price_change_percentage_30d_in_currency")),
            ath=to_number(row.get("ath")),
            ath_date=_to_date_text(row.get("ath_date")),
            circulating_supply=to_number(row.get("circulating_supply")),
            total_supply=to_number(row.get("total_supply")),
            raw=dict(row),
        )


class PriceSeries(BaseModel):
    coin_id: str
    points: list[tuple[int, float]] = Field(default_factory=list)

    @classmethod
    def from_provider(cls, coin_id: str, payload: Any) -> "PriceSeries":
        prices = payload.get("prices") if isinstance(payload, dict) else None
        points: list[tuple[int, float]] = []
        for item in prices or []:
            if not isinstance(item, (list, tuple)) or len(item) < 2:
                continue
            price = to_number(item[1], fallback=math.nan)
            if math.isnan(price):
                continue
            points.append((int(to_number(item[0])), price))
        return cls(coin_id=coin_id, points=points)

    def closes(self, limit: int | None = 100) -> list[float]:
        values = [price for _ts, price in self.points]
        if limit is not None and len(values) > limit:
            return values[-limit:]
        return values
