from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from market_pipeline.schemas.listing import RawListingRecord


class SnapshotRow(BaseModel):
    collected_at: str
    coin_id: str
    coin_symbol: str
    coin_name: str
    current_price: float
    market_cap: float
    volume_24h: float
    price_change_1h: float
    price_change_24h: float
    price_change_7d: float
    price_change_30d: float
    high_24h: float
    low_24h: float
    ath: float
    ath_date: str | None = None
    market_cap_rank: int
    circulating_supply: float
    total_supply: float
    raw_data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_listing(cls, record: RawListingRecord, collected_at: str) -> "SnapshotRow":
        return cls(
            collected_at=collected_at,
            coin_id=record.id,
            coin_symbol=record.symbol.upper(),
            coin_name=record.name,
            current_price=record.current_price,
            market_cap=record.market_cap,
            volume_24h=record.total_volume,
            price_change_1h=record.change_1h,
            price_change_24h=record.change_24h,
            price_change_7d=record.change_7d,
            price_change_30d=record.change_30d,
            high_24h=record.high_24h,
            low_24h=record.low_24h,
            ath=record.ath,
            ath_date=record.ath_date,
            market_cap_rank=record.market_cap_rank or 999,
            circulating_supply=record.circulating_supply,
            total_supply=record.total_supply,
            raw_data=record.raw,
        )
