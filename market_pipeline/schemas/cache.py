from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

IndicatorMode = Literal["exact", "proxy"]


class IndicatorResult(BaseModel):
    rsi: float = Field(ge=0.0, le=100.0)
    atr_percent: float = Field(ge=0.0)
    mode: IndicatorMode = "exact"


class EnrichedRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    symbol: str
    name: str
    image: str
    current_price: float = Field(alias="currentPrice")
    market_cap: float = Field(alias="marketCap")
    volume_24h: float = Field(alias="volume24h")
    market_cap_rank: int = Field(alias="marketCapRank")
    high_24h: float = Field(alias="high24h")
    low_24h: float = Field(alias="low24h")
    change_1h: float = Field(alias="change1h")
    change_24h: float = Field(alias="change24h")
    change_7d: float = Field(alias="change7d")
    change_30d: float = Field(alias="change30d")
    rsi14: float
    atr14: float
    volatility_score: int = Field(alias="volatilityScore")
    liquidity_score: int = Field(alias="liquidityScore")
    volume_to_mcap: float = Field(alias="volumeToMcap")


class CachePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    updated_at: str = Field(alias="updatedAt")
    source: str
    indicators: IndicatorMode | None = None
    coins: list[EnrichedRecord] = Field(default_factory=list)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, raw: str | bytes) -> "CachePayload":
        return cls.model_validate_json(raw)
