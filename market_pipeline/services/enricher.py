from __future__ import annotations

from market_pipeline.schemas.cache import EnrichedRecord, IndicatorResult
from market_pipeline.schemas.listing import RawListingRecord, to_number
from market_pipeline.services.coin_filter import MISSING_RANK


def volume_to_mcap(volume_24h: float, market_cap: float) -> float:
    volume_24h = to_number(volume_24h)
    market_cap = to_number(market_cap)
    if market_cap <= 0:
        return 0.0
    return volume_24h / market_cap


def volatility_score(atr_pct: float) -> int:
    atr_pct = to_number(atr_pct)
    if 3 <= atr_pct <= 15:
        return 10
    if 1.5 <= atr_pct < 3:
        return 6
    if atr_pct > 15:
        return 4
    return 0


def liquidity_score(volume_24h: float, ratio: float) -> int:
    volume_24h = to_number(volume_24h)
    ratio = to_number(ratio)

    score = 0
    if volume_24h >= 200_000_000:
        score += 10
    elif volume_24h >= 50_000_000:
        score += 7
    elif volume_24h >= 10_000_000:
        score += 5

    if ratio > 0.1:
        score += 4
    elif ratio > 0.05:
        score += 2
    return score


def enrich(record: RawListingRecord, indicators: IndicatorResult) -> EnrichedRecord:
    ratio = volume_to_mcap(record.total_volume, record.market_cap)
    atr_pct = to_number(indicators.atr_percent)

    return EnrichedRecord(
        id=record.id,
        symbol=record.symbol,
        name=record.name,
        image=record.image,
        current_price=to_number(record.current_price),
        market_cap=to_number(record.market_cap),
        volume_24h=to_number(record.total_volume),
        market_cap_rank=record.market_cap_rank if record.market_cap_rank is not None else MISSING_RANK,
        high_24h=to_number(record.high_24h),
        low_24h=to_number(record.low_24h),
        change_1h=to_number(record.change_1h),
        change_24h=to_number(record.change_24h),
        change_7d=to_number(record.change_7d),
        change_30d=to_number(record.change_30d),
        rsi14=round(to_number(indicators.rsi, 50.0), 2),
        atr14=round(atr_pct, 3),
        volatility_score=volatility_score(atr_pct),
        liquidity_score=liquidity_score(record.total_volume, ratio),
        volume_to_mcap=round(ratio, 4),
    )
