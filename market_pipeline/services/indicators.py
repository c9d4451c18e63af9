"""RSI / ATR with Wilder smoothing over consecutive closes.

Both indicators fall back to a fixed value when the series is not longer than
the period (RSI 50, ATR 0). True range is approximated by ``|close[i] -
close[i-1]|`` since the chart endpoint only returns closing prices.
"""

from __future__ import annotations

from typing import Sequence

from market_pipeline.schemas.cache import IndicatorMode, IndicatorResult
from market_pipeline.schemas.listing import PriceSeries, RawListingRecord

RSI_NEUTRAL = 50.0
DEFAULT_PERIOD = 14
SERIES_LIMIT = 100
PROXY_ATR_PERCENT_NO_PRICE = 5.0


def _check_period(period: int) -> None:
    if period < 1:
        raise ValueError("period must be >= 1")


def compute_rsi(closes: Sequence[float], period: int = DEFAULT_PERIOD) -> float:
    _check_period(period)
    if len(closes) <= period:
        return RSI_NEUTRAL

    gains = 0.0
    losses = 0.0
    for i in range(1, period + 1):
        delta = closes[i] - closes[i - 1]
        if delta > 0:
            gains += delta
        else:
            losses -= delta

    avg_gain = gains / period
    avg_loss = losses / period
    if avg_loss == 0:
        return 100.0

    for i in range(period + 1, len(closes)):
        delta = closes[i] - closes[i - 1]
        gain = delta if delta > 0 else 0.0
        loss = -delta if delta < 0 else 0.0
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period
        # a loss-free stretch saturates the oscillator
        if avg_loss == 0:
            return 100.0

    rs = avg_gain / avg_loss
    return 100 - 100 / (1 + rs)


def compute_atr(closes: Sequence[float], period: int = DEFAULT_PERIOD) -> float:
    """Absolute ATR in price units."""
    _check_period(period)
    if len(closes) <= period:
        return 0.0

    true_ranges = [abs(closes[i] - closes[i - 1]) for i in range(1, len(closes))]

    atr = sum(true_ranges[:period]) / period
    for tr in true_ranges[period:]:
        atr = (atr * (period - 1) + tr) / period
    return atr


def atr_percent(atr: float, current_price: float) -> float:
    if current_price <= 0:
        return 0.0
    return atr / current_price * 100


class IndicatorEngine:
    """Produces ``IndicatorResult`` either from a price series or from listing fields.

    ``exact`` needs the chart series; ``proxy`` derives rough values from the
    24h range and 24h change so the nightly tail can skip chart calls. The mode
    is stamped on every result and on the published payload.
    """

    def __init__(self, mode: IndicatorMode = "exact", period: int = DEFAULT_PERIOD) -> None:
        if mode not in ("exact", "proxy"):
            raise ValueError("mode must be one of: exact, proxy")
        _check_period(period)
        self.mode = mode
        self.period = period

    @property
    def needs_series(self) -> bool:
        return self.mode == "exact"

    def compute(self, record: RawListingRecord, series: PriceSeries | None = None) -> IndicatorResult:
        if self.mode == "proxy":
            return self._proxy(record)
        if series is None:
            raise ValueError(f"price series required for exact indicators: {record.id}")

        closes = series.closes(limit=SERIES_LIMIT)
        rsi = compute_rsi(closes, self.period)
        atr = compute_atr(closes, self.period)
        return IndicatorResult(rsi=rsi, atr_percent=atr_percent(atr, record.current_price), mode="exact")

    def _proxy(self, record: RawListingRecord) -> IndicatorResult:
        price = record.current_price
        high = record.high_24h or price
        low = record.low_24h or price
        if price > 0:
            atr_pct = max((high - low) / price * 100, 0.0)
        else:
            atr_pct = PROXY_ATR_PERCENT_NO_PRICE
        rsi = min(max(RSI_NEUTRAL + record.change_24h / 2, 0.0), 100.0)
        return IndicatorResult(rsi=rsi, atr_percent=atr_pct, mode="proxy")
