from __future__ import annotations

from typing import Any, Optional

from market_pipeline.errors import FetchError
from market_pipeline.integrations.http_fetcher import RateLimitedFetcher
from market_pipeline.schemas.listing import PriceSeries, RawListingRecord


class CoinGeckoRestClient:
    """Listing and chart endpoints of the market-data provider."""

    DEFAULT_BASE_URL = "https://api.coingecko.com/api/v3"
    PRICE_CHANGE_WINDOWS = "1h,24h,7d,30d"

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        *,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        vs_currency: str = "usd",
    ) -> None:
        self.fetcher = fetcher
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self.vs_currency = vs_currency
        if api_key:
            self.fetcher.headers["x-cg-demo-api-key"] = api_key

    def markets_params(self, *, page: int, per_page: int) -> dict[str, Any]:
        return {
            "vs_currency": self.vs_currency,
            "order": "market_cap_desc",
            "per_page": per_page,
            "page": page,
            "sparkline": "false",
            "price_change_percentage": self.PRICE_CHANGE_WINDOWS,
        }

    def get_markets(self, *, page: int = 1, per_page: int = 50) -> list[RawListingRecord]:
        url = f"{self.base_url}/coins/markets"
        payload = self.fetcher.fetch(url, self.markets_params(page=page, per_page=per_page), label=f"markets:p{page}")
        if not isinstance(payload, list):
            raise FetchError(f"markets:p{page}: expected a JSON array", url=url)
        records = [RawListingRecord.from_provider(row) for row in payload if isinstance(row, dict)]
        return [r for r in records if r.id]

    def get_market_chart(self, coin_id: str, *, days: int = 7) -> PriceSeries:
        url = f"{self.base_url}/coins/{coin_id}/market_chart"
        payload = self.fetcher.fetch(
            url,
            {"vs_currency": self.vs_currency, "days": days},
            label=f"chart:{coin_id}",
        )
        if not isinstance(payload, dict):
            raise FetchError(f"chart:{coin_id}: expected a JSON object", url=url)
        return PriceSeries.from_provider(coin_id, payload)
