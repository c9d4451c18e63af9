import unittest

from market_pipeline.errors import FetchError
from market_pipeline.integrations.coingecko_rest import CoinGeckoRestClient


class StubFetcher:
    def __init__(self, payload) -> None:
        self.payload = payload
        self.headers: dict[str, str] = {"Accept": "application/json"}
        self.calls: list[tuple] = []

    def fetch(self, url, params=None, *, label="fetch"):
        self.calls.append((url, params, label))
        return self.payload


class TestCoinGeckoRestClient(unittest.TestCase):
    def test_get_markets_uses_listing_contract(self):
        fetcher = StubFetcher([])
        client = CoinGeckoRestClient(fetcher, base_url="https://example.test/api/v3/")

        client.get_markets(page=3, per_page=50)

        url, params, label = fetcher.calls[0]
        self.assertEqual(url, "https://example.test/api/v3/coins/markets")
        self.assertEqual(
            params,
            {
                "vs_currency": "usd",
                "order": "market_cap_desc",
                "per_page": 50,
                "page": 3,
                "sparkline": "false",
                "price_change_percentage": "1h,24h,7d,30d",
            },
        )
        self.assertEqual(label, "markets:p3")

    def test_get_markets_parses_rows_and_drops_malformed_entries(self):
        fetcher = StubFetcher(
            [
                {
                    "id": "bitcoin",
                    "symbol": "btc",
                    "name": "Bitcoin",
                    "image": "https://img.test/btc.png",
                    "current_price": 64000.5,
                    "market_cap": "1200000000000",
                    "total_volume": 35000000000,
                    "market_cap_rank": 1,
                    "high_24h": 65000,
                    "low_24h": None,
                    "price_change_percentage_1h_in_currency": 0.2,
                    "price_change_percentage_24h": 1.5,
                    "price_change_percentage_7d_in_currency": float("nan"),
                    "price_change_percentage_30d_in_currency": 12.0,
                },
                "garbage",
                {"symbol": "noid"},
            ]
        )
        client = CoinGeckoRestClient(fetcher)

        records = client.get_markets()

        self.assertEqual(len(records), 1)
        btc = records[0]
        self.assertEqual(btc.id, "bitcoin")
        self.assertEqual(btc.market_cap, 1.2e12)
        self.assertEqual(btc.market_cap_rank, 1)
        self.assertEqual(btc.low_24h, 0.0)
        self.assertEqual(btc.change_24h, 1.5)
        self.assertEqual(btc.change_7d, 0.0)
        self.assertEqual(btc.raw["symbol"], "btc")

    def test_get_markets_rejects_non_array_body(self):
        client = CoinGeckoRestClient(StubFetcher({"status": {"error_code": 429}}))

        with self.assertRaises(FetchError):
            client.get_markets()

    def test_get_market_chart_parses_prices(self):
        fetcher = StubFetcher({"prices": [[1700000000000, 100.0], [1700003600000, "101.5"], [1700007200000], None]})
        client = CoinGeckoRestClient(fetcher)

        series = client.get_market_chart("bitcoin", days=7)

        url, params, _label = fetcher.calls[0]
        self.assertEqual(url, "https://api.coingecko.com/api/v3/coins/bitcoin/market_chart")
        self.assertEqual(params, {"vs_currency": "usd", "days": 7})
        self.assertEqual(series.coin_id, "bitcoin")
        self.assertEqual(series.points, [(1700000000000, 100.0), (1700003600000, 101.5)])

    def test_api_key_is_sent_as_header(self):
        fetcher = StubFetcher([])
        CoinGeckoRestClient(fetcher, api_key="demo-key")

        self.assertEqual(fetcher.headers["x-cg-demo-api-key"], "demo-key")


if __name__ == "__main__":
    unittest.main()
